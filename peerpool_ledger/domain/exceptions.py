"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class LedgerError(DomainException):
    """A ledger operation was rejected; nothing it touched was changed"""

    pass


class AuthorizationError(LedgerError):
    """Caller is not the owner for a privileged operation"""

    pass


class InvalidRequestError(LedgerError):
    """Amount or duration failed validation, or exceeds credit limit / pool liquidity"""

    pass


class LoanNotFoundError(LedgerError):
    """No loan exists with the given id"""

    def __init__(self, loan_id: int):
        super().__init__(f"Loan {loan_id} does not exist")
        self.loan_id = loan_id


class StateConflictError(LedgerError):
    """Loan is not Open, or belongs to someone else"""

    pass


class TimingError(LedgerError):
    """Operation attempted before the grace period elapsed"""

    pass


class TransferFailedError(LedgerError):
    """Value-transfer service reported failure or was unreachable"""

    pass
