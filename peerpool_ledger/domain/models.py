"""Domain models - pure Python dataclasses representing ledger entities"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class LoanStatus(str, Enum):
    """Lifecycle state of a loan. Repaid and Defaulted are terminal."""

    OPEN = "open"
    REPAID = "repaid"
    DEFAULTED = "defaulted"


@dataclass
class Loan:
    """Single loan issued from the pool"""

    id: int
    borrower: str
    principal: int
    amount_due: int  # principal + interest, fixed at creation
    deadline: int  # epoch seconds
    status: LoanStatus = LoanStatus.OPEN


@dataclass
class UserProfile:
    """Per-identity credit history, created on first interaction"""

    credit_score: int = 0
    total_borrowed: int = 0
    total_repaid: int = 0
    loans_count: int = 0
    on_time_payments: int = 0
    late_payments: int = 0
    account_opened_at: Optional[int] = None


@dataclass
class Pool:
    """Funds currently available to lend"""

    total_liquidity: int = 0


@dataclass
class LedgerState:
    """Everything the engine owns"""

    pool: Pool = field(default_factory=Pool)
    loans: Dict[int, Loan] = field(default_factory=dict)
    profiles: Dict[str, UserProfile] = field(default_factory=dict)
    loans_by_user: Dict[str, List[int]] = field(default_factory=dict)
    next_loan_id: int = 1


@dataclass
class LedgerChanges:
    """Records written by one committed call, handed to the state store"""

    total_liquidity: int
    next_loan_id: int
    loans: List[Loan] = field(default_factory=list)
    profiles: Dict[str, UserProfile] = field(default_factory=dict)


# Read-only projections


@dataclass
class ProfileView:
    """Profile snapshot with limits derived from the current score"""

    identity: str
    credit_score: int
    total_borrowed: int
    total_repaid: int
    loans_count: int
    on_time_payments: int
    late_payments: int
    account_opened_at: Optional[int]
    max_loan_amount: int
    interest_rate: int


@dataclass
class LoanView:
    """Loan snapshot with derived overdue flag"""

    id: int
    borrower: str
    principal: int
    amount_due: int
    deadline: int
    status: LoanStatus
    is_overdue: bool


@dataclass
class PoolView:
    """Pool summary"""

    total_liquidity: int
    custody_balance: int
    loans_issued: int


@dataclass
class RepaymentResult:
    """Outcome of a repayment, read under the same lock as the write"""

    loan_id: int
    on_time: bool
    credit_score: int


# Notifications


@dataclass(frozen=True)
class LedgerEvent:
    """Base notification. `subject_field` names the identity the event is about."""

    event_type = "ledger_event"
    subject_field = ""

    @property
    def subject(self) -> str:
        return getattr(self, self.subject_field)

    def to_payload(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["event"] = self.event_type
        return payload


@dataclass(frozen=True)
class LiquidityAdded(LedgerEvent):
    provider: str
    amount: int

    event_type = "liquidity_added"
    subject_field = "provider"


@dataclass(frozen=True)
class LiquidityWithdrawn(LedgerEvent):
    owner: str
    amount: int

    event_type = "liquidity_withdrawn"
    subject_field = "owner"


@dataclass(frozen=True)
class LoanRequested(LedgerEvent):
    loan_id: int
    borrower: str
    amount: int

    event_type = "loan_requested"
    subject_field = "borrower"


@dataclass(frozen=True)
class LoanRepaid(LedgerEvent):
    loan_id: int
    borrower: str
    on_time: bool

    event_type = "loan_repaid"
    subject_field = "borrower"


@dataclass(frozen=True)
class LoanDefaulted(LedgerEvent):
    loan_id: int
    borrower: str
    new_score: int

    event_type = "loan_defaulted"
    subject_field = "borrower"


@dataclass(frozen=True)
class ScoreUpdated(LedgerEvent):
    user: str
    new_score: int

    event_type = "score_updated"
    subject_field = "user"
