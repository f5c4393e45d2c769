"""Ledger engine - pool liquidity, loan lifecycle and credit profile state machine"""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from peerpool_ledger.domain.exceptions import (
    AuthorizationError,
    InvalidRequestError,
    LoanNotFoundError,
    StateConflictError,
    TimingError,
    TransferFailedError,
)
from peerpool_ledger.domain.models import (
    LedgerChanges,
    LedgerEvent,
    LedgerState,
    LiquidityAdded,
    LiquidityWithdrawn,
    Loan,
    LoanDefaulted,
    LoanRepaid,
    LoanRequested,
    LoanStatus,
    LoanView,
    PoolView,
    ProfileView,
    RepaymentResult,
    ScoreUpdated,
    UserProfile,
)
from peerpool_ledger.domain.ports import Clock, LedgerStore, OwnerCheck, TransferService
from peerpool_ledger.domain.scoring import (
    calculate_interest,
    interest_rate,
    max_loan_amount,
    score_after_default,
    score_after_repayment,
)
from peerpool_ledger.utils.date_utils import days_to_seconds

logger = logging.getLogger(__name__)

MIN_DURATION_DAYS = 7
MAX_DURATION_DAYS = 365
GRACE_PERIOD_DAYS = 30

EventObserver = Callable[[LedgerEvent], None]


class _Journal:
    """Pre-call copies of the records one call touches, enough to undo it"""

    def __init__(self, state: LedgerState):
        self.total_liquidity = state.pool.total_liquidity
        self.next_loan_id = state.next_loan_id
        self.loans: Dict[int, Optional[Loan]] = {}
        self.profiles: Dict[str, Optional[UserProfile]] = {}
        self.index_lengths: Dict[str, int] = {}
        self.events: List[LedgerEvent] = []

    def loan(self, state: LedgerState, loan_id: int) -> None:
        if loan_id not in self.loans:
            original = state.loans.get(loan_id)
            self.loans[loan_id] = copy.copy(original) if original is not None else None

    def profile(self, state: LedgerState, identity: str) -> None:
        if identity not in self.profiles:
            original = state.profiles.get(identity)
            self.profiles[identity] = copy.copy(original) if original is not None else None

    def index(self, state: LedgerState, identity: str) -> None:
        if identity not in self.index_lengths:
            self.index_lengths[identity] = len(state.loans_by_user.get(identity, []))

    def undo(self, state: LedgerState) -> None:
        state.pool.total_liquidity = self.total_liquidity
        state.next_loan_id = self.next_loan_id
        for loan_id, original in self.loans.items():
            if original is None:
                state.loans.pop(loan_id, None)
            else:
                state.loans[loan_id] = original
        for identity, original in self.profiles.items():
            if original is None:
                state.profiles.pop(identity, None)
            else:
                state.profiles[identity] = original
        for identity, length in self.index_lengths.items():
            if length == 0:
                state.loans_by_user.pop(identity, None)
            else:
                del state.loans_by_user[identity][length:]

    def changes(self, state: LedgerState) -> LedgerChanges:
        return LedgerChanges(
            total_liquidity=state.pool.total_liquidity,
            next_loan_id=state.next_loan_id,
            loans=[state.loans[i] for i in self.loans if i in state.loans],
            profiles={i: state.profiles[i] for i in self.profiles if i in state.profiles},
        )


class LedgerEngine:
    """
    Single-pool lending ledger.

    Every public mutating call runs under one lock as an all-or-nothing unit:
    each record is copied into a journal before its first change, and the
    journal is replayed backwards if anything raises, including a failed
    transfer after bookkeeping was already updated. With a store attached,
    the touched records and the call's notifications are saved before the
    call commits. Notifications are then published to observers, in order.
    """

    def __init__(
        self,
        transfer_service: TransferService,
        clock: Clock,
        is_owner: OwnerCheck,
        pool_account: str,
        store: Optional[LedgerStore] = None,
    ):
        self._transfers = transfer_service
        self._clock = clock
        self._is_owner = is_owner
        self.pool_account = pool_account
        self._store = store

        self._state = store.load() if store is not None else LedgerState()
        self._lock = threading.RLock()
        self._observers: List[EventObserver] = []
        self._journal: Optional[_Journal] = None

    def subscribe(self, observer: EventObserver) -> None:
        """Register a callback for every committed notification"""
        self._observers.append(observer)

    # Mutating operations

    def deposit(self, caller: str, amount: int) -> None:
        """Pull `amount` from the caller into pool custody"""
        with self._atomic("deposit", caller):
            self._require_positive(amount)
            self._collect(caller, amount)
            self._state.pool.total_liquidity += amount
            self._emit(LiquidityAdded(provider=caller, amount=amount))

    def request_loan(self, caller: str, amount: int, duration_days: int) -> int:
        """
        Issue a loan to the caller and disburse the principal.

        Returns the new loan id.

        Raises:
            InvalidRequestError: Non-positive amount, amount above the caller's
                credit limit or the pool's liquidity, or duration outside 7-365 days
            TransferFailedError: Disbursement failed (all changes rolled back)
        """
        with self._atomic("request_loan", caller):
            now = self._clock.now()
            profile = self._touch_profile(caller, now)

            self._require_positive(amount)
            limit = max_loan_amount(profile.credit_score)
            if amount > limit:
                raise InvalidRequestError(f"Amount {amount} exceeds credit limit {limit}")
            if amount > self._state.pool.total_liquidity:
                raise InvalidRequestError("Insufficient pool liquidity")
            if not MIN_DURATION_DAYS <= duration_days <= MAX_DURATION_DAYS:
                raise InvalidRequestError(
                    f"Duration must be between {MIN_DURATION_DAYS} and {MAX_DURATION_DAYS} days"
                )

            interest = calculate_interest(amount, profile.credit_score, duration_days)

            loan = Loan(
                id=self._state.next_loan_id,
                borrower=caller,
                principal=amount,
                amount_due=amount + interest,
                deadline=now + days_to_seconds(duration_days),
            )
            self._journal.loan(self._state, loan.id)
            self._journal.index(self._state, caller)
            self._state.next_loan_id += 1
            self._state.loans[loan.id] = loan
            self._state.loans_by_user.setdefault(caller, []).append(loan.id)

            profile.loans_count += 1
            profile.total_borrowed += amount
            self._state.pool.total_liquidity -= amount

            self._send(caller, amount)

            self._emit(LoanRequested(loan_id=loan.id, borrower=caller, amount=amount))
            return loan.id

    def repay_loan(self, caller: str, loan_id: int) -> RepaymentResult:
        """
        Repay `amount_due` in full.

        Returns whether the loan was paid at or before its deadline, with the
        borrower's updated score.

        Raises:
            LoanNotFoundError: Unknown loan id
            StateConflictError: Not the caller's loan, or loan is not open
            TransferFailedError: Collection failed
        """
        with self._atomic("repay_loan", caller):
            now = self._clock.now()
            loan = self._loan_for_update(loan_id)

            if loan.borrower != caller:
                raise StateConflictError(f"Loan {loan_id} does not belong to caller")
            if loan.status is not LoanStatus.OPEN:
                raise StateConflictError(f"Loan {loan_id} is already {loan.status.value}")

            self._collect(caller, loan.amount_due)

            loan.status = LoanStatus.REPAID
            self._state.pool.total_liquidity += loan.amount_due

            profile = self._touch_profile(caller, now)
            profile.total_repaid += loan.amount_due

            on_time = now <= loan.deadline
            if on_time:
                profile.on_time_payments += 1
            else:
                profile.late_payments += 1

            profile.credit_score = score_after_repayment(
                profile.credit_score, on_time, profile.account_opened_at, now
            )
            self._emit(ScoreUpdated(user=caller, new_score=profile.credit_score))

            self._emit(LoanRepaid(loan_id=loan.id, borrower=caller, on_time=on_time))
            return RepaymentResult(loan_id=loan.id, on_time=on_time, credit_score=profile.credit_score)

    def mark_as_defaulted(self, caller: str, loan_id: int) -> None:
        """
        Write off an open loan once its grace period has passed (owner only).

        Nothing is recovered into the pool; the borrower loses 200 points.
        """
        with self._atomic("mark_as_defaulted", caller):
            self._require_owner(caller)
            now = self._clock.now()
            loan = self._loan_for_update(loan_id)

            if loan.status is not LoanStatus.OPEN:
                raise StateConflictError(f"Loan {loan_id} is already {loan.status.value}")

            grace_ends = loan.deadline + days_to_seconds(GRACE_PERIOD_DAYS)
            if now <= grace_ends:
                raise TimingError(f"Grace period for loan {loan_id} has not elapsed")

            loan.status = LoanStatus.DEFAULTED

            self._journal.profile(self._state, loan.borrower)
            profile = self._state.profiles[loan.borrower]
            profile.credit_score = score_after_default(profile.credit_score)

            self._emit(LoanDefaulted(loan_id=loan.id, borrower=loan.borrower, new_score=profile.credit_score))

    def withdraw_liquidity(self, caller: str, amount: int) -> None:
        """Move `amount` out of the pool to the owner"""
        with self._atomic("withdraw_liquidity", caller):
            self._require_owner(caller)
            self._require_positive(amount)
            if amount > self._state.pool.total_liquidity:
                raise InvalidRequestError("Insufficient pool liquidity")

            self._state.pool.total_liquidity -= amount
            self._send(caller, amount)

            self._emit(LiquidityWithdrawn(owner=caller, amount=amount))

    # Queries

    @property
    def total_liquidity(self) -> int:
        return self._state.pool.total_liquidity

    def get_profile(self, identity: str) -> ProfileView:
        """Profile with limits derived from the current score; unknown identities read as zero"""
        with self._lock:
            profile = self._state.profiles.get(identity) or UserProfile()
            return ProfileView(
                identity=identity,
                credit_score=profile.credit_score,
                total_borrowed=profile.total_borrowed,
                total_repaid=profile.total_repaid,
                loans_count=profile.loans_count,
                on_time_payments=profile.on_time_payments,
                late_payments=profile.late_payments,
                account_opened_at=profile.account_opened_at,
                max_loan_amount=max_loan_amount(profile.credit_score),
                interest_rate=interest_rate(profile.credit_score),
            )

    def get_loan(self, loan_id: int) -> LoanView:
        with self._lock:
            loan = self._get_loan(loan_id)
            return LoanView(
                id=loan.id,
                borrower=loan.borrower,
                principal=loan.principal,
                amount_due=loan.amount_due,
                deadline=loan.deadline,
                status=loan.status,
                is_overdue=loan.status is LoanStatus.OPEN and self._clock.now() > loan.deadline,
            )

    def get_user_loans(self, identity: str) -> List[int]:
        with self._lock:
            return list(self._state.loans_by_user.get(identity, []))

    def get_pool(self) -> PoolView:
        with self._lock:
            return PoolView(
                total_liquidity=self._state.pool.total_liquidity,
                custody_balance=self._transfers.balance_of(self.pool_account),
                loans_issued=len(self._state.loans),
            )


    # Internals

    @contextmanager
    def _atomic(self, operation: str, caller: str) -> Iterator[None]:
        with self._lock:
            journal = self._journal = _Journal(self._state)
            try:
                yield
                if self._store is not None:
                    self._save(journal, operation, caller)
            except Exception as e:
                journal.undo(self._state)
                logger.warning(
                    f"Ledger operation rejected: {e}",
                    extra={"operation": operation, "caller": caller, "error_type": type(e).__name__},
                )
                raise
            finally:
                self._journal = None

            logger.info(
                "Ledger operation committed",
                extra={"operation": operation, "caller": caller, "events": len(journal.events)},
            )
            self._publish(journal.events)

    def _save(self, journal: _Journal, operation: str, caller: str) -> None:
        try:
            self._store.save(journal.changes(self._state), journal.events)
        except Exception:
            # Transfers made by this call have already settled at the token service
            logger.error(
                "Ledger state not persisted after transfers; reconcile against the token service",
                extra={"operation": operation, "caller": caller},
            )
            raise

    def _emit(self, event: LedgerEvent) -> None:
        self._journal.events.append(event)

    def _publish(self, events: List[LedgerEvent]) -> None:
        for event in events:
            for observer in self._observers:
                try:
                    observer(event)
                except Exception:
                    # Notifications are fire-and-forget; the call has already committed
                    logger.exception(
                        "Event observer failed",
                        extra={"event_type": event.event_type},
                    )

    def _touch_profile(self, identity: str, now: int) -> UserProfile:
        self._journal.profile(self._state, identity)
        profile = self._state.profiles.setdefault(identity, UserProfile())
        if profile.account_opened_at is None:
            profile.account_opened_at = now
        return profile

    def _get_loan(self, loan_id: int) -> Loan:
        loan = self._state.loans.get(loan_id)
        if loan is None:
            raise LoanNotFoundError(loan_id)
        return loan

    def _loan_for_update(self, loan_id: int) -> Loan:
        self._get_loan(loan_id)
        self._journal.loan(self._state, loan_id)
        return self._state.loans[loan_id]

    def _require_owner(self, caller: str) -> None:
        if not self._is_owner(caller):
            raise AuthorizationError("Caller is not the owner")

    @staticmethod
    def _require_positive(amount: int) -> None:
        if amount <= 0:
            raise InvalidRequestError("Amount must be positive")

    def _collect(self, sender: str, amount: int) -> None:
        if not self._transfers.transfer_from(sender, self.pool_account, amount):
            raise TransferFailedError(f"Transfer of {amount} from {sender} failed")

    def _send(self, to: str, amount: int) -> None:
        if not self._transfers.transfer(to, amount):
            raise TransferFailedError(f"Transfer of {amount} to {to} failed")
