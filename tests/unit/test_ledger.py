"""Unit tests for the ledger engine state machine"""

import random
import pytest
from conftest import ALICE, BOB, DAY, LENDER, OWNER, START
from peerpool_ledger.domain.exceptions import (
    AuthorizationError,
    InvalidRequestError,
    LedgerError,
    LoanNotFoundError,
    StateConflictError,
    TimingError,
    TransferFailedError,
)
from peerpool_ledger.domain.models import (
    LiquidityAdded,
    LiquidityWithdrawn,
    LoanDefaulted,
    LoanRepaid,
    LoanRequested,
    LoanStatus,
    RepaymentResult,
    ScoreUpdated,
)


def build_score(ledger, borrower, cycles):
    """Borrow 100 for 7 days and repay immediately, `cycles` times (+50 each, no interest)"""
    for _ in range(cycles):
        loan_id = ledger.request_loan(borrower, 100, 7)
        ledger.repay_loan(borrower, loan_id)


# Deposits


def test_deposit_adds_liquidity(ledger, token, events):
    ledger.deposit(LENDER, 5_000)

    assert ledger.total_liquidity == 5_000
    assert token.balance_of("pool") == 5_000
    assert events == [LiquidityAdded(provider=LENDER, amount=5_000)]


def test_deposit_does_not_open_profile(ledger):
    """Only borrowing stamps account_opened_at"""
    ledger.deposit(LENDER, 5_000)
    assert ledger.get_profile(LENDER).account_opened_at is None


@pytest.mark.parametrize("amount", [0, -10])
def test_deposit_rejects_non_positive(ledger, amount):
    with pytest.raises(InvalidRequestError):
        ledger.deposit(LENDER, amount)
    assert ledger.total_liquidity == 0


def test_deposit_transfer_failure_changes_nothing(ledger, token, events):
    """Alice only holds 1,000 units"""
    with pytest.raises(TransferFailedError):
        ledger.deposit(ALICE, 5_000)

    assert ledger.total_liquidity == 0
    assert token.balance_of(ALICE) == 1_000
    assert events == []


# Borrowing


def test_new_user_borrow_scenario(funded_ledger, token, clock, events):
    """Score 0: limit 100 at 15%; 100 for 30 days -> 1 unit interest"""
    profile = funded_ledger.get_profile(ALICE)
    assert profile.max_loan_amount == 100
    assert profile.interest_rate == 15

    loan_id = funded_ledger.request_loan(ALICE, 100, 30)

    loan = funded_ledger.get_loan(loan_id)
    assert loan_id == 1
    assert loan.principal == 100
    assert loan.amount_due == 101
    assert loan.deadline == START + 30 * DAY
    assert loan.status is LoanStatus.OPEN
    assert loan.is_overdue is False

    profile = funded_ledger.get_profile(ALICE)
    assert profile.account_opened_at == START
    assert profile.loans_count == 1
    assert profile.total_borrowed == 100

    assert funded_ledger.total_liquidity == 49_900
    assert token.balance_of(ALICE) == 1_100
    assert funded_ledger.get_user_loans(ALICE) == [1]
    assert events == [LoanRequested(loan_id=1, borrower=ALICE, amount=100)]


def test_loan_ids_sequential_per_user_index(funded_ledger):
    first = funded_ledger.request_loan(ALICE, 50, 7)
    second = funded_ledger.request_loan(BOB, 50, 7)
    third = funded_ledger.request_loan(ALICE, 50, 7)

    assert (first, second, third) == (1, 2, 3)
    assert funded_ledger.get_user_loans(ALICE) == [1, 3]
    assert funded_ledger.get_user_loans(BOB) == [2]


def test_borrow_above_credit_limit_rejected(funded_ledger, events):
    """A rejected first request leaves no profile behind"""
    with pytest.raises(InvalidRequestError, match="credit limit"):
        funded_ledger.request_loan(ALICE, 101, 30)

    profile = funded_ledger.get_profile(ALICE)
    assert profile.account_opened_at is None
    assert profile.loans_count == 0
    assert funded_ledger.total_liquidity == 50_000
    assert events == []


def test_borrow_above_liquidity_rejected(ledger):
    ledger.deposit(LENDER, 50)

    with pytest.raises(InvalidRequestError, match="liquidity"):
        ledger.request_loan(ALICE, 100, 30)

    assert ledger.total_liquidity == 50


@pytest.mark.parametrize("duration_days", [0, 6, 366])
def test_borrow_duration_out_of_range(funded_ledger, duration_days):
    with pytest.raises(InvalidRequestError, match="Duration"):
        funded_ledger.request_loan(ALICE, 100, duration_days)


@pytest.mark.parametrize("duration_days", [7, 365])
def test_borrow_duration_bounds_inclusive(funded_ledger, duration_days):
    loan_id = funded_ledger.request_loan(ALICE, 100, duration_days)
    assert funded_ledger.get_loan(loan_id).deadline == START + duration_days * DAY


def test_borrow_non_positive_amount(funded_ledger):
    with pytest.raises(InvalidRequestError):
        funded_ledger.request_loan(ALICE, 0, 30)


def test_disbursement_failure_rolls_back_everything(funded_ledger, token, events):
    """Bookkeeping done before the failed transfer is discarded, id included"""
    token.fail_transfer = True

    with pytest.raises(TransferFailedError):
        funded_ledger.request_loan(ALICE, 100, 30)

    assert funded_ledger.total_liquidity == 50_000
    assert funded_ledger.get_user_loans(ALICE) == []
    profile = funded_ledger.get_profile(ALICE)
    assert profile.loans_count == 0
    assert profile.total_borrowed == 0
    assert profile.account_opened_at is None
    assert token.balance_of(ALICE) == 1_000
    assert events == []
    with pytest.raises(LoanNotFoundError):
        funded_ledger.get_loan(1)

    token.fail_transfer = False
    assert funded_ledger.request_loan(ALICE, 100, 30) == 1


def test_failed_second_loan_restores_only_touched_records(funded_ledger, token, clock):
    """An existing borrower keeps their first loan, counters and opening time"""
    first = funded_ledger.request_loan(ALICE, 50, 30)
    funded_ledger.request_loan(BOB, 20, 30)
    clock.advance(days=3)
    token.fail_transfer = True

    with pytest.raises(TransferFailedError):
        funded_ledger.request_loan(ALICE, 40, 30)

    assert funded_ledger.get_user_loans(ALICE) == [first]
    assert funded_ledger.get_user_loans(BOB) == [2]
    profile = funded_ledger.get_profile(ALICE)
    assert profile.loans_count == 1
    assert profile.total_borrowed == 50
    assert profile.account_opened_at == START
    assert funded_ledger.total_liquidity == 50_000 - 70

    token.fail_transfer = False
    assert funded_ledger.request_loan(ALICE, 40, 30) == 3
    assert funded_ledger.get_user_loans(ALICE) == [first, 3]


def test_account_opened_at_set_once(funded_ledger, clock):
    funded_ledger.request_loan(ALICE, 50, 30)
    clock.advance(days=3)
    funded_ledger.request_loan(ALICE, 50, 30)

    assert funded_ledger.get_profile(ALICE).account_opened_at == START


# Repayment


def test_on_time_repayment_scenario(funded_ledger, token, clock, events):
    """Repaying 101 on time takes a new account from 0 to 50"""
    loan_id = funded_ledger.request_loan(ALICE, 100, 30)
    events.clear()
    clock.advance(days=10)

    result = funded_ledger.repay_loan(ALICE, loan_id)

    assert result == RepaymentResult(loan_id=loan_id, on_time=True, credit_score=50)
    assert funded_ledger.get_loan(loan_id).status is LoanStatus.REPAID
    assert funded_ledger.total_liquidity == 49_900 + 101
    assert token.balance_of(ALICE) == 1_100 - 101

    profile = funded_ledger.get_profile(ALICE)
    assert profile.credit_score == 50
    assert profile.total_repaid == 101
    assert profile.on_time_payments == 1
    assert profile.late_payments == 0

    assert events == [
        ScoreUpdated(user=ALICE, new_score=50),
        LoanRepaid(loan_id=loan_id, borrower=ALICE, on_time=True),
    ]


def test_repayment_at_deadline_is_on_time(funded_ledger, clock):
    loan_id = funded_ledger.request_loan(ALICE, 100, 30)
    clock.set(START + 30 * DAY)

    assert funded_ledger.repay_loan(ALICE, loan_id).on_time is True


def test_late_repayment_scenario(funded_ledger, clock, events):
    """Score 50, second loan repaid 31 days late: 50 - 100 -> 0, plus 10 for 39 days tenure"""
    first = funded_ledger.request_loan(ALICE, 100, 30)
    clock.advance(days=1)
    funded_ledger.repay_loan(ALICE, first)
    assert funded_ledger.get_profile(ALICE).credit_score == 50

    second = funded_ledger.request_loan(ALICE, 100, 7)
    clock.set(START + 8 * DAY + 31 * DAY)
    events.clear()

    result = funded_ledger.repay_loan(ALICE, second)

    assert result.on_time is False
    assert result.credit_score == 10
    profile = funded_ledger.get_profile(ALICE)
    assert profile.credit_score == 10
    assert profile.late_payments == 1
    assert profile.on_time_payments == 1
    assert events[-1] == LoanRepaid(loan_id=second, borrower=ALICE, on_time=False)


def test_repay_twice_rejected(funded_ledger):
    loan_id = funded_ledger.request_loan(ALICE, 100, 30)
    funded_ledger.repay_loan(ALICE, loan_id)
    liquidity = funded_ledger.total_liquidity

    with pytest.raises(StateConflictError):
        funded_ledger.repay_loan(ALICE, loan_id)

    assert funded_ledger.total_liquidity == liquidity
    assert funded_ledger.get_profile(ALICE).on_time_payments == 1


def test_repay_someone_elses_loan(funded_ledger):
    loan_id = funded_ledger.request_loan(ALICE, 100, 30)

    with pytest.raises(StateConflictError, match="does not belong"):
        funded_ledger.repay_loan(BOB, loan_id)

    assert funded_ledger.get_loan(loan_id).status is LoanStatus.OPEN


def test_repay_unknown_loan(funded_ledger):
    with pytest.raises(LoanNotFoundError):
        funded_ledger.repay_loan(ALICE, 99)


def test_repay_collection_failure(funded_ledger, token, events):
    loan_id = funded_ledger.request_loan(ALICE, 100, 30)
    events.clear()
    token.fail_transfer_from = True

    with pytest.raises(TransferFailedError):
        funded_ledger.repay_loan(ALICE, loan_id)

    assert funded_ledger.get_loan(loan_id).status is LoanStatus.OPEN
    assert funded_ledger.get_profile(ALICE).credit_score == 0
    assert funded_ledger.total_liquidity == 49_900
    assert events == []


def test_amount_due_fixed_after_score_changes(funded_ledger):
    """Terms agreed at score 0 survive the borrower reaching score 300"""
    loan_id = funded_ledger.request_loan(ALICE, 100, 30)
    build_score(funded_ledger, ALICE, 6)

    assert funded_ledger.get_profile(ALICE).credit_score == 300
    assert funded_ledger.get_profile(ALICE).interest_rate == 10
    assert funded_ledger.get_loan(loan_id).amount_due == 101


def test_higher_score_unlocks_larger_loan(funded_ledger):
    build_score(funded_ledger, ALICE, 6)

    profile = funded_ledger.get_profile(ALICE)
    assert profile.max_loan_amount == 1_000

    loan_id = funded_ledger.request_loan(ALICE, 1_000, 365)
    # 1000 * 10 * 365 / 36500
    assert funded_ledger.get_loan(loan_id).amount_due == 1_100


def test_age_bonus_compounds_on_each_repayment(funded_ledger, clock):
    first = funded_ledger.request_loan(ALICE, 100, 365)
    second = funded_ledger.request_loan(ALICE, 100, 365)
    clock.advance(days=90)

    funded_ledger.repay_loan(ALICE, first)
    assert funded_ledger.get_profile(ALICE).credit_score == 80

    funded_ledger.repay_loan(ALICE, second)
    assert funded_ledger.get_profile(ALICE).credit_score == 160


# Defaults


def test_default_boundary(funded_ledger, clock, events):
    """Exactly deadline + 30 days fails; one second later succeeds"""
    build_score(funded_ledger, ALICE, 5)
    loan_id = funded_ledger.request_loan(ALICE, 100, 30)
    deadline = funded_ledger.get_loan(loan_id).deadline
    liquidity = funded_ledger.total_liquidity
    events.clear()

    clock.set(deadline + 30 * DAY)
    with pytest.raises(TimingError):
        funded_ledger.mark_as_defaulted(OWNER, loan_id)
    assert funded_ledger.get_loan(loan_id).status is LoanStatus.OPEN

    clock.advance(seconds=1)
    funded_ledger.mark_as_defaulted(OWNER, loan_id)

    profile = funded_ledger.get_profile(ALICE)
    assert funded_ledger.get_loan(loan_id).status is LoanStatus.DEFAULTED
    assert profile.credit_score == 50
    assert profile.on_time_payments == 5
    assert profile.late_payments == 0
    assert funded_ledger.total_liquidity == liquidity
    assert events == [LoanDefaulted(loan_id=loan_id, borrower=ALICE, new_score=50)]


def test_default_penalty_floored_at_zero(funded_ledger, clock):
    loan_id = funded_ledger.request_loan(ALICE, 100, 7)
    clock.advance(days=38)

    funded_ledger.mark_as_defaulted(OWNER, loan_id)

    assert funded_ledger.get_profile(ALICE).credit_score == 0


def test_default_before_deadline(funded_ledger):
    loan_id = funded_ledger.request_loan(ALICE, 100, 7)
    with pytest.raises(TimingError):
        funded_ledger.mark_as_defaulted(OWNER, loan_id)


def test_default_requires_owner(funded_ledger, clock):
    loan_id = funded_ledger.request_loan(ALICE, 100, 7)
    clock.advance(days=60)

    with pytest.raises(AuthorizationError):
        funded_ledger.mark_as_defaulted(BOB, loan_id)

    assert funded_ledger.get_loan(loan_id).status is LoanStatus.OPEN


def test_default_repaid_loan_rejected(funded_ledger, clock):
    loan_id = funded_ledger.request_loan(ALICE, 100, 7)
    funded_ledger.repay_loan(ALICE, loan_id)
    clock.advance(days=60)

    with pytest.raises(StateConflictError):
        funded_ledger.mark_as_defaulted(OWNER, loan_id)


def test_defaulted_loan_is_terminal(funded_ledger, clock):
    loan_id = funded_ledger.request_loan(ALICE, 100, 7)
    clock.advance(days=60)
    funded_ledger.mark_as_defaulted(OWNER, loan_id)

    with pytest.raises(StateConflictError):
        funded_ledger.mark_as_defaulted(OWNER, loan_id)
    with pytest.raises(StateConflictError):
        funded_ledger.repay_loan(ALICE, loan_id)


def test_default_unknown_loan(funded_ledger):
    with pytest.raises(LoanNotFoundError):
        funded_ledger.mark_as_defaulted(OWNER, 42)


# Withdrawals


def test_withdraw_more_than_liquidity(funded_ledger, token):
    with pytest.raises(InvalidRequestError):
        funded_ledger.withdraw_liquidity(OWNER, 50_001)

    assert funded_ledger.total_liquidity == 50_000
    assert token.balance_of(OWNER) == 1_000


def test_withdraw_all_liquidity(funded_ledger, token, events):
    funded_ledger.withdraw_liquidity(OWNER, 50_000)

    assert funded_ledger.total_liquidity == 0
    assert token.balance_of(OWNER) == 51_000
    assert events == [LiquidityWithdrawn(owner=OWNER, amount=50_000)]


def test_withdraw_requires_owner(funded_ledger):
    with pytest.raises(AuthorizationError):
        funded_ledger.withdraw_liquidity(LENDER, 10)
    assert funded_ledger.total_liquidity == 50_000


def test_withdraw_transfer_failure(funded_ledger, token):
    token.fail_transfer = True

    with pytest.raises(TransferFailedError):
        funded_ledger.withdraw_liquidity(OWNER, 1_000)

    assert funded_ledger.total_liquidity == 50_000


# Queries and notifications


def test_queries_do_not_create_profiles(funded_ledger):
    profile = funded_ledger.get_profile("stranger")

    assert profile.credit_score == 0
    assert profile.account_opened_at is None
    assert profile.max_loan_amount == 100
    assert profile.interest_rate == 15
    assert funded_ledger.get_user_loans("stranger") == []

    # First real interaction still stamps the current time
    funded_ledger.request_loan("stranger", 10, 7)
    assert funded_ledger.get_profile("stranger").account_opened_at == START


def test_is_overdue_derived(funded_ledger, clock):
    loan_id = funded_ledger.request_loan(ALICE, 100, 7)

    clock.set(START + 7 * DAY)
    assert funded_ledger.get_loan(loan_id).is_overdue is False

    clock.advance(seconds=1)
    assert funded_ledger.get_loan(loan_id).is_overdue is True

    funded_ledger.repay_loan(ALICE, loan_id)
    assert funded_ledger.get_loan(loan_id).is_overdue is False


def test_pool_view(funded_ledger, token):
    funded_ledger.request_loan(ALICE, 100, 30)

    pool = funded_ledger.get_pool()
    assert pool.total_liquidity == 49_900
    assert pool.custody_balance == token.balance_of("pool") == 49_900
    assert pool.loans_issued == 1


def test_events_follow_call_order(ledger, events):
    ledger.deposit(LENDER, 1_000)
    loan_id = ledger.request_loan(ALICE, 100, 30)
    ledger.repay_loan(ALICE, loan_id)

    assert [e.event_type for e in events] == [
        "liquidity_added",
        "loan_requested",
        "score_updated",
        "loan_repaid",
    ]
    assert events[2].to_payload() == {"event": "score_updated", "user": ALICE, "new_score": 50}


def test_failing_observer_does_not_undo_call(funded_ledger, events):
    def broken(event):
        raise RuntimeError("observer down")

    funded_ledger.subscribe(broken)
    loan_id = funded_ledger.request_loan(ALICE, 100, 30)

    assert funded_ledger.get_loan(loan_id).status is LoanStatus.OPEN
    assert events == [LoanRequested(loan_id=loan_id, borrower=ALICE, amount=100)]


def test_score_stays_in_range_for_random_activity(funded_ledger, token, clock):
    """Random borrow/repay/default/time-travel sequences never leave [0, 1000]"""
    rng = random.Random(7)
    borrowers = [ALICE, BOB]
    for borrower in borrowers:
        token.mint(borrower, 1_000_000)
    funded_ledger.deposit(LENDER, 50_000)

    for _ in range(400):
        borrower = rng.choice(borrowers)
        action = rng.random()
        try:
            if action < 0.4:
                limit = funded_ledger.get_profile(borrower).max_loan_amount
                funded_ledger.request_loan(borrower, rng.randint(1, limit), rng.randint(7, 60))
            elif action < 0.75:
                open_loans = [
                    loan_id
                    for loan_id in funded_ledger.get_user_loans(borrower)
                    if funded_ledger.get_loan(loan_id).status is LoanStatus.OPEN
                ]
                if open_loans:
                    funded_ledger.repay_loan(borrower, rng.choice(open_loans))
            elif action < 0.85:
                loan_ids = funded_ledger.get_user_loans(borrower)
                if loan_ids:
                    funded_ledger.mark_as_defaulted(OWNER, rng.choice(loan_ids))
            else:
                clock.advance(days=rng.randint(1, 45))
        except LedgerError:
            pass

        for identity in borrowers:
            assert 0 <= funded_ledger.get_profile(identity).credit_score <= 1000
