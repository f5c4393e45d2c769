"""Credit scoring - rate/limit buckets and repayment-driven score updates"""

from peerpool_ledger.utils.date_utils import whole_periods_elapsed

MIN_SCORE = 0
MAX_SCORE = 1000

ON_TIME_REWARD = 50
LATE_PENALTY = 100
DEFAULT_PENALTY = 200

AGE_BONUS_PERIOD_DAYS = 30
AGE_BONUS_PER_PERIOD = 10
AGE_BONUS_CAP = 200

DAYS_PER_YEAR = 365


def clamp_score(score: int) -> int:
    """Force a score into [0, 1000]"""
    return max(MIN_SCORE, min(score, MAX_SCORE))


def interest_rate(score: int) -> int:
    """
    Annual interest rate in whole percent for a credit score.

    Score bands:
    - 800+:    5%
    - 600-799: 7%
    - 300-599: 10%
    - 0-299:   15%
    """
    if score >= 800:
        return 5
    elif score >= 600:
        return 7
    elif score >= 300:
        return 10
    else:
        return 15


def max_loan_amount(score: int) -> int:
    """
    Largest principal a borrower with this score may request.

    Score bands:
    - 800+:    10,000 units
    - 600-799: 5,000 units
    - 300-599: 1,000 units
    - 0-299:   100 units
    """
    if score >= 800:
        return 10_000
    elif score >= 600:
        return 5_000
    elif score >= 300:
        return 1_000
    else:
        return 100


def calculate_interest(amount: int, score: int, duration_days: int) -> int:
    """
    Simple interest for `duration_days`, truncated toward zero.

    Example:
        100 units, score 0 (15%), 30 days
        100 * 15 * 30 // 36500 = 1
    """
    return amount * interest_rate(score) * duration_days // (DAYS_PER_YEAR * 100)


def account_age_bonus(account_opened_at: int, now: int) -> int:
    """+10 per full 30 days since the account opened, capped at 200"""
    periods = whole_periods_elapsed(account_opened_at, now, AGE_BONUS_PERIOD_DAYS)
    return min(periods * AGE_BONUS_PER_PERIOD, AGE_BONUS_CAP)


def score_after_repayment(score: int, on_time: bool, account_opened_at: int, now: int) -> int:
    """
    New score after one repayment.

    Order of operations:
    1. On time: +50 (only if below 1000), clamped to 1000.
       Late: -100, floored at 0.
    2. Account-age bonus added on every repayment, not just once.
    3. Clamp to [0, 1000].
    """
    if on_time:
        if score < MAX_SCORE:
            score = min(score + ON_TIME_REWARD, MAX_SCORE)
    else:
        score = max(score - LATE_PENALTY, MIN_SCORE)

    score += account_age_bonus(account_opened_at, now)

    return clamp_score(score)


def score_after_default(score: int) -> int:
    """Flat 200 point penalty, floored at 0"""
    return max(score - DEFAULT_PENALTY, MIN_SCORE)
