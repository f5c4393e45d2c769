"""Epoch-second time arithmetic"""

SECONDS_PER_DAY = 86_400


def days_to_seconds(days: int) -> int:
    """Convert whole days to seconds"""
    return days * SECONDS_PER_DAY


def whole_periods_elapsed(start: int, end: int, period_days: int) -> int:
    """Number of complete `period_days` windows between two epoch timestamps (floor, never negative)"""
    if end <= start:
        return 0
    return (end - start) // days_to_seconds(period_days)
