"""Business-day arithmetic for follow-up due dates (Mon-Fri, no holidays)."""

from datetime import datetime, timedelta


def is_business_day(dt: datetime) -> bool:
    """Check if date is a business day (Mon-Fri)."""
    return dt.weekday() < 5


def add_business_days(start: datetime, days: int) -> datetime:
    """
    Add `days` business days to `start`, keeping the time of day.

    Weekend days are skipped, so Friday + 1 lands on Monday. Starting on a
    weekend counts the following Monday as the first business day.
    """
    result = start
    remaining = days
    while remaining > 0:
        result += timedelta(days=1)
        if is_business_day(result):
            remaining -= 1
    return result
