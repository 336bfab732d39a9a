"""Utility modules."""

from app.utils.business_days import add_business_days, is_business_day
from app.utils.normalization import hostname_from_url, normalize_email, phone_digits
from app.utils.timezones import (
    ensure_utc,
    get_timezone,
    is_valid_timezone,
    local_date,
    local_to_utc,
    utc_to_local,
)

__all__ = [
    # Business days
    "add_business_days",
    "is_business_day",
    # Normalization
    "hostname_from_url",
    "normalize_email",
    "phone_digits",
    # Timezones
    "ensure_utc",
    "get_timezone",
    "is_valid_timezone",
    "local_date",
    "local_to_utc",
    "utc_to_local",
]
