"""Datetime parsing helpers for webhook payloads."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any


def parse_payload_datetime(raw_value: Any) -> datetime | None:
    """
    Parse a timestamp from a free-form payload value.

    Accepts aware/naive datetimes, ISO 8601 strings (with or without "Z"),
    and epoch seconds or milliseconds. Naive values are read as UTC.
    Returns None for anything unparseable.
    """
    if raw_value is None or raw_value == "":
        return None
    if isinstance(raw_value, datetime):
        dt = raw_value
    elif isinstance(raw_value, (int, float)) and not isinstance(raw_value, bool):
        ts = float(raw_value)
        if ts > 1e12:
            ts = ts / 1000
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    else:
        value = str(raw_value).strip()
        # Epoch timestamps (seconds or milliseconds)
        if re.fullmatch(r"\d{10,13}", value):
            ts = int(value)
            if len(value) == 13:
                ts = ts / 1000
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_payload_decimal(raw_value: Any) -> Decimal | None:
    """Parse a money amount ("49", 49.0, "49.00"); None when absent or invalid."""
    if raw_value is None or raw_value == "" or isinstance(raw_value, bool):
        return None
    try:
        return Decimal(str(raw_value)).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def parse_payload_int(raw_value: Any) -> int | None:
    if raw_value is None or isinstance(raw_value, bool):
        return None
    try:
        return int(raw_value)
    except (TypeError, ValueError):
        return None
