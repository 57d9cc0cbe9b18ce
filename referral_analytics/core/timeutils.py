"""
Time-Related Utilities
----------------------

Day keys are UTC ISO dates ("YYYY-MM-DD"). Every bucket in the index is
keyed by one, so lexicographic comparison of keys is date comparison and
range filtering never needs to parse them back.
"""

import math
from datetime import datetime, timezone
from typing import List, Optional

import pandas as pd
from dateutil import parser as date_parser

from .custom_types import DateKey, DateRange

DAY_MS = 24 * 60 * 60 * 1000
RETENTION_WINDOW_MS = 30 * DAY_MS
INVALID_DATE = "Invalid"


def to_date_key(timestamp_ms: Optional[float]) -> DateKey:
    """
    Converts an epoch-ms timestamp into its UTC day key.

    Returns `INVALID_DATE` for missing, zero or non-finite input.
    """
    if not timestamp_ms or not math.isfinite(timestamp_ms):
        return INVALID_DATE
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def parse_date_input(value: Optional[str]) -> int:
    """
    Parses a date / date-time string into epoch ms (naive values are UTC).

    Returns 0 when the value is blank or unparseable.
    """
    if value is None:
        return 0
    text = str(value).strip()
    if not text:
        return 0
    try:
        dt = date_parser.parse(text)
    except (ValueError, OverflowError):
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def day_start_ms(date: DateKey) -> int:
    return parse_date_input(date)


def day_end_ms(date: DateKey) -> int:
    """Last millisecond of the given UTC day."""
    return parse_date_input(date) + DAY_MS - 1


def each_day(date_range: DateRange) -> List[DateKey]:
    """
    Enumerates every day key in the inclusive range.

    Raises:
        ValueError: If start is after end.
    """
    if date_range.start > date_range.end:
        raise ValueError(f"Invalid range: start {date_range.start} is after end {date_range.end}")
    days = pd.date_range(start=date_range.start, end=date_range.end, freq="D")
    return [d.strftime("%Y-%m-%d") for d in days]
