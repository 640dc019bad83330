"""UTC helpers and the monthly partition calendar."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

PARTITION_KEY_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def utc_today() -> date:
    return datetime.now(tz=timezone.utc).date()


def utc_timestamp_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="milliseconds")


def parse_partition_key(key: str) -> tuple[int, int]:
    match = PARTITION_KEY_RE.match(key or "")
    if not match:
        raise ValueError(f"Partition key must be YYYY-MM, got {key!r}")
    return int(match.group(1)), int(match.group(2))


def is_partition_key(key: str) -> bool:
    return bool(PARTITION_KEY_RE.match(key or ""))


def format_partition_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def shift_month(key: str, months: int) -> str:
    year, month = parse_partition_key(key)
    index = year * 12 + (month - 1) + months
    return format_partition_key(index // 12, index % 12 + 1)


def month_range(start_key: str, end_key: str) -> list[str]:
    """Inclusive, ordered list of partition keys between two months."""
    start_year, start_month = parse_partition_key(start_key)
    end_year, end_month = parse_partition_key(end_key)
    start_index = start_year * 12 + start_month - 1
    end_index = end_year * 12 + end_month - 1
    return [format_partition_key(i // 12, i % 12 + 1) for i in range(start_index, end_index + 1)]


def latest_available_month(today: date, *, release_day: int = 15, lag_months: int = 1) -> str:
    """Most recent month the upstream is expected to have published.

    Data for a month is released around ``release_day`` of the following
    month, so before that day an extra month of lag applies.
    """
    current = format_partition_key(today.year, today.month)
    lag = lag_months if today.day >= release_day else lag_months + 1
    return shift_month(current, -lag)
