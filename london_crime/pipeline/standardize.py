"""Category and outcome vocabulary normalisation plus calendar fields."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from london_crime.common.constants import NO_OUTCOME
from london_crime.common.logging import log_event
from london_crime.common.time_utils import parse_partition_key

# Ordered (substring, standardised value) rules. First match wins.
CATEGORY_RULES: tuple[tuple[str, str], ...] = (
    ("anti-social", "anti-social-behaviour"),
    ("bicycle", "bicycle-theft"),
    ("burglary", "burglary"),
    ("criminal damage", "criminal-damage-arson"),
    ("drugs", "drugs"),
    ("other theft", "other-theft"),
    ("possession of weapons", "possession-of-weapons"),
    ("public order", "public-order"),
    ("robbery", "robbery"),
    ("shoplifting", "shoplifting"),
    ("theft from the person", "theft-from-the-person"),
    ("vehicle crime", "vehicle-crime"),
    ("violence and sexual", "violence-and-sexual-offences"),
    ("other crime", "other-crime"),
)
STANDARD_CATEGORIES = frozenset(value for _, value in CATEGORY_RULES)


@dataclass
class StandardizeResult:
    records: list[dict] = field(default_factory=list)
    dropped_count: int = 0
    drop_reasons: dict[str, int] = field(default_factory=dict)
    unknown_categories: dict[str, int] = field(default_factory=dict)


def _clean(value: object) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def standardize_category(raw: str | None) -> str | None:
    """Map a raw category onto the standard vocabulary.

    Values no rule matches pass through lower-cased so new upstream categories
    are kept rather than rejected.
    """
    cleaned = _clean(raw)
    if cleaned is None:
        return None
    lowered = cleaned.lower()
    for needle, standard in CATEGORY_RULES:
        if needle in lowered:
            return standard
    return lowered


def standardize_outcome(raw: str | None) -> str:
    cleaned = _clean(raw)
    if cleaned is None:
        return NO_OUTCOME
    return cleaned.lower()


def parse_coordinate(value: object, *, limit: float) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed or not -limit <= parsed <= limit:
        return None
    return parsed


def parse_event_date(month: object) -> date | None:
    cleaned = _clean(month)
    if cleaned is None:
        return None
    try:
        year, month_number = parse_partition_key(cleaned[:7])
    except ValueError:
        return None
    if len(cleaned) > 7 and cleaned[7] not in "-T ":
        return None
    return date(year, month_number, 1)


def standardize(
    raw_records: Iterable[dict],
    partition_key: str,
    *,
    logger: logging.Logger | None = None,
) -> StandardizeResult:
    logger = logger or logging.getLogger(__name__)
    result = StandardizeResult()
    drops: Counter = Counter()
    unknown: Counter = Counter()
    rows_in = 0

    for raw in raw_records:
        rows_in += 1
        crime_id = _clean(raw.get("crime_id"))
        if crime_id is None:
            drops["missing_crime_id"] += 1
            continue

        category = standardize_category(raw.get("category"))
        if category is None:
            drops["missing_category"] += 1
            continue

        latitude = parse_coordinate(raw.get("latitude"), limit=90.0)
        longitude = parse_coordinate(raw.get("longitude"), limit=180.0)
        if latitude is None or longitude is None:
            drops["bad_coordinates"] += 1
            continue

        event_date = parse_event_date(raw.get("month"))
        if event_date is None:
            drops["bad_date"] += 1
            continue

        if category not in STANDARD_CATEGORIES:
            unknown[category] += 1

        location_type = _clean(raw.get("location_type"))
        result.records.append(
            {
                "crime_id": crime_id,
                "category": category,
                "location_type": location_type.lower() if location_type else None,
                "location_subtype": _clean(raw.get("location_subtype")),
                "partition_key": partition_key,
                "event_date": event_date,
                "year": event_date.year,
                "month_number": event_date.month,
                "quarter": (event_date.month - 1) // 3 + 1,
                "latitude": latitude,
                "longitude": longitude,
                "outcome_category": standardize_outcome(raw.get("outcome_category")),
                "outcome_date": _clean(raw.get("outcome_date")),
            }
        )

    result.records.sort(key=lambda row: (row["event_date"], row["category"], row["crime_id"]))
    result.dropped_count = sum(drops.values())
    result.drop_reasons = dict(sorted(drops.items()))
    result.unknown_categories = dict(sorted(unknown.items()))

    if result.unknown_categories:
        log_event(
            logger,
            f"categories outside the standard vocabulary passed through: {result.unknown_categories}",
            level=logging.WARNING,
            stage="standardize",
            partition=partition_key,
            event="UNKNOWN_CATEGORY",
            status="warning",
        )
    log_event(
        logger,
        f"standardized {len(result.records)} of {rows_in} records, dropped {result.dropped_count}",
        stage="standardize",
        partition=partition_key,
        event="STANDARDIZE",
        status="ok",
        rows_in=rows_in,
        rows_out=len(result.records),
    )
    return result
