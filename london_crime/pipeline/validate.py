"""Partition contract checks run before anything is persisted."""

from __future__ import annotations

from collections import Counter

from london_crime.common.constants import PUBLIC_CRS
from london_crime.common.errors import ValidationFailure

REQUIRED_FIELDS = (
    "crime_id",
    "category",
    "partition_key",
    "event_date",
    "year",
    "month_number",
    "quarter",
    "latitude",
    "longitude",
    "area_code",
    "area_name",
    "coarse_area_name",
    "outcome_category",
)


def _missing_counts(records: list[dict]) -> dict[str, int]:
    counts: Counter = Counter()
    for record in records:
        for name in REQUIRED_FIELDS:
            if record.get(name) in (None, ""):
                counts[name] += 1
    return dict(sorted(counts.items()))


def _duplicate_keys(records: list[dict]) -> int:
    pairs = Counter((record.get("crime_id"), record.get("partition_key")) for record in records)
    return sum(count - 1 for count in pairs.values() if count > 1)


def validate_partition(records: list[dict], partition_key: str, *, crs: str) -> dict:
    """Return a quality report, raising ``ValidationFailure`` on contract breaches.

    An empty partition is valid. Upstream ids may repeat across months, so
    duplicates only count within ``(crime_id, partition_key)``.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if crs != PUBLIC_CRS:
        errors.append(f"CRS_MISMATCH:{crs}")

    missing = _missing_counts(records)
    for name in missing:
        errors.append(f"MISSING_REQUIRED_FIELD:{name}")

    foreign = sum(1 for record in records if record.get("partition_key") != partition_key)
    if foreign:
        errors.append("PARTITION_KEY_MISMATCH")

    duplicates = _duplicate_keys(records)
    if duplicates:
        errors.append("DUPLICATE_CRIME_ID")

    out_of_range = sum(
        1
        for record in records
        if record.get("latitude") is not None
        and record.get("longitude") is not None
        and not (-90 <= record["latitude"] <= 90 and -180 <= record["longitude"] <= 180)
    )
    if out_of_range:
        errors.append("COORDINATE_OUT_OF_RANGE")

    outside_month = sum(
        1
        for record in records
        if record.get("event_date") is not None
        and record["event_date"].strftime("%Y-%m") != partition_key
    )
    if outside_month:
        warnings.append("EVENT_DATE_OUTSIDE_PARTITION")

    if errors:
        raise ValidationFailure(f"{partition_key}: {';'.join(errors)}")

    return {
        "partition_key": partition_key,
        "records": len(records),
        "missing_fields": missing,
        "duplicate_keys": duplicates,
        "outside_month": outside_month,
        "warnings": warnings,
        "errors": errors,
    }
