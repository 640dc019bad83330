"""Fetch one monthly partition borough by borough with fail-soft semantics.

The upstream caps every response at a fixed number of crimes, so a whole-city
query for a month is truncated. Querying each borough's polygon separately
keeps each response under the ceiling.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from london_crime.boundaries.repository import BoundaryRepository
from london_crime.common.deterministic import dedupe_first
from london_crime.common.errors import FetchFailure
from london_crime.common.http import ApiRequestError, CrimeApiClient
from london_crime.common.logging import log_event
from london_crime.common.time_utils import parse_partition_key


@dataclass
class FetchResult:
    partition_key: str
    records: list[dict] = field(default_factory=list)
    area_counts: dict[str, int] = field(default_factory=dict)
    failed_areas: list[str] = field(default_factory=list)
    duplicates_dropped: int = 0


def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _crime_id(crime: dict) -> str | None:
    persistent_id = _blank_to_none(crime.get("persistent_id"))
    if persistent_id is not None:
        return str(persistent_id).strip()
    # Anti-social behaviour reports carry no persistent id; fall back to the per-month id.
    fallback = _blank_to_none(crime.get("id"))
    if fallback is None:
        return None
    return f"id-{str(fallback).strip()}"


def parse_crime(crime: dict, partition_key: str) -> dict:
    """Flatten one upstream crime object into a raw record. Values stay unparsed."""
    location = crime.get("location") or {}
    outcome = crime.get("outcome_status") or {}
    return {
        "crime_id": _crime_id(crime),
        "category": _blank_to_none(crime.get("category")),
        "location_type": _blank_to_none(crime.get("location_type") or location.get("type")),
        "location_subtype": _blank_to_none(crime.get("location_subtype") or location.get("subtype")),
        "month": _blank_to_none(crime.get("month")) or partition_key,
        "latitude": location.get("latitude"),
        "longitude": location.get("longitude"),
        "outcome_category": _blank_to_none(outcome.get("category")),
        "outcome_date": _blank_to_none(outcome.get("date")),
    }


class PartitionFetcher:
    def __init__(
        self,
        boundaries: BoundaryRepository,
        client: CrimeApiClient,
        *,
        pacing_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.boundaries = boundaries
        self.client = client
        self.pacing_seconds = pacing_seconds
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    def fetch(self, partition_key: str) -> FetchResult:
        parse_partition_key(partition_key)
        coarse_areas = self.boundaries.coarse_areas()
        result = FetchResult(partition_key=partition_key)
        collected: list[dict] = []

        for index, coarse_area in enumerate(coarse_areas, start=1):
            name = coarse_area.coarse_area_name
            is_last = index == len(coarse_areas)
            started = time.monotonic()
            try:
                payload = self.client.get_crimes(
                    partition_key,
                    self.boundaries.query_polygon(coarse_area),
                    area=name,
                )
            except ApiRequestError as exc:
                result.failed_areas.append(name)
                log_event(
                    self.logger,
                    f"[{index}/{len(coarse_areas)}] {name} failed: {exc}",
                    level=logging.WARNING,
                    stage="fetch",
                    partition=partition_key,
                    area=name,
                    event="AREA_FETCH_FAIL",
                    status="error",
                    error_code=exc.error_code,
                )
                continue

            rows = [parse_crime(crime, partition_key) for crime in payload if isinstance(crime, dict)]
            collected.extend(rows)
            result.area_counts[name] = len(rows)
            log_event(
                self.logger,
                f"[{index}/{len(coarse_areas)}] {name}: {len(rows)} crimes",
                stage="fetch",
                partition=partition_key,
                area=name,
                event="AREA_FETCH",
                status="ok",
                rows_out=len(rows),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            if not is_last and self.pacing_seconds > 0:
                self.sleep(self.pacing_seconds)

        if coarse_areas and len(result.failed_areas) == len(coarse_areas):
            raise FetchFailure(f"All {len(coarse_areas)} areas failed for partition {partition_key}")

        result.records, result.duplicates_dropped = dedupe_first(collected, key=lambda row: row["crime_id"])
        if result.failed_areas:
            log_event(
                self.logger,
                f"partial fetch for {partition_key}; failed areas: {', '.join(result.failed_areas)}",
                level=logging.WARNING,
                stage="fetch",
                partition=partition_key,
                event="PARTITION_FETCH_PARTIAL",
                status="partial",
            )
        log_event(
            self.logger,
            f"fetched {len(result.records)} crimes for {partition_key}",
            stage="fetch",
            partition=partition_key,
            event="PARTITION_FETCH",
            status="ok",
            rows_in=len(collected),
            rows_out=len(result.records),
        )
        return result
