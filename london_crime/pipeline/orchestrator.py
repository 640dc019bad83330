"""Single-partition pipeline: cache check, fetch, standardize, assign, validate, write."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from london_crime.boundaries.repository import BoundaryRepository
from london_crime.cache.partition_cache import PartitionCache
from london_crime.common.errors import PipelineError
from london_crime.common.logging import log_event
from london_crime.common.models import CrimeRecord
from london_crime.common.time_utils import parse_partition_key
from london_crime.harvest.partition_fetcher import PartitionFetcher
from london_crime.pipeline.reports import partition_summary
from london_crime.pipeline.spatial_assign import DEFAULT_UNMATCHED_WARN_RATIO, assign
from london_crime.pipeline.standardize import standardize
from london_crime.pipeline.validate import validate_partition


class PartitionStage(str, Enum):
    CHECK_CACHE = "check_cache"
    FETCH = "fetch"
    STANDARDIZE = "standardize"
    ASSIGN = "assign"
    VALIDATE = "validate"
    WRITE = "write"
    DONE = "done"


@dataclass
class PartitionOutcome:
    partition_key: str
    status: str
    record_count: int
    fetched_count: int = 0
    dropped_count: int = 0
    unmatched_count: int = 0
    duplicates_dropped: int = 0
    failed_areas: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duration_ms: int = 0


class PartitionPipeline:
    """Runs one partition through every stage.

    Nothing touches the cache before ``WRITE``, so a failure at any earlier
    stage leaves the cache exactly as it was. Errors propagate to the caller.
    """

    def __init__(
        self,
        boundaries: BoundaryRepository,
        fetcher: PartitionFetcher,
        cache: PartitionCache,
        *,
        unmatched_warn_ratio: float = DEFAULT_UNMATCHED_WARN_RATIO,
        run_id: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.boundaries = boundaries
        self.fetcher = fetcher
        self.cache = cache
        self.unmatched_warn_ratio = unmatched_warn_ratio
        self.run_id = run_id
        self.logger = logger or logging.getLogger(__name__)

    def _log(self, message: str, stage: PartitionStage, partition_key: str, **fields) -> None:
        log_event(self.logger, message, run_id=self.run_id, stage=stage.value, partition=partition_key, **fields)

    def run(self, partition_key: str, *, force_refresh: bool = False) -> PartitionOutcome:
        parse_partition_key(partition_key)
        started = time.monotonic()
        stage = PartitionStage.CHECK_CACHE

        if not force_refresh and self.cache.exists(partition_key):
            count = self.cache.count(partition_key)
            self._log(f"cache hit for {partition_key}", stage, partition_key, event="CACHE_HIT", status="cached", rows_out=count)
            return PartitionOutcome(partition_key=partition_key, status="cached", record_count=count)

        self._log(f"starting update for {partition_key}", stage, partition_key, event="PARTITION_START", status="ok")
        try:
            stage = PartitionStage.FETCH
            fine_areas = self.boundaries.load_fine_areas()
            fetched = self.fetcher.fetch(partition_key)

            stage = PartitionStage.STANDARDIZE
            standardized = standardize(fetched.records, partition_key, logger=self.logger)

            stage = PartitionStage.ASSIGN
            assigned = assign(
                standardized.records,
                fine_areas,
                area_epsg=self.boundaries.epsg,
                partition_key=partition_key,
                unmatched_warn_ratio=self.unmatched_warn_ratio,
                logger=self.logger,
            )

            stage = PartitionStage.VALIDATE
            report = validate_partition(assigned.records, partition_key, crs=assigned.crs)
            records = [CrimeRecord.from_dict(row) for row in assigned.records]
            records.sort(key=lambda r: (r.event_date, r.coarse_area_name, r.area_code, r.category, r.crime_id))

            stage = PartitionStage.WRITE
            self.cache.write(partition_key, records, overwrite=force_refresh)
        except PipelineError as exc:
            self._log(
                f"{stage.value} failed for {partition_key}: {exc}",
                stage,
                partition_key,
                event="PARTITION_FAIL",
                status="error",
                error_code=exc.error_code,
            )
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        self._log(
            f"completed {partition_key}: {partition_summary(records)}",
            PartitionStage.DONE,
            partition_key,
            event="PARTITION_DONE",
            status="ok",
            rows_in=len(fetched.records),
            rows_out=len(records),
            duration_ms=duration_ms,
        )
        return PartitionOutcome(
            partition_key=partition_key,
            status="written",
            record_count=len(records),
            fetched_count=len(fetched.records),
            dropped_count=standardized.dropped_count,
            unmatched_count=assigned.unmatched_count,
            duplicates_dropped=fetched.duplicates_dropped,
            failed_areas=list(fetched.failed_areas),
            warnings=list(report["warnings"]),
            duration_ms=duration_ms,
        )
