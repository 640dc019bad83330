"""Sequential multi-month backfill with resume, retry rounds and a progress ledger."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable

from london_crime.cache.partition_cache import PartitionCache
from london_crime.common.constants import LEDGER_HEADERS
from london_crime.common.errors import BoundaryUnavailable, PipelineError
from london_crime.common.fs import append_csv_row
from london_crime.common.logging import log_event
from london_crime.common.time_utils import month_range, utc_timestamp_iso
from london_crime.pipeline.orchestrator import PartitionPipeline

PROGRESS_EVERY = 10


class ProgressLedger:
    """Append-only CSV audit trail of partition outcomes for one batch run."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def record(self, partition_key: str, status: str, record_count: int | None = None) -> None:
        append_csv_row(
            self.path,
            LEDGER_HEADERS,
            {
                "partition_key": partition_key,
                "status": status,
                "record_count": "NA" if record_count is None else record_count,
                "timestamp": utc_timestamp_iso(),
            },
        )


@dataclass
class BatchSummary:
    start_key: str
    end_key: str
    succeeded: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    record_counts: dict[str, int] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return "partial" if self.failed else "success"

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["status"] = self.status
        return payload


class BatchRunner:
    def __init__(
        self,
        pipeline: PartitionPipeline,
        cache: PartitionCache,
        ledger: ProgressLedger,
        *,
        retry_rounds: int = 2,
        partition_pacing_seconds: float = 2.0,
        failure_pacing_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        run_id: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.cache = cache
        self.ledger = ledger
        self.retry_rounds = retry_rounds
        self.partition_pacing_seconds = partition_pacing_seconds
        self.failure_pacing_seconds = failure_pacing_seconds
        self.sleep = sleep
        self.run_id = run_id
        self.logger = logger or logging.getLogger(__name__)

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            self.sleep(seconds)

    def _attempt(self, key: str, force: bool, summary: BatchSummary) -> bool:
        try:
            outcome = self.pipeline.run(key, force_refresh=force)
        except BoundaryUnavailable:
            raise
        except PipelineError as exc:
            summary.errors[key] = f"{exc.error_code}: {exc}"
            return False
        except Exception as exc:
            summary.errors[key] = f"UNEXPECTED_ERROR: {exc}"
            log_event(
                self.logger,
                f"unexpected failure for {key}: {exc!r}",
                level=logging.ERROR,
                run_id=self.run_id,
                stage="batch",
                partition=key,
                event="PARTITION_FAIL",
                status="error",
                error_code="UNEXPECTED_ERROR",
            )
            return False
        summary.record_counts[key] = outcome.record_count
        summary.errors.pop(key, None)
        return True

    def _log_progress(self, processed: int, total: int, summary: BatchSummary) -> None:
        done = len(summary.succeeded) + len(summary.cached)
        log_event(
            self.logger,
            f"progress {processed}/{total}: {done} ok, {len(summary.failed)} failed "
            f"({done / processed:.1%} success rate)",
            run_id=self.run_id,
            stage="batch",
            event="BATCH_PROGRESS",
            status="ok",
        )

    def run(self, start_key: str, end_key: str, *, force: bool = False) -> BatchSummary:
        """Process every month in ``[start_key, end_key]``, skipping cached ones unless forced."""
        return self._run_keys(month_range(start_key, end_key), start_key, end_key, force=force)

    def run_missing(self, start_key: str, end_key: str) -> BatchSummary:
        """Process only the months in the range that are not cached yet."""
        keys = [key for key in month_range(start_key, end_key) if not self.cache.exists(key)]
        return self._run_keys(keys, start_key, end_key, force=False)

    def _run_keys(self, keys: list[str], start_key: str, end_key: str, *, force: bool) -> BatchSummary:
        summary = BatchSummary(start_key=start_key, end_key=end_key)
        log_event(
            self.logger,
            f"batch over {len(keys)} partitions from {start_key} to {end_key}",
            run_id=self.run_id,
            stage="batch",
            event="BATCH_START",
            status="ok",
        )

        for position, key in enumerate(keys, start=1):
            is_last = position == len(keys)
            if not force and self.cache.exists(key):
                summary.cached.append(key)
                self.ledger.record(key, "CACHED", self.cache.count(key))
            elif self._attempt(key, force, summary):
                summary.succeeded.append(key)
                self.ledger.record(key, "SUCCESS", summary.record_counts[key])
                if not is_last:
                    self._pause(self.partition_pacing_seconds)
            else:
                summary.failed.append(key)
                self.ledger.record(key, "ERROR")
                if not is_last:
                    self._pause(self.failure_pacing_seconds)

            if position % PROGRESS_EVERY == 0:
                self._log_progress(position, len(keys), summary)

        self._retry_failed(summary, force)

        log_event(
            self.logger,
            f"batch finished: {len(summary.succeeded)} succeeded, {len(summary.cached)} cached, "
            f"{len(summary.failed)} failed",
            level=logging.WARNING if summary.failed else logging.INFO,
            run_id=self.run_id,
            stage="batch",
            event="BATCH_END",
            status=summary.status,
        )
        return summary

    def _retry_failed(self, summary: BatchSummary, force: bool) -> None:
        for round_number in range(1, self.retry_rounds + 1):
            if not summary.failed:
                return
            log_event(
                self.logger,
                f"retry round {round_number}/{self.retry_rounds} for {len(summary.failed)} partitions",
                run_id=self.run_id,
                stage="batch",
                event="BATCH_RETRY",
                status="retry",
                attempt=round_number,
            )
            self._pause(self.failure_pacing_seconds)
            still_failed: list[str] = []
            for key in summary.failed:
                if self._attempt(key, force, summary):
                    summary.succeeded.append(key)
                    summary.retried.append(key)
                    self.ledger.record(key, "SUCCESS_RETRY", summary.record_counts[key])
                    self._pause(self.partition_pacing_seconds)
                else:
                    still_failed.append(key)
                    self.ledger.record(key, f"ERROR_RETRY_{round_number}")
                    self._pause(self.failure_pacing_seconds)
            summary.failed = still_failed

        if summary.failed:
            log_event(
                self.logger,
                f"persistently failing partitions: {', '.join(summary.failed)}",
                level=logging.WARNING,
                run_id=self.run_id,
                stage="batch",
                event="BATCH_FAILED_KEYS",
                status="error",
            )
