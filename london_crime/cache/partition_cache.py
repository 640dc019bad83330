"""Monthly Parquet partitions: one immutable file per ``YYYY-MM`` key.

Files are written to a temp sibling and renamed into place, so a reader never
sees a half-written partition. There is no cross-process lock: two writers
targeting the same cache directory and key at once is unsupported.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Sequence

import pyarrow as pa
import pyarrow.parquet as pq

from london_crime.common.constants import PARTITION_FILE_TEMPLATE
from london_crime.common.errors import CacheError, PartitionNotFound
from london_crime.common.fs import atomic_write, ensure_dir
from london_crime.common.logging import log_event
from london_crime.common.models import CRIME_RECORD_FIELDS, CrimeRecord
from london_crime.common.time_utils import month_range, parse_partition_key

PARTITION_FILE_RE = re.compile(r"^crime_data_(\d{4}-\d{2})\.parquet$")

CRIME_SCHEMA = pa.schema(
    [
        pa.field("crime_id", pa.string(), nullable=False),
        pa.field("category", pa.string(), nullable=False),
        pa.field("location_type", pa.string()),
        pa.field("location_subtype", pa.string()),
        pa.field("partition_key", pa.string(), nullable=False),
        pa.field("event_date", pa.date32(), nullable=False),
        pa.field("year", pa.int32(), nullable=False),
        pa.field("month_number", pa.int8(), nullable=False),
        pa.field("quarter", pa.int8(), nullable=False),
        pa.field("latitude", pa.float64(), nullable=False),
        pa.field("longitude", pa.float64(), nullable=False),
        pa.field("area_code", pa.string()),
        pa.field("area_name", pa.string()),
        pa.field("coarse_area_name", pa.string()),
        pa.field("outcome_category", pa.string(), nullable=False),
        pa.field("outcome_date", pa.string()),
    ]
)


def records_to_table(records: Sequence[CrimeRecord]) -> pa.Table:
    columns = {name: [getattr(record, name) for record in records] for name in CRIME_RECORD_FIELDS}
    return pa.Table.from_pydict(columns, schema=CRIME_SCHEMA)


def table_to_records(table: pa.Table) -> list[CrimeRecord]:
    return [CrimeRecord.from_dict(row) for row in table.to_pylist()]


class PartitionCache:
    def __init__(
        self,
        root: Path,
        *,
        compression: str = "zstd",
        logger: logging.Logger | None = None,
    ) -> None:
        self.root = root
        self.compression = compression
        self.logger = logger or logging.getLogger(__name__)

    def path_for(self, key: str) -> Path:
        parse_partition_key(key)
        return self.root / PARTITION_FILE_TEMPLATE.format(key=key)

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def write(self, key: str, records: Sequence[CrimeRecord], *, overwrite: bool = False) -> Path:
        path = self.path_for(key)
        if path.exists() and not overwrite:
            raise CacheError(f"Partition {key} is already cached; use a forced refresh to replace it")

        mismatched = [record.crime_id for record in records if record.partition_key != key]
        if mismatched:
            raise CacheError(f"{len(mismatched)} records do not belong to partition {key}")

        # Build the full table before touching disk.
        table = records_to_table(records)
        ensure_dir(self.root)
        atomic_write(path, lambda tmp: pq.write_table(table, tmp, compression=self.compression))

        log_event(
            self.logger,
            f"cached {len(records)} records for {key} ({path.stat().st_size} bytes)",
            stage="cache",
            partition=key,
            event="PARTITION_WRITE",
            status="ok",
            rows_out=len(records),
        )
        return path

    def read(self, key: str) -> list[CrimeRecord]:
        path = self.path_for(key)
        if not path.exists():
            raise PartitionNotFound(f"No cached data for {key}")
        table = pq.read_table(path)
        return table_to_records(table)

    def count(self, key: str) -> int:
        path = self.path_for(key)
        if not path.exists():
            raise PartitionNotFound(f"No cached data for {key}")
        return pq.ParquetFile(path).metadata.num_rows

    def read_many(self, keys: Iterable[str]) -> list[CrimeRecord]:
        records: list[CrimeRecord] = []
        for key in keys:
            try:
                records.extend(self.read(key))
            except PartitionNotFound:
                log_event(
                    self.logger,
                    f"no cached data for {key}; skipping",
                    level=logging.WARNING,
                    stage="cache",
                    partition=key,
                    event="PARTITION_MISSING",
                    status="warning",
                    error_code=PartitionNotFound.error_code,
                )
        return records

    def read_range(self, start_key: str, end_key: str) -> list[CrimeRecord]:
        return self.read_many(month_range(start_key, end_key))

    def list_keys(self) -> list[str]:
        if not self.root.exists():
            return []
        keys = []
        for path in self.root.iterdir():
            match = PARTITION_FILE_RE.match(path.name)
            if match and path.is_file():
                keys.append(match.group(1))
        return sorted(keys)

    def prune(self, keep_count: int) -> list[str]:
        """Delete the oldest partitions so that at most ``keep_count`` remain."""
        if keep_count < 0:
            raise ValueError("keep_count must be non-negative")
        keys = self.list_keys()
        if len(keys) <= keep_count:
            return []
        to_remove = keys[: len(keys) - keep_count]
        for key in to_remove:
            self.path_for(key).unlink(missing_ok=True)
        log_event(
            self.logger,
            f"pruned {len(to_remove)} partitions: {', '.join(to_remove)}",
            stage="cache",
            event="PARTITION_PRUNE",
            status="ok",
        )
        return to_remove

    def summary(self) -> dict:
        keys = self.list_keys()
        sizes = [self.path_for(key).stat().st_size for key in keys]
        return {
            "months": len(keys),
            "first_key": keys[0] if keys else None,
            "last_key": keys[-1] if keys else None,
            "total_bytes": sum(sizes),
            "average_bytes": round(sum(sizes) / len(sizes), 1) if sizes else 0.0,
        }
