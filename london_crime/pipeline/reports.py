"""Partition summaries, cache integrity and inventory checks, and batch run reports."""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Iterable, Sequence

from london_crime.cache.partition_cache import PartitionCache
from london_crime.common.constants import NO_OUTCOME
from london_crime.common.errors import PipelineError
from london_crime.common.fs import write_json
from london_crime.common.models import CrimeRecord

INVENTORY_METRICS = ("records", "file_size_mb", "categories", "boroughs", "lsoas", "with_outcomes")


def partition_summary(records: Sequence[CrimeRecord]) -> dict:
    if not records:
        return {"total_crimes": 0}
    categories = Counter(record.category for record in records)
    top_category, _count = sorted(categories.items(), key=lambda item: (-item[1], item[0]))[0]
    dates = [record.event_date for record in records]
    return {
        "total_crimes": len(records),
        "date_range": f"{min(dates).isoformat()} to {max(dates).isoformat()}",
        "categories": len(categories),
        "boroughs": len({record.coarse_area_name for record in records if record.coarse_area_name}),
        "lsoas": len({record.area_code for record in records if record.area_code}),
        "top_category": top_category,
        "with_outcomes": sum(
            1 for record in records if record.outcome_category and record.outcome_category != NO_OUTCOME
        ),
    }


def _integrity_row(key: str, records: Sequence[CrimeRecord]) -> dict:
    ids = Counter(record.crime_id for record in records)
    return {
        "partition_key": key,
        "records": len(records),
        "missing_area_code": sum(1 for record in records if not record.area_code),
        "missing_borough": sum(1 for record in records if not record.coarse_area_name),
        "duplicate_ids": sum(count - 1 for count in ids.values() if count > 1),
        "date_consistency": all(record.event_date.strftime("%Y-%m") == key for record in records),
        "status": "OK",
    }


def integrity_report(cache: PartitionCache, keys: Iterable[str] | None = None) -> list[dict]:
    rows = []
    for key in keys if keys is not None else cache.list_keys():
        try:
            row = _integrity_row(key, cache.read(key))
        except (PipelineError, OSError, ValueError) as exc:
            rows.append(
                {
                    "partition_key": key,
                    "records": None,
                    "missing_area_code": None,
                    "missing_borough": None,
                    "duplicate_ids": None,
                    "date_consistency": None,
                    "status": f"ERROR: {exc}",
                }
            )
            continue
        if row["missing_area_code"] or row["missing_borough"] or row["duplicate_ids"] or not row["date_consistency"]:
            row["status"] = "ISSUES"
        rows.append(row)
    return rows


def inventory_report(cache: PartitionCache, keys: Iterable[str] | None = None) -> list[dict]:
    """Per-month content and size inventory of the cache."""
    rows = []
    for key in keys if keys is not None else cache.list_keys():
        try:
            records = cache.read(key)
            size_bytes = cache.path_for(key).stat().st_size
        except (PipelineError, OSError, ValueError) as exc:
            rows.append({"partition_key": key, **dict.fromkeys(INVENTORY_METRICS), "error": str(exc)})
            continue
        summary = partition_summary(records)
        rows.append(
            {
                "partition_key": key,
                "records": len(records),
                "file_size_mb": round(size_bytes / 1024**2, 2),
                "categories": summary.get("categories", 0),
                "boroughs": summary.get("boroughs", 0),
                "lsoas": summary.get("lsoas", 0),
                "with_outcomes": summary.get("with_outcomes", 0),
                "error": None,
            }
        )
    return rows


def cache_totals(cache: PartitionCache) -> dict:
    """Cache summary plus the number of crime records across every cached month."""
    total = 0
    unreadable: list[str] = []
    for key in cache.list_keys():
        try:
            total += cache.count(key)
        except (PipelineError, OSError, ValueError):
            unreadable.append(key)
    return {**cache.summary(), "total_records": total, "unreadable": unreadable}


def write_batch_summary(data_dir: Path, run_id: str, payload: dict) -> Path:
    summary_path = data_dir / "reports" / f"batch_{run_id}.json"
    write_json(summary_path, {"run_id": run_id, **payload})
    return summary_path
