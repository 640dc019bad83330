"""CLI entrypoint for the London crime partition pipeline."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from london_crime.boundaries.repository import BoundaryRepository
from london_crime.cache.partition_cache import PartitionCache
from london_crime.common.config_loader import PipelineConfig, load_config
from london_crime.common.constants import EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from london_crime.common.errors import PipelineError
from london_crime.common.fs import write_json
from london_crime.common.http import CrimeApiClient, RetryConfig, TimeoutConfig
from london_crime.common.ids import generate_run_id
from london_crime.common.logging import build_logger, log_event
from london_crime.common.time_utils import is_partition_key, latest_available_month, utc_today
from london_crime.harvest.partition_fetcher import PartitionFetcher
from london_crime.pipeline.batch import BatchRunner, ProgressLedger
from london_crime.pipeline.orchestrator import PartitionPipeline
from london_crime.pipeline.reports import cache_totals, integrity_report, inventory_report, write_batch_summary

COMMANDS = ("update", "latest", "backfill", "missing", "prune", "integrity", "inventory", "summary")


@dataclass
class Components:
    boundaries: BoundaryRepository
    client: CrimeApiClient
    cache: PartitionCache
    pipeline: PartitionPipeline


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("start", nargs="?", default=None, help="partition key YYYY-MM")
    parser.add_argument("end", nargs="?", default=None, help="last partition key, defaults to latest published")
    parser.add_argument("--force", action="store_true", help="re-fetch and overwrite cached partitions")
    parser.add_argument("--keep", type=int, default=None, help="partitions to keep when pruning")
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args(argv)
    if args.command == "update" and not args.start:
        parser.error("update requires a partition key")
    for key in (args.start, args.end):
        if key is not None and not is_partition_key(key):
            parser.error(f"partition keys must be YYYY-MM, got {key!r}")
    return args


def build_components(cfg: PipelineConfig, data_dir: Path, logger, run_id: str) -> Components:
    api = cfg.api
    boundaries = BoundaryRepository(
        epsg=cfg.boundaries["epsg"],
        path=cfg.resolve_path(cfg.boundaries["path"], data_dir),
        fields=cfg.boundaries["fields"],
        max_polygon_vertices=api["max_polygon_vertices"],
        logger=logger,
    )
    client = CrimeApiClient(
        api["base_url"],
        timeout=TimeoutConfig(connect=api["timeout_connect_seconds"], read=api["timeout_read_seconds"]),
        retry=RetryConfig(max_retries=api["max_retries"], base_delay=api["base_delay_seconds"]),
        logger=logger,
    )
    fetcher = PartitionFetcher(boundaries, client, pacing_seconds=api["request_pacing_seconds"], logger=logger)
    cache = PartitionCache(cfg.resolve_path(cfg.cache["dir"], data_dir), logger=logger)
    pipeline = PartitionPipeline(
        boundaries,
        fetcher,
        cache,
        unmatched_warn_ratio=cfg.quality["unmatched_warn_ratio"],
        run_id=run_id,
        logger=logger,
    )
    return Components(boundaries=boundaries, client=client, cache=cache, pipeline=pipeline)


def _latest(cfg: PipelineConfig) -> str:
    publication = cfg.publication
    return latest_available_month(
        utc_today(),
        release_day=publication["release_day"],
        lag_months=publication["lag_months"],
    )


def _run_batch(args, cfg: PipelineConfig, components: Components, data_dir: Path, logger, run_id: str) -> int:
    batch_cfg = cfg.batch
    ledger = ProgressLedger(data_dir / "run_meta" / f"{run_id}.progress.csv")
    runner = BatchRunner(
        components.pipeline,
        components.cache,
        ledger,
        retry_rounds=batch_cfg["retry_rounds"],
        partition_pacing_seconds=batch_cfg["partition_pacing_seconds"],
        failure_pacing_seconds=batch_cfg["failure_pacing_seconds"],
        run_id=run_id,
        logger=logger,
    )
    start = args.start or batch_cfg["start_key"]
    end = args.end or _latest(cfg)
    if args.command == "missing":
        summary = runner.run_missing(start, end)
    else:
        summary = runner.run(start, end, force=args.force)
    write_batch_summary(data_dir, run_id, summary.to_dict())
    totals = cache_totals(components.cache)
    log_event(
        logger,
        f"cache now holds {totals['months']} months ({totals['first_key']} to {totals['last_key']}), "
        f"{totals['total_records']:,} crime records",
        run_id=run_id,
        stage="batch",
        event="CACHE_TOTALS",
        status="ok",
        rows_out=totals["total_records"],
    )
    return EXIT_PARTIAL if summary.failed else EXIT_SUCCESS


def run_command(args: argparse.Namespace) -> int:
    run_id = args.run_id or generate_run_id(args.command)
    data_dir = Path(args.data_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None

    logger = build_logger(run_id, data_dir=data_dir, level=args.log_level)
    cfg = load_config(Path(args.config_dir), overlay_config_dir=overlay_config_dir)
    components = build_components(cfg, data_dir, logger, run_id)
    log_event(logger, f"command {args.command}", run_id=run_id, stage="cli", event="COMMAND_START", status="ok")

    try:
        if args.command in ("update", "latest"):
            key = args.start if args.command == "update" else _latest(cfg)
            outcome = components.pipeline.run(key, force_refresh=args.force)
            return EXIT_PARTIAL if outcome.failed_areas else EXIT_SUCCESS
        if args.command in ("backfill", "missing"):
            return _run_batch(args, cfg, components, data_dir, logger, run_id)
        if args.command == "prune":
            keep = args.keep if args.keep is not None else cfg.cache["keep_months"]
            components.cache.prune(keep)
            return EXIT_SUCCESS
        if args.command == "integrity":
            rows = integrity_report(components.cache)
            for row in rows:
                log_event(logger, f"integrity {row}", run_id=run_id, stage="integrity", partition=row["partition_key"], status=row["status"])
            return EXIT_PARTIAL if any(row["status"] != "OK" for row in rows) else EXIT_SUCCESS
        if args.command == "inventory":
            rows = inventory_report(components.cache)
            write_json(data_dir / "reports" / f"inventory_{run_id}.json", {"run_id": run_id, "partitions": rows})
            for row in rows:
                log_event(logger, f"inventory {row}", run_id=run_id, stage="inventory", partition=row["partition_key"], status="error" if row["error"] else "ok")
            return EXIT_PARTIAL if any(row["error"] for row in rows) else EXIT_SUCCESS
        log_event(logger, f"cache summary {cache_totals(components.cache)}", run_id=run_id, stage="summary", status="ok")
        return EXIT_SUCCESS
    except PipelineError as exc:
        log_event(
            logger,
            f"command {args.command} failed: {exc}",
            level=logging.ERROR,
            run_id=run_id,
            stage="cli",
            event="COMMAND_FAIL",
            status="error",
            error_code=exc.error_code,
        )
        raise
    finally:
        components.client.close()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        return run_command(args)
    except PipelineError:
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
