"""Run identifier helpers."""

from __future__ import annotations

from datetime import datetime, timezone


def generate_run_id(command: str | None = None, now: datetime | None = None) -> str:
    """Sortable UTC id, tagged with the CLI command when given (``run-backfill-20240315T...Z``)."""
    stamp = (now or datetime.now(tz=timezone.utc)).strftime("%Y%m%dT%H%M%S%fZ")
    return f"run-{command}-{stamp}" if command else f"run-{stamp}"
