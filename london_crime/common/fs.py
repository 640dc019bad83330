"""Filesystem helpers."""

from __future__ import annotations

import csv
import json
import os
import uuid
from pathlib import Path
from typing import Callable, Mapping


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_yaml(path: Path):
    import yaml

    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def temp_sibling(path: Path) -> Path:
    return path.with_name(f".{path.name}.tmp-{uuid.uuid4().hex}")


def atomic_write(path: Path, writer: Callable[[Path], None]) -> None:
    """Run ``writer`` against a temp file next to ``path`` and rename it into place.

    The rename is atomic on a single filesystem, so readers either see the
    previous file (or nothing) or the complete new one.
    """
    ensure_dir(path.parent)
    tmp_path = temp_sibling(path)
    try:
        writer(tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def write_json(path: Path, payload) -> None:
    def _dump(target: Path) -> None:
        with target.open("w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2, sort_keys=True, default=str)
            f.write("\n")

    atomic_write(path, _dump)


def append_csv_row(path: Path, headers: list[str], row: Mapping[str, object]) -> None:
    ensure_dir(path.parent)
    is_new = not path.exists()
    with path.open("a", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=headers, extrasaction="ignore")
        if is_new:
            writer.writeheader()
        writer.writerow(row)
