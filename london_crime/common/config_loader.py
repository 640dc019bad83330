"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from london_crime.common.errors import ConfigError
from london_crime.common.fs import read_yaml
from london_crime.common.schema import validate_pipeline_config

CONFIG_FILENAME = "london.yml"


@dataclass(frozen=True)
class PipelineConfig:
    api: dict
    boundaries: dict
    cache: dict
    batch: dict
    quality: dict
    publication: dict

    def resolve_path(self, value: str, data_dir: Path) -> Path:
        path = Path(value)
        return path if path.is_absolute() else data_dir / path


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    base = read_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if overlay is None:
        return base
    if not isinstance(overlay, dict):
        raise ConfigError(f"Overlay config must be a mapping: {overlay_path}")
    return _deep_merge(base, overlay)


def load_config(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> PipelineConfig:
    overlay_path = overlay_config_dir / CONFIG_FILENAME if overlay_config_dir is not None else None
    cfg = _load_yaml_with_overlay(config_dir / CONFIG_FILENAME, overlay_path)
    cfg = validate_pipeline_config(cfg, allow_unknown=allow_unknown)
    return PipelineConfig(**{section: cfg[section] for section in PipelineConfig.__dataclass_fields__})
