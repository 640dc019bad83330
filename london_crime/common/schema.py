"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from london_crime.common.errors import ConfigError

SECTION_KEYS = {
    "api": {
        "base_url",
        "timeout_connect_seconds",
        "timeout_read_seconds",
        "max_retries",
        "base_delay_seconds",
        "request_pacing_seconds",
        "max_polygon_vertices",
    },
    "boundaries": {"path", "epsg", "fields"},
    "cache": {"dir", "keep_months"},
    "batch": {"start_key", "retry_rounds", "partition_pacing_seconds", "failure_pacing_seconds"},
    "quality": {"unmatched_warn_ratio"},
    "publication": {"release_day", "lag_months"},
}
BOUNDARY_FIELD_KEYS = {"code", "name", "parent"}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_positive(value, ctx: str, *, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{ctx} must be a number")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{ctx} must be {'non-negative' if allow_zero else 'positive'}")


def validate_pipeline_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    _assert_required_keys(cfg, set(SECTION_KEYS), "pipeline config")
    _assert_no_unknown_keys(cfg, set(SECTION_KEYS), "pipeline config", allow_unknown)

    for section, keys in SECTION_KEYS.items():
        _assert_required_keys(cfg[section], keys, section)
        _assert_no_unknown_keys(cfg[section], keys, section, allow_unknown)

    api = cfg["api"]
    _assert_positive(api["max_retries"], "api.max_retries")
    _assert_positive(api["base_delay_seconds"], "api.base_delay_seconds", allow_zero=True)
    _assert_positive(api["request_pacing_seconds"], "api.request_pacing_seconds", allow_zero=True)
    if not isinstance(api["max_polygon_vertices"], int) or api["max_polygon_vertices"] < 3:
        raise ConfigError("api.max_polygon_vertices must be an integer >= 3")

    _assert_required_keys(cfg["boundaries"]["fields"], BOUNDARY_FIELD_KEYS, "boundaries.fields")
    _assert_positive(cfg["boundaries"]["epsg"], "boundaries.epsg")

    _assert_positive(cfg["cache"]["keep_months"], "cache.keep_months")
    _assert_positive(cfg["batch"]["retry_rounds"], "batch.retry_rounds", allow_zero=True)

    ratio = cfg["quality"]["unmatched_warn_ratio"]
    _assert_positive(ratio, "quality.unmatched_warn_ratio", allow_zero=True)
    if ratio > 1:
        raise ConfigError("quality.unmatched_warn_ratio must be <= 1")

    release_day = cfg["publication"]["release_day"]
    if not isinstance(release_day, int) or not 1 <= release_day <= 28:
        raise ConfigError("publication.release_day must be an integer between 1 and 28")

    return cfg
