from pathlib import Path

import pytest
import yaml

from london_crime.common.config_loader import load_config
from london_crime.common.errors import ConfigError

REPO_CONFIG = Path(__file__).resolve().parents[2] / "config"


def _copy_config(tmp_path: Path, mutate=None) -> Path:
    cfg = yaml.safe_load((REPO_CONFIG / "london.yml").read_text(encoding="utf-8"))
    if mutate is not None:
        mutate(cfg)
    target = tmp_path / "config"
    target.mkdir()
    (target / "london.yml").write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return target


def test_repo_config_loads():
    cfg = load_config(REPO_CONFIG)

    assert cfg.api["base_url"].startswith("https://data.police.uk/")
    assert cfg.boundaries["epsg"] == 27700
    assert cfg.publication["release_day"] == 15


def test_overlay_is_deep_merged(tmp_path):
    overlay = tmp_path / "overlay"
    overlay.mkdir()
    (overlay / "london.yml").write_text("api:\n  max_retries: 5\n", encoding="utf-8")

    cfg = load_config(REPO_CONFIG, overlay_config_dir=overlay)

    assert cfg.api["max_retries"] == 5
    assert cfg.api["timeout_read_seconds"] == 30


def test_non_mapping_overlay_is_rejected(tmp_path):
    overlay = tmp_path / "overlay"
    overlay.mkdir()
    (overlay / "london.yml").write_text("- 1\n- 2\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(REPO_CONFIG, overlay_config_dir=overlay)


def test_unknown_keys_are_rejected_unless_allowed(tmp_path):
    config_dir = _copy_config(tmp_path, lambda cfg: cfg["api"].update(extra=True))

    with pytest.raises(ConfigError, match="Unknown keys in api"):
        load_config(config_dir)
    assert load_config(config_dir, allow_unknown=True).api["extra"] is True


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError, match="Missing config file"):
        load_config(tmp_path)


@pytest.mark.parametrize(
    "mutate",
    [
        lambda cfg: cfg["api"].update(max_polygon_vertices=2),
        lambda cfg: cfg["quality"].update(unmatched_warn_ratio=1.5),
        lambda cfg: cfg["publication"].update(release_day=31),
        lambda cfg: cfg["api"].update(max_retries=0),
        lambda cfg: cfg["boundaries"]["fields"].pop("parent"),
    ],
)
def test_invalid_values_are_rejected(tmp_path, mutate):
    with pytest.raises(ConfigError):
        load_config(_copy_config(tmp_path, mutate))


def test_resolve_path(tmp_path):
    cfg = load_config(REPO_CONFIG)

    assert cfg.resolve_path("processed", tmp_path) == tmp_path / "processed"
    assert cfg.resolve_path("/abs/dir", tmp_path) == Path("/abs/dir")
