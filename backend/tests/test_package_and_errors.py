from __future__ import annotations

import ast
import importlib
from pathlib import Path

import pytest

from siqs_engine.model_data_errors import (
    FROZEN_SOURCE_TAGS,
    CoordinateError,
    StorageQuotaError,
    normalize_source_tag,
)
from siqs_engine.settings import Settings

PACKAGE_DIR = Path(__file__).resolve().parents[1] / "siqs_engine"

EXPECTED_PACKAGE_FILES = {
    "__init__.py",
    "bortle_sources.py",
    "cache.py",
    "city_model.py",
    "city_profiles.py",
    "geo.py",
    "live_data_sources.py",
    "logging_utils.py",
    "main.py",
    "metrics_store.py",
    "model_data_errors.py",
    "models.py",
    "settings.py",
    "siqs.py",
    "storage.py",
    "terrain.py",
    "water_bodies.py",
}


def _all_package_paths() -> list[Path]:
    return sorted(path for path in PACKAGE_DIR.glob("*.py") if path.is_file())


def test_package_inventory_is_complete() -> None:
    assert {path.name for path in _all_package_paths()} == EXPECTED_PACKAGE_FILES


@pytest.mark.parametrize("module_path", _all_package_paths(), ids=lambda p: p.name)
def test_package_module_parses_and_imports(module_path: Path) -> None:
    ast.parse(module_path.read_text(encoding="utf-8"), filename=str(module_path))
    name = "siqs_engine" if module_path.stem == "__init__" else f"siqs_engine.{module_path.stem}"
    assert importlib.import_module(name) is not None


def test_coordinate_error_is_a_value_error() -> None:
    err = CoordinateError.out_of_range(lat=95.0, lon=0.0)
    assert isinstance(err, ValueError)
    assert err.reason_code == "coordinate_out_of_range"
    assert "95.0" in str(err)
    assert CoordinateError.non_finite(lat=float("nan"), lon=1.0).details == {"lat": "nan", "lon": "1.0"}


def test_storage_quota_error_is_an_os_error() -> None:
    err = StorageQuotaError(needed_bytes=10, max_bytes=5)
    assert isinstance(err, OSError)
    assert err.needed_bytes == 10
    assert "10 > 5" in str(err)


def test_normalize_source_tag() -> None:
    assert normalize_source_tag("precise_body:Mediterranean Sea") == "precise_body:Mediterranean Sea"
    assert normalize_source_tag("water_exclusion:coastal_exclusion:Tokyo Bay").startswith("water_exclusion:")
    assert normalize_source_tag("rural_baseline") == "rural_baseline"
    assert normalize_source_tag("mystery:thing") == "basic_check"
    assert normalize_source_tag("", default="rural_baseline") == "rural_baseline"
    assert "city_model" in FROZEN_SOURCE_TAGS
    assert normalize_source_tag("known_location:Death Valley") == "known_location:Death Valley"
    assert normalize_source_tag("interpolated:Moab") == "interpolated:Moab"


def test_settings_read_env_aliases(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ESTIMATION_STRATEGY", "network")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("NETWORK_RETRY_BACKOFF_BASE_MS", "900")
    monkeypatch.setenv("NETWORK_RETRY_BACKOFF_MAX_MS", "100")
    monkeypatch.setenv("OUT_DIR", "/tmp/siqs-out")
    cfg = Settings()
    assert cfg.network_enabled is True
    assert cfg.log_level == "DEBUG"
    assert cfg.network_retry_backoff_max_ms == 900
    assert cfg.cache_storage_path == Path("/tmp/siqs-out") / "cache" / "siqs_cache.ndjson"


def test_settings_reject_unknown_strategy(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ESTIMATION_STRATEGY", "psychic")
    with pytest.raises(ValueError):
        Settings()
