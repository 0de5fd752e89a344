from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


EstimationStrategy = Literal["static", "network"]


def _running_in_docker() -> bool:
    """Best-effort check for container execution.

    Used only to pick sensible defaults. Environment variables always win.
    """
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_out_dir() -> str:
    # Keep logs and the persisted cache next to the backend unless told otherwise.
    if _running_in_docker():
        return "/app/out"
    return str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping model constants out of code for recalibration."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    estimation_strategy: EstimationStrategy = Field(default="static", alias="ESTIMATION_STRATEGY")

    siqs_cache_ttl_s: float = Field(default=900.0, gt=0.0, alias="SIQS_CACHE_TTL_S")
    siqs_cache_max_entries: int = Field(default=2000, ge=1, alias="SIQS_CACHE_MAX_ENTRIES")
    siqs_cache_persist: bool = Field(default=True, alias="SIQS_CACHE_PERSIST")
    siqs_cache_storage_max_bytes: int = Field(
        default=5 * 1024 * 1024,
        ge=1024,
        alias="SIQS_CACHE_STORAGE_MAX_BYTES",
    )
    cache_sweep_interval_s: float = Field(default=300.0, gt=0.0, alias="CACHE_SWEEP_INTERVAL_S")
    coordinate_key_precision: int = Field(default=4, ge=1, le=8, alias="COORDINATE_KEY_PRECISION")

    water_cache_ttl_s: float = Field(default=86_400.0, gt=0.0, alias="WATER_CACHE_TTL_S")
    water_cache_max_entries: int = Field(default=1000, ge=1, alias="WATER_CACHE_MAX_ENTRIES")

    reverse_geocode_url: str = Field(
        default="https://nominatim.openstreetmap.org/reverse",
        alias="REVERSE_GEOCODE_URL",
    )
    elevation_service_url: str = Field(
        default="https://api.open-meteo.com/v1/elevation",
        alias="ELEVATION_SERVICE_URL",
    )
    http_user_agent: str = Field(default="siqs-engine/0.3 (+astro-spots)", alias="HTTP_USER_AGENT")
    network_request_timeout_s: float = Field(
        default=8.0,
        ge=0.5,
        le=60.0,
        alias="NETWORK_REQUEST_TIMEOUT_S",
    )
    network_max_attempts: int = Field(default=2, ge=1, le=6, alias="NETWORK_MAX_ATTEMPTS")
    network_retry_backoff_base_ms: int = Field(
        default=200,
        ge=0,
        le=10_000,
        alias="NETWORK_RETRY_BACKOFF_BASE_MS",
    )
    network_retry_backoff_max_ms: int = Field(
        default=1500,
        ge=0,
        le=30_000,
        alias="NETWORK_RETRY_BACKOFF_MAX_MS",
    )

    # Light-pollution model calibration. These are defaults, not physical constants.
    rural_baseline_bortle: float = Field(default=3.5, ge=1.0, le=9.0, alias="RURAL_BASELINE_BORTLE")
    light_decay_rate_per_km: float = Field(default=0.04, gt=0.0, le=1.0, alias="LIGHT_DECAY_RATE_PER_KM")
    rayleigh_length_km: float = Field(default=180.0, gt=0.0, alias="RAYLEIGH_LENGTH_KM")
    default_humidity: float = Field(default=0.7, ge=0.0, le=1.0, alias="DEFAULT_HUMIDITY")
    multi_city_saturation_rate: float = Field(
        default=0.4,
        ge=0.0,
        le=5.0,
        alias="MULTI_CITY_SATURATION_RATE",
    )

    # Known-location table and Bortle source fusion
    known_location_interpolation_km: float = Field(
        default=200.0,
        gt=0.0,
        le=2000.0,
        alias="KNOWN_LOCATION_INTERPOLATION_KM",
    )
    fusion_min_confidence: float = Field(default=0.1, ge=0.0, le=1.0, alias="FUSION_MIN_CONFIDENCE")

    viable_max_bortle: float = Field(default=6.4, ge=1.0, le=9.0, alias="VIABLE_MAX_BORTLE")

    # Batch control
    batch_concurrency: int = Field(default=8, ge=1, le=64, alias="BATCH_CONCURRENCY")
    batch_max_points: int = Field(default=200, ge=1, le=5000, alias="BATCH_MAX_POINTS")

    @model_validator(mode="after")
    def _normalize(self) -> "Settings":
        self.log_level = str(self.log_level or "INFO").strip().upper() or "INFO"
        if self.network_retry_backoff_max_ms < self.network_retry_backoff_base_ms:
            self.network_retry_backoff_max_ms = self.network_retry_backoff_base_ms
        return self

    @property
    def network_enabled(self) -> bool:
        return self.estimation_strategy == "network"

    @property
    def cache_storage_path(self) -> Path:
        return Path(self.out_dir) / "cache" / "siqs_cache.ndjson"


settings = Settings()
