from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_SOURCE_TAGS: frozenset[str] = frozenset(
    {
        "precise_body",
        "water_body",
        "coastal_exclusion",
        "reverse_geocode",
        "basic_check",
        "city_model",
        "known_location",
        "interpolated",
        "rural_baseline",
        "user_override",
        "invalid_coordinates",
        "water_exclusion",
    }
)


@dataclass
class CoordinateError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message

    @classmethod
    def non_finite(cls, *, lat: Any, lon: Any) -> "CoordinateError":
        return cls(
            reason_code="coordinate_non_finite",
            message="Coordinates must be finite numbers.",
            details={"lat": repr(lat), "lon": repr(lon)},
        )

    @classmethod
    def out_of_range(cls, *, lat: float, lon: float) -> "CoordinateError":
        return cls(
            reason_code="coordinate_out_of_range",
            message=f"Coordinates out of range (lat={lat}, lon={lon}).",
            details={"lat": lat, "lon": lon},
        )


class StorageQuotaError(OSError):
    """The persistent cache tier refused a write because it is full."""

    def __init__(self, *, needed_bytes: int, max_bytes: int) -> None:
        super().__init__(f"storage quota exceeded ({needed_bytes} > {max_bytes} bytes)")
        self.needed_bytes = needed_bytes
        self.max_bytes = max_bytes


def normalize_source_tag(source: str, *, default: str = "basic_check") -> str:
    """Return `source` if its prefix is a known result source, else `default`.

    Tags look like ``precise_body:Mediterranean Sea``; only the part before the
    first colon is checked.
    """
    text = str(source or "").strip()
    prefix = text.split(":", 1)[0]
    if prefix in FROZEN_SOURCE_TAGS:
        return text
    return default
