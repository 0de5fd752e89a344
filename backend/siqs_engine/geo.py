from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from .model_data_errors import CoordinateError


EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(max(0.0, a))))


def normalize_longitude(lon: float) -> float:
    value = float(lon)
    if -180.0 <= value < 180.0:
        return value
    # 180.0 wraps to -180.0; both name the same meridian.
    return ((value + 180.0) % 360.0) - 180.0


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out


def is_valid_coordinate(lat: Any, lon: Any) -> bool:
    lat_f = _as_float(lat)
    lon_f = _as_float(lon)
    if lat_f is None or lon_f is None:
        return False
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lon: float

    @classmethod
    def parse(cls, lat: Any, lon: Any) -> "GeoPoint":
        lat_f = _as_float(lat)
        lon_f = _as_float(lon)
        if lat_f is None or lon_f is None or not (math.isfinite(lat_f) and math.isfinite(lon_f)):
            raise CoordinateError.non_finite(lat=lat, lon=lon)
        if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0):
            raise CoordinateError.out_of_range(lat=lat_f, lon=lon_f)
        return cls(lat=lat_f, lon=lon_f)

    def distance_km(self, other: "GeoPoint") -> float:
        return haversine_km(self.lat, self.lon, other.lat, other.lon)

    def as_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


def rounded_key(
    namespace: str,
    lat: float,
    lon: float,
    *,
    precision: int = 4,
    extra: tuple[Any, ...] = (),
) -> str:
    parts = [namespace, f"{float(lat):.{precision}f}", f"{float(lon):.{precision}f}"]
    for item in extra:
        parts.append("-" if item is None else str(item))
    return ":".join(parts)


@dataclass(frozen=True)
class Box:
    name: str
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.min_lon > self.max_lon

    def contains(self, lat: float, lon: float) -> bool:
        if not (self.min_lat <= lat <= self.max_lat):
            return False
        if self.crosses_antimeridian:
            return lon >= self.min_lon or lon <= self.max_lon
        return self.min_lon <= lon <= self.max_lon


def first_containing(boxes: tuple[Box, ...] | list[Box], lat: float, lon: float) -> Box | None:
    for box in boxes:
        if box.contains(lat, lon):
            return box
    return None
