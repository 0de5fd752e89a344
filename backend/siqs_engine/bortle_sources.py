from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

from .geo import GeoPoint, haversine_km
from .settings import settings


LocationKind = Literal["city", "town", "dark_site"]

KNOWN_MATCH_CONFIDENCE_CENTRE = 0.85
KNOWN_MATCH_CONFIDENCE_EDGE = 0.7
INTERPOLATION_CONFIDENCE_FLOOR = 0.3
INTERPOLATION_CONFIDENCE_SPAN = 0.25
INTERPOLATION_NEIGHBOURS = 3


@dataclass(frozen=True)
class KnownLocation:
    name: str
    country: str
    lat: float
    lon: float
    bortle: float
    radius_km: float
    kind: LocationKind


@dataclass(frozen=True)
class BortleReading:
    bortle: float
    confidence: float
    source: str


@dataclass(frozen=True)
class FusedBortle:
    bortle: float
    confidence: float
    source: str
    sources: tuple[str, ...]


def _loc(name: str, country: str, lat: float, lon: float, bortle: float, radius_km: float, kind: LocationKind) -> KnownLocation:
    return KnownLocation(name, country, lat, lon, bortle, radius_km, kind)


# Surveyed Bortle classes for well-known places, each valid within its radius.
KNOWN_LOCATIONS: tuple[KnownLocation, ...] = (
    _loc("New York", "USA", 40.7128, -74.0060, 9, 50, "city"),
    _loc("Los Angeles", "USA", 34.0522, -118.2437, 9, 50, "city"),
    _loc("Chicago", "USA", 41.8781, -87.6298, 8, 40, "city"),
    _loc("Houston", "USA", 29.7604, -95.3698, 8, 40, "city"),
    _loc("Phoenix", "USA", 33.4484, -112.0740, 8, 35, "city"),
    _loc("Philadelphia", "USA", 39.9526, -75.1652, 8, 35, "city"),
    _loc("London", "UK", 51.5074, -0.1278, 9, 50, "city"),
    _loc("Paris", "France", 48.8566, 2.3522, 9, 45, "city"),
    _loc("Tokyo", "Japan", 35.6762, 139.6503, 9, 60, "city"),
    _loc("Beijing", "China", 39.9042, 116.4074, 9, 60, "city"),
    _loc("Shanghai", "China", 31.2304, 121.4737, 9, 55, "city"),
    _loc("Mumbai", "India", 19.0760, 72.8777, 9, 45, "city"),
    _loc("Sao Paulo", "Brazil", -23.5505, -46.6333, 9, 50, "city"),
    _loc("Mexico City", "Mexico", 19.4326, -99.1332, 9, 50, "city"),
    _loc("Cairo", "Egypt", 30.0444, 31.2357, 8, 40, "city"),
    _loc("Delhi", "India", 28.7041, 77.1025, 9, 50, "city"),
    _loc("Hong Kong", "China", 22.3193, 114.1694, 9, 30, "city"),
    _loc("Sydney", "Australia", -33.8688, 151.2093, 8, 40, "city"),
    _loc("Moscow", "Russia", 55.7558, 37.6173, 8, 50, "city"),
    _loc("Istanbul", "Turkey", 41.0082, 28.9784, 8, 40, "city"),
    _loc("Portland", "USA", 45.5051, -122.6750, 7, 30, "city"),
    _loc("Denver", "USA", 39.7392, -104.9903, 7, 30, "city"),
    _loc("Austin", "USA", 30.2672, -97.7431, 7, 25, "city"),
    _loc("Nashville", "USA", 36.1627, -86.7816, 7, 25, "city"),
    _loc("Vancouver", "Canada", 49.2827, -123.1207, 7, 30, "city"),
    _loc("Manchester", "UK", 53.4808, -2.2426, 7, 25, "city"),
    _loc("Lyon", "France", 45.7640, 4.8357, 7, 25, "city"),
    _loc("Barcelona", "Spain", 41.3851, 2.1734, 7, 30, "city"),
    _loc("Munich", "Germany", 48.1351, 11.5820, 7, 30, "city"),
    _loc("Kyoto", "Japan", 35.0116, 135.7681, 7, 25, "city"),
    _loc("Sedona", "USA", 34.8697, -111.7610, 4, 15, "town"),
    _loc("Moab", "USA", 38.5733, -109.5498, 3, 20, "town"),
    _loc("Flagstaff", "USA", 35.1983, -111.6513, 5, 15, "town"),
    _loc("Ithaca", "USA", 42.4440, -76.5019, 5, 15, "town"),
    _loc("Banff", "Canada", 51.1784, -115.5708, 3, 25, "town"),
    _loc("Lake District", "UK", 54.4609, -3.0886, 4, 20, "town"),
    _loc("Chamonix", "France", 45.9237, 6.8694, 4, 20, "town"),
    _loc("Hallstatt", "Austria", 47.5622, 13.6493, 3, 20, "town"),
    _loc("Queenstown", "New Zealand", -45.0312, 168.6626, 4, 15, "town"),
    _loc("Death Valley", "USA", 36.5323, -116.9325, 1, 50, "dark_site"),
    _loc("Natural Bridges Dark Sky Park", "USA", 37.6034, -110.0135, 1, 40, "dark_site"),
    _loc("Big Bend National Park", "USA", 29.1275, -103.2425, 1, 50, "dark_site"),
    _loc("Cherry Springs State Park", "USA", 41.6655, -77.8167, 2, 30, "dark_site"),
    _loc("Jasper Dark Sky Preserve", "Canada", 52.8738, -118.0814, 2, 40, "dark_site"),
    _loc("NamibRand Nature Reserve", "Namibia", -24.9453, 16.0664, 1, 60, "dark_site"),
    _loc("Aoraki Mackenzie Dark Sky Reserve", "New Zealand", -43.9594, 170.2921, 1, 50, "dark_site"),
    _loc("Brecon Beacons National Park", "UK", 51.8475, -3.4595, 3, 25, "dark_site"),
    _loc("Pic du Midi", "France", 42.9361, 0.1418, 1, 30, "dark_site"),
    _loc("Alqueva Dark Sky Reserve", "Portugal", 38.3653, -7.3400, 2, 40, "dark_site"),
    _loc("La Palma", "Spain", 28.7642, -17.8887, 2, 30, "dark_site"),
    _loc("Atacama Desert", "Chile", -23.4500, -68.2000, 1, 100, "dark_site"),
    _loc("Uluru-Kata Tjuta National Park", "Australia", -25.3444, 131.0369, 2, 60, "dark_site"),
)


def _by_distance(point: GeoPoint, locations: tuple[KnownLocation, ...]) -> list[tuple[float, KnownLocation]]:
    return sorted(
        ((haversine_km(point.lat, point.lon, loc.lat, loc.lon), loc) for loc in locations),
        key=lambda item: item[0],
    )


class KnownLocationSource:
    """Bortle readings from the table of surveyed places.

    Inside a place's radius the nearest such place is returned directly.
    Otherwise the nearest few places within `interpolation_km` are blended by
    inverse squared distance, with a confidence that drops as the nearest
    neighbour gets further away. Beyond that range there is no reading.
    """

    def __init__(
        self,
        locations: tuple[KnownLocation, ...] = KNOWN_LOCATIONS,
        *,
        interpolation_km: float | None = None,
    ) -> None:
        self.locations = tuple(locations)
        self.interpolation_km = (
            settings.known_location_interpolation_km if interpolation_km is None else float(interpolation_km)
        )

    def lookup(self, point: GeoPoint) -> BortleReading | None:
        ranked = _by_distance(point, self.locations)
        for distance, loc in ranked:
            if distance > loc.radius_km:
                continue
            share = distance / loc.radius_km
            confidence = KNOWN_MATCH_CONFIDENCE_CENTRE - (KNOWN_MATCH_CONFIDENCE_CENTRE - KNOWN_MATCH_CONFIDENCE_EDGE) * share
            return BortleReading(float(loc.bortle), confidence, f"known_location:{loc.name}")
        return None

    def interpolate(self, point: GeoPoint) -> BortleReading | None:
        nearest = _by_distance(point, self.locations)[:INTERPOLATION_NEIGHBOURS]
        if not nearest or nearest[0][0] > self.interpolation_km:
            return None
        weighted = 0.0
        total = 0.0
        for distance, loc in nearest:
            weight = 1.0 / max(distance * distance, 0.1)
            weighted += loc.bortle * weight
            total += weight
        bortle = round(max(1.0, min(9.0, weighted / total)), 1)
        closeness = 1.0 - nearest[0][0] / self.interpolation_km
        confidence = INTERPOLATION_CONFIDENCE_FLOOR + INTERPOLATION_CONFIDENCE_SPAN * closeness
        return BortleReading(bortle, confidence, f"interpolated:{nearest[0][1].name}")

    def reading(self, point: GeoPoint) -> BortleReading | None:
        return self.lookup(point) or self.interpolate(point)


def fuse_readings(
    readings: list[BortleReading] | tuple[BortleReading, ...],
    *,
    min_confidence: float | None = None,
) -> FusedBortle | None:
    """Confidence-weighted mean of the usable readings.

    Readings below `min_confidence` or outside [1, 9] are dropped. The fused
    confidence is the mean weight, and the tag of the most confident reading
    becomes the fused source.
    """
    floor = settings.fusion_min_confidence if min_confidence is None else float(min_confidence)
    usable = [
        r
        for r in readings
        if math.isfinite(r.bortle) and math.isfinite(r.confidence) and r.confidence >= floor and 1.0 <= r.bortle <= 9.0
    ]
    if not usable:
        return None
    strongest = max(usable, key=lambda r: r.confidence)
    if len(usable) == 1:
        return FusedBortle(strongest.bortle, strongest.confidence, strongest.source, (strongest.source,))

    total = sum(r.confidence for r in usable)
    if total <= 0.0:
        return None
    bortle = sum(r.bortle * r.confidence for r in usable) / total
    return FusedBortle(
        bortle=round(bortle, 1),
        confidence=min(1.0, total / len(usable)),
        source=strongest.source,
        sources=tuple(r.source for r in usable),
    )
