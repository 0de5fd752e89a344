from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any

from .cache import TTLCache
from .geo import Box, first_containing, is_valid_coordinate, normalize_longitude, rounded_key
from .live_data_sources import ReverseGeocoder
from .settings import settings


# Named harbours and bays that sit inside broad water boxes but score as land.
COASTAL_EXCLUSIONS: tuple[Box, ...] = (
    Box("New York Harbor", 40.4, 40.9, -74.3, -73.7),
    Box("Tokyo Bay", 35.3, 35.8, 139.6, 140.1),
    Box("Hong Kong Harbour", 22.2, 22.4, 114.05, 114.3),
    Box("San Francisco Bay", 37.4, 38.1, -122.6, -122.0),
    Box("Sydney Harbour", -33.9, -33.8, 151.15, 151.3),
)

# Broad open-ocean boxes, kept offshore of the major coastlines.
OCEANS: tuple[Box, ...] = (
    Box("North Pacific Ocean", 0.0, 50.0, 150.0, -130.0),
    Box("Eastern Pacific Ocean", 0.0, 20.0, -130.0, -106.0),
    Box("South Pacific Ocean", -60.0, -5.0, -175.0, -82.0),
    Box("Northwest Atlantic Ocean", 30.0, 40.5, -72.0, -60.0),
    Box("Central Atlantic Ocean", 10.0, 45.0, -60.0, -20.0),
    Box("North Atlantic Ocean", 45.0, 58.0, -45.0, -20.0),
    Box("South Atlantic Ocean", -50.0, 0.0, -30.0, 8.0),
    Box("Indian Ocean", -45.0, -10.0, 55.0, 110.0),
)

# Narrower seas, gulfs and lakes, checked after the oceans.
SEAS_AND_LAKES: tuple[Box, ...] = (
    Box("Mediterranean Sea", 36.5, 40.5, 1.0, 8.0),
    Box("Ionian Sea", 33.0, 38.0, 15.7, 21.0),
    Box("Levantine Sea", 32.0, 34.4, 26.0, 33.5),
    Box("Black Sea", 41.8, 44.2, 31.0, 38.0),
    Box("North Sea", 54.0, 57.5, 1.0, 6.0),
    Box("Baltic Sea", 54.8, 56.6, 17.5, 19.5),
    Box("Caribbean Sea", 12.5, 17.0, -82.0, -68.0),
    Box("Gulf of Mexico", 22.5, 28.5, -96.0, -84.0),
    Box("Arabian Sea", 5.0, 20.0, 58.0, 70.0),
    Box("Bay of Bengal", 5.0, 15.0, 82.0, 92.0),
    Box("South China Sea", 10.0, 20.0, 111.2, 117.0),
    Box("East China Sea", 26.0, 31.0, 123.0, 127.0),
    Box("Yellow Sea", 33.0, 37.0, 121.5, 125.0),
    Box("Bohai Sea", 38.3, 39.6, 118.5, 121.0),
    Box("Sea of Japan", 37.0, 42.0, 131.0, 137.0),
    Box("Caspian Sea", 38.5, 42.5, 50.7, 52.5),
    Box("Lake Superior", 47.0, 48.3, -89.5, -85.5),
    Box("Lake Michigan", 42.0, 45.5, -87.4, -86.5),
    Box("Lake Erie", 41.7, 42.3, -81.8, -80.0),
    Box("Lake Ontario", 43.4, 43.7, -79.0, -77.0),
    Box("Qinghai Lake", 36.6, 37.1, 99.7, 100.6),
)

WATER_KEYWORDS: tuple[str, ...] = (
    "water",
    "sea",
    "ocean",
    "bay",
    "gulf",
    "lake",
    "river",
    "reservoir",
    "lagoon",
    "strait",
    "coastline",
)
_KEYWORD_RE = re.compile(r"\b(" + "|".join(WATER_KEYWORDS) + r")\b")


@dataclass(frozen=True)
class WaterCheckResult:
    is_water: bool
    confidence: float
    source: str

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WaterCheckResult":
        return cls(
            is_water=bool(data["is_water"]),
            confidence=float(data["confidence"]),
            source=str(data["source"]),
        )


def classify_geocode_payload(payload: dict[str, Any]) -> bool | None:
    """Keyword-match a reverse-geocoding payload.

    Returns None when the payload says nothing useful (error body, no fields),
    so the caller keeps its static answer.
    """
    if not isinstance(payload, dict) or payload.get("error"):
        return None
    category = str(payload.get("category") or payload.get("class") or "").lower()
    kind = str(payload.get("type") or "").lower()
    display = str(payload.get("display_name") or "").lower()
    # Only the leading component names the feature itself; later ones are regions.
    feature_name = display.split(",", 1)[0].strip()
    if not (category or kind or feature_name):
        return None
    for text in (category, kind, feature_name):
        if text and _KEYWORD_RE.search(text.replace("_", " ")):
            return True
    return False


class WaterBodyClassifier:
    def __init__(
        self,
        *,
        cache: TTLCache | None = None,
        geocoder: ReverseGeocoder | None = None,
        exclusions: tuple[Box, ...] = COASTAL_EXCLUSIONS,
        oceans: tuple[Box, ...] = OCEANS,
        seas_and_lakes: tuple[Box, ...] = SEAS_AND_LAKES,
        precision: int | None = None,
    ) -> None:
        self._cache = cache or TTLCache(
            "water",
            default_ttl_s=settings.water_cache_ttl_s,
            max_entries=settings.water_cache_max_entries,
        )
        self._geocoder = geocoder
        self._exclusions = exclusions
        self._oceans = oceans
        self._seas_and_lakes = seas_and_lakes
        self._precision = settings.coordinate_key_precision if precision is None else int(precision)

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def _key(self, lat: float, lon: float, *, network: bool = False) -> str:
        # Static and geocoded answers differ for the same point; keep them apart.
        return rounded_key("water", lat, lon, precision=self._precision, extra=("net",) if network else ())

    def _static_classify(self, lat: float, lon: float) -> WaterCheckResult | None:
        exclusion = first_containing(self._exclusions, lat, lon)
        if exclusion is not None:
            return WaterCheckResult(False, 0.95, f"coastal_exclusion:{exclusion.name}")
        ocean = first_containing(self._oceans, lat, lon)
        if ocean is not None:
            return WaterCheckResult(True, 0.98, f"precise_body:{ocean.name}")
        body = first_containing(self._seas_and_lakes, lat, lon)
        if body is not None:
            return WaterCheckResult(True, 0.95, f"water_body:{body.name}")
        return None

    def classify(self, lat: float, lon: float) -> WaterCheckResult:
        if not is_valid_coordinate(lat, lon):
            return WaterCheckResult(False, 0.0, "invalid_coordinates")
        lat_f, lon_f = float(lat), normalize_longitude(float(lon))
        key = self._key(lat_f, lon_f)
        cached = self._cache.get(key)
        if cached is not None:
            return WaterCheckResult.from_dict(cached)
        result = self._static_classify(lat_f, lon_f) or WaterCheckResult(False, 0.85, "basic_check")
        self._cache.set(key, result.as_dict())
        return result

    async def classify_async(self, lat: float, lon: float) -> WaterCheckResult:
        if self._geocoder is None:
            return self.classify(lat, lon)
        if not is_valid_coordinate(lat, lon):
            return WaterCheckResult(False, 0.0, "invalid_coordinates")
        lat_f, lon_f = float(lat), normalize_longitude(float(lon))

        async def _compute() -> dict[str, Any]:
            static = self._static_classify(lat_f, lon_f)
            if static is not None:
                return static.as_dict()
            payload = await self._geocoder.reverse(lat_f, lon_f)
            verdict = classify_geocode_payload(payload) if payload is not None else None
            if verdict is None:
                return WaterCheckResult(False, 0.85, "basic_check").as_dict()
            return WaterCheckResult(verdict, 0.9, "reverse_geocode").as_dict()

        data = await self._cache.get_or_compute(self._key(lat_f, lon_f, network=True), _compute)
        return WaterCheckResult.from_dict(data)

    def is_water(self, lat: float, lon: float) -> bool:
        return self.classify(lat, lon).is_water

    async def is_water_async(self, lat: float, lon: float) -> bool:
        return (await self.classify_async(lat, lon)).is_water

    def verify_land_location(self, lat: float, lon: float) -> bool:
        result = self.classify(lat, lon)
        return not result.is_water or result.confidence < 0.85
