from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Literal

from .geo import Box, is_valid_coordinate, normalize_longitude
from .live_data_sources import ElevationClient
from .logging_utils import log_event


TerrainType = Literal["mountain", "desert", "plains", "forest", "coastal", "urban", "unknown"]

# (threshold_m, air_clarity, bortle_reduction); the first row applies below 300 m.
ELEVATION_STEPS: tuple[tuple[float, float, float], ...] = (
    (0.0, 5.0, 0.0),
    (300.0, 5.5, 0.1),
    (500.0, 6.0, 0.2),
    (1000.0, 7.0, 0.4),
    (2000.0, 8.0, 0.7),
    (3000.0, 9.0, 1.0),
)

TERRAIN_BORTLE_OFFSETS: dict[str, float] = {
    "mountain": -0.3,
    "desert": -0.4,
    "forest": -0.2,
    "plains": 0.0,
    "coastal": 0.1,
    "urban": 0.5,
    "unknown": 0.0,
}

TYPE_DEFAULT_ELEVATION_M: dict[str, float] = {
    "mountain": 2500.0,
    "desert": 800.0,
    "plains": 300.0,
    "forest": 400.0,
    "coastal": 20.0,
    "urban": 100.0,
    "unknown": 300.0,
}

NAME_HINTS: tuple[tuple[TerrainType, tuple[str, ...]], ...] = (
    ("mountain", ("mountain", "mount", "peak", "ridge", "summit")),
    ("desert", ("desert", "dune")),
    ("forest", ("forest", "woods", "jungle")),
    ("coastal", ("coast", "beach", "shore", "harbor", "harbour", "bay")),
    ("urban", ("city", "downtown", "urban", "metro")),
    ("plains", ("plain", "prairie", "steppe", "grassland")),
)


@dataclass(frozen=True)
class TerrainRegion:
    box: Box
    terrain_type: TerrainType
    elevation_m: float


def _region(name: str, lat: tuple[float, float], lon: tuple[float, float], kind: TerrainType, elev: float) -> TerrainRegion:
    return TerrainRegion(Box(name, lat[0], lat[1], lon[0], lon[1]), kind, elev)


# First match wins, so narrow regions sit above the broad ones they overlap.
TERRAIN_REGIONS: tuple[TerrainRegion, ...] = (
    _region("Atacama Desert", (-25.0, -20.0), (-70.0, -68.0), "desert", 2400.0),
    _region("Taklamakan Desert", (37.0, 41.0), (78.0, 88.0), "desert", 1100.0),
    _region("Gobi Desert", (40.0, 45.0), (100.0, 115.0), "desert", 1200.0),
    _region("Hengduan Mountains", (25.0, 32.0), (98.0, 103.0), "mountain", 3000.0),
    _region("Qinling Mountains", (32.0, 34.5), (105.0, 112.0), "mountain", 2000.0),
    _region("Tianshan Mountains", (40.0, 45.0), (80.0, 95.0), "mountain", 2500.0),
    _region("Alps", (43.0, 48.0), (5.0, 16.0), "mountain", 1800.0),
    _region("Himalaya", (29.0, 36.0), (72.0, 95.0), "mountain", 4500.0),
    _region("US West Coast", (32.0, 48.0), (-125.0, -122.5), "coastal", 20.0),
    _region("US East Coast", (25.0, 41.0), (-76.0, -70.0), "coastal", 20.0),
    _region("East Asia Coast", (20.0, 40.0), (119.0, 123.0), "coastal", 20.0),
    _region("European Atlantic Coast", (36.0, 58.0), (-10.0, -8.0), "coastal", 20.0),
    _region("Tibetan Plateau", (28.0, 40.0), (80.0, 100.0), "mountain", 4500.0),
    _region("Rocky Mountains", (35.0, 60.0), (-125.0, -105.0), "mountain", 2200.0),
    _region("Andes", (-50.0, 10.0), (-80.0, -65.0), "mountain", 3000.0),
    _region("Mojave and Sonoran Deserts", (30.0, 38.0), (-120.0, -110.0), "desert", 800.0),
    _region("Sahara", (15.0, 35.0), (-15.0, 30.0), "desert", 400.0),
    _region("Arabian Desert", (15.0, 30.0), (35.0, 60.0), "desert", 500.0),
    _region("Australian Outback", (-30.0, -20.0), (120.0, 140.0), "desert", 350.0),
    _region("Amazon Basin", (-10.0, 2.0), (-73.0, -50.0), "forest", 150.0),
    _region("Congo Basin", (-5.0, 5.0), (12.0, 30.0), "forest", 400.0),
    _region("Siberian Taiga", (55.0, 65.0), (60.0, 130.0), "forest", 300.0),
    _region("Canadian Boreal Forest", (50.0, 60.0), (-120.0, -60.0), "forest", 400.0),
    _region("Great Plains", (30.0, 50.0), (-105.0, -95.0), "plains", 600.0),
    _region("Pampas", (-40.0, -30.0), (-65.0, -57.0), "plains", 100.0),
    _region("North China Plain", (34.0, 40.0), (114.0, 120.0), "plains", 50.0),
    _region("Eurasian Steppe", (45.0, 55.0), (40.0, 80.0), "plains", 200.0),
    _region("Indo-Gangetic Plain", (24.0, 30.0), (75.0, 88.0), "plains", 150.0),
)

CONTINENT_DEFAULTS: tuple[tuple[Box, float], ...] = (
    (Box("Asia", 0.0, 60.0, 60.0, 150.0), 800.0),
    (Box("North America", 15.0, 70.0, -170.0, -50.0), 500.0),
    (Box("Europe", 35.0, 70.0, -10.0, 40.0), 300.0),
    (Box("South America", -55.0, 15.0, -80.0, -35.0), 600.0),
    (Box("Africa", -35.0, 35.0, -20.0, 50.0), 600.0),
    (Box("Australia", -45.0, -10.0, 110.0, 155.0), 300.0),
)

OPEN_WATER_ELEVATION_M = 10.0
MOUNTAIN_PROMOTION_ELEVATION_M = 2000.0


def _step_for(elevation_m: float) -> tuple[float, float, float]:
    chosen = ELEVATION_STEPS[0]
    for step in ELEVATION_STEPS:
        if elevation_m >= step[0]:
            chosen = step
    return chosen


def air_clarity_for_elevation(elevation_m: float) -> float:
    return _step_for(float(elevation_m))[1]


def elevation_bortle_reduction(elevation_m: float) -> float:
    return _step_for(float(elevation_m))[2]


def terrain_bortle_adjustment(terrain_type: str, elevation_m: float) -> float:
    offset = TERRAIN_BORTLE_OFFSETS.get(terrain_type, 0.0)
    return round(offset - elevation_bortle_reduction(elevation_m), 3)


def terrain_hint_from_name(location_name: str | None) -> TerrainType | None:
    if not location_name:
        return None
    words = set(
        "".join(ch if ch.isalnum() else " " for ch in location_name.lower()).split()
    )
    for terrain_type, keywords in NAME_HINTS:
        for keyword in keywords:
            if keyword in words or f"{keyword}s" in words:
                return terrain_type
    return None


@dataclass(frozen=True)
class TerrainEstimate:
    terrain_type: TerrainType
    elevation_m: float
    air_clarity: float
    bortle_adjustment: float
    confidence: float
    source: str

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def build(cls, terrain_type: TerrainType, elevation_m: float, *, confidence: float, source: str) -> "TerrainEstimate":
        elev = round(float(elevation_m), 1)
        return cls(
            terrain_type=terrain_type,
            elevation_m=elev,
            air_clarity=air_clarity_for_elevation(elev),
            bortle_adjustment=terrain_bortle_adjustment(terrain_type, elev),
            confidence=confidence,
            source=source,
        )


class TerrainEstimator:
    """Static-table terrain guess with an optional elevation-service refinement."""

    def __init__(
        self,
        *,
        elevation_client: ElevationClient | None = None,
        regions: tuple[TerrainRegion, ...] = TERRAIN_REGIONS,
        continents: tuple[tuple[Box, float], ...] = CONTINENT_DEFAULTS,
    ) -> None:
        self._elevation_client = elevation_client
        self._regions = regions
        self._continents = continents

    def _region_for(self, lat: float, lon: float) -> TerrainRegion | None:
        for region in self._regions:
            if region.box.contains(lat, lon):
                return region
        return None

    def _continent_for(self, lat: float, lon: float) -> tuple[Box, float] | None:
        for box, elevation in self._continents:
            if box.contains(lat, lon):
                return box, elevation
        return None

    def estimate_terrain(self, lat: float, lon: float, *, location_name: str | None = None) -> TerrainEstimate:
        if not is_valid_coordinate(lat, lon):
            return TerrainEstimate.build("unknown", TYPE_DEFAULT_ELEVATION_M["unknown"], confidence=0.0, source="invalid_coordinates")
        lat_f, lon_f = float(lat), normalize_longitude(float(lon))

        hint = terrain_hint_from_name(location_name)
        region = self._region_for(lat_f, lon_f)
        continent = self._continent_for(lat_f, lon_f)

        if hint is not None:
            # A region of the same type knows the elevation better than the type default.
            if region is not None and region.terrain_type == hint:
                elevation = region.elevation_m
            else:
                elevation = TYPE_DEFAULT_ELEVATION_M[hint]
            return TerrainEstimate.build(hint, elevation, confidence=0.7, source=f"name_hint:{hint}")
        if region is not None:
            return TerrainEstimate.build(
                region.terrain_type,
                region.elevation_m,
                confidence=0.8,
                source=f"region:{region.box.name}",
            )
        if continent is not None:
            box, elevation = continent
            return TerrainEstimate.build("plains", elevation, confidence=0.6, source=f"continent:{box.name}")
        return TerrainEstimate.build("unknown", OPEN_WATER_ELEVATION_M, confidence=0.5, source="default")

    async def estimate_terrain_async(
        self,
        lat: float,
        lon: float,
        *,
        location_name: str | None = None,
    ) -> TerrainEstimate:
        static = self.estimate_terrain(lat, lon, location_name=location_name)
        if self._elevation_client is None or static.source == "invalid_coordinates":
            return static

        measured = await self._elevation_client.elevation_m(float(lat), normalize_longitude(float(lon)))
        if measured is None:
            log_event(
                "terrain_elevation_fallback",
                level=logging.INFO,
                lat=float(lat),
                lon=float(lon),
                terrain_source=static.source,
            )
            return static

        terrain_type = static.terrain_type
        if measured >= MOUNTAIN_PROMOTION_ELEVATION_M and terrain_type in ("plains", "unknown"):
            terrain_type = "mountain"
        return TerrainEstimate.build(terrain_type, measured, confidence=0.9, source="elevation_service")
