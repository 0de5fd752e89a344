from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any

from .bortle_sources import BortleReading, KnownLocationSource, fuse_readings
from .cache import TTLCache
from .city_model import CityLightModel
from .geo import GeoPoint, normalize_longitude, rounded_key
from .live_data_sources import ElevationClient, ReverseGeocoder
from .logging_utils import log_event
from .model_data_errors import CoordinateError, normalize_source_tag
from .settings import EstimationStrategy, settings
from .storage import JsonFileStorage
from .terrain import TerrainEstimate, TerrainEstimator
from .water_bodies import WaterBodyClassifier, WaterCheckResult


RURAL_BASELINE_BORTLE = 3.5
WATER_CONFIDENCE = 0.2
OVERRIDE_CONFIDENCE = 0.95
CITY_CONFIDENCE_SHARE = 0.8

QUALITY_THRESHOLDS: tuple[tuple[float, str], ...] = (
    (8.5, "Premium Dark Sky"),
    (7.5, "Excellent"),
    (6.5, "High-Quality"),
    (5.5, "Very Good"),
    (4.5, "Good"),
    (3.5, "Moderate"),
)

BORTLE_DESCRIPTIONS: dict[int, str] = {
    1: "Excellent dark sky, Milky Way casts shadows",
    2: "Truly dark sky, Milky Way highly structured",
    3: "Rural sky, some light pollution but good detail",
    4: "Rural/suburban transition, moderate light pollution",
    5: "Suburban sky, Milky Way washed out overhead",
    6: "Bright suburban sky, Milky Way only at zenith",
    7: "Suburban/urban transition, no Milky Way visible",
    8: "City sky, can see only Moon, planets, brightest stars",
    9: "Inner city sky, only very brightest celestial objects visible",
}


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def siqs_from_bortle(bortle: float) -> float:
    return round(_clamp(10.0 - (float(bortle) - 1.0) * 1.1, 0.0, 10.0), 1)


def quality_label(siqs: float) -> str:
    for threshold, label in QUALITY_THRESHOLDS:
        if siqs >= threshold:
            return label
    return "Basic"


def bortle_description(bortle: float) -> str:
    if not math.isfinite(bortle):
        return "Unknown light pollution level"
    return BORTLE_DESCRIPTIONS.get(int(math.floor(_clamp(bortle, 1.0, 9.0))), "Unknown light pollution level")


@dataclass(frozen=True)
class SiqsResult:
    bortle: float
    siqs: float
    confidence: float
    is_viable: bool
    source: str
    quality_label: str
    bortle_description: str
    lat: float | None = None
    lon: float | None = None
    location_name: str | None = None
    water: dict[str, Any] | None = None
    terrain: dict[str, Any] | None = None
    bortle_sources: list[str] | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SiqsResult":
        return cls(**{name: data.get(name) for name in cls.__dataclass_fields__})


def _finite_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


class SiqsEstimator:
    """Combines water, terrain, city-light and known-location signals into a SIQS result.

    Collaborators are injected so tests (and the API lifespan) control their
    lifetime. `strategy` picks between static tables only and the
    network-augmented classifiers; the sync entry points are always static
    and cache under their own keys.
    """

    def __init__(
        self,
        *,
        water: WaterBodyClassifier,
        terrain: TerrainEstimator,
        city_model: CityLightModel,
        cache: TTLCache,
        known_locations: KnownLocationSource | None = None,
        strategy: EstimationStrategy = "static",
        viable_max_bortle: float | None = None,
        precision: int | None = None,
        clients: tuple[ReverseGeocoder | ElevationClient, ...] = (),
    ) -> None:
        self.water = water
        self.terrain = terrain
        self.city_model = city_model
        self.known_locations = known_locations or KnownLocationSource()
        self.cache = cache
        self.strategy = strategy
        self.viable_max_bortle = settings.viable_max_bortle if viable_max_bortle is None else float(viable_max_bortle)
        self.precision = settings.coordinate_key_precision if precision is None else int(precision)
        self._clients = clients

    # ---- result builders ---------------------------------------------

    def _result(
        self,
        *,
        bortle: float,
        confidence: float,
        source: str,
        point: GeoPoint | None,
        location_name: str | None,
        water: WaterCheckResult | None = None,
        terrain: TerrainEstimate | None = None,
        siqs: float | None = None,
        is_viable: bool | None = None,
        bortle_sources: list[str] | None = None,
    ) -> SiqsResult:
        bortle = round(_clamp(bortle, 1.0, 9.0), 2)
        score = siqs_from_bortle(bortle) if siqs is None else siqs
        return SiqsResult(
            bortle=bortle,
            siqs=score,
            confidence=round(_clamp(confidence, 0.0, 1.0), 3),
            is_viable=(bortle <= self.viable_max_bortle) if is_viable is None else is_viable,
            source=normalize_source_tag(source),
            quality_label=quality_label(score),
            bortle_description=bortle_description(bortle),
            lat=point.lat if point else None,
            lon=point.lon if point else None,
            location_name=location_name,
            water=water.as_dict() if water else None,
            terrain=terrain.as_dict() if terrain else None,
            bortle_sources=bortle_sources,
        )

    def _invalid(self, exc: CoordinateError, location_name: str | None) -> SiqsResult:
        log_event("siqs_invalid_coordinates", reason_code=exc.reason_code, detail=exc.message)
        return self._result(
            bortle=RURAL_BASELINE_BORTLE,
            confidence=0.0,
            source="invalid_coordinates",
            point=None,
            location_name=location_name,
            siqs=0.0,
            is_viable=False,
        )

    def _water_result(self, point: GeoPoint, water: WaterCheckResult, location_name: str | None) -> SiqsResult:
        return self._result(
            bortle=RURAL_BASELINE_BORTLE,
            confidence=WATER_CONFIDENCE,
            source=f"water_exclusion:{water.source}",
            point=point,
            location_name=location_name,
            water=water,
            siqs=0.0,
            is_viable=False,
        )

    def _merge(
        self,
        point: GeoPoint,
        *,
        water: WaterCheckResult,
        terrain: TerrainEstimate,
        bortle_override: float | None,
        location_name: str | None,
    ) -> SiqsResult:
        if bortle_override is not None:
            return self._result(
                bortle=bortle_override,
                confidence=OVERRIDE_CONFIDENCE,
                source="user_override",
                point=point,
                location_name=location_name,
                water=water,
                terrain=terrain,
            )
        # Only a measured elevation feeds the city model; the table value is already in the terrain adjustment.
        target_elevation = terrain.elevation_m if terrain.source == "elevation_service" else None
        city = self.city_model.estimate(point, target_elevation_m=target_elevation)
        readings = [BortleReading(city.bortle, city.confidence, city.source)]
        known = self.known_locations.reading(point)
        if known is not None:
            readings.append(known)
        fused = fuse_readings(readings)
        if fused is None:
            bortle, light_confidence, source, sources = city.bortle, city.confidence, city.source, [city.source]
        else:
            bortle, light_confidence, source, sources = fused.bortle, fused.confidence, fused.source, list(fused.sources)

        # Terrain can lower confidence in the light estimate, never raise it.
        blended = CITY_CONFIDENCE_SHARE * light_confidence + (1.0 - CITY_CONFIDENCE_SHARE) * terrain.confidence
        return self._result(
            bortle=bortle + terrain.bortle_adjustment,
            confidence=min(light_confidence, blended),
            source=source,
            point=point,
            location_name=location_name,
            water=water,
            terrain=terrain,
            bortle_sources=sources,
        )

    # ---- estimation --------------------------------------------------

    def estimate(
        self,
        lat: float,
        lon: float,
        *,
        bortle_override: float | None = None,
        location_name: str | None = None,
    ) -> SiqsResult:
        try:
            point = GeoPoint.parse(lat, lon)
        except CoordinateError as exc:
            return self._invalid(exc, location_name)
        point = GeoPoint(point.lat, normalize_longitude(point.lon))

        water = self.water.classify(point.lat, point.lon)
        if water.is_water:
            return self._water_result(point, water, location_name)
        terrain = self.terrain.estimate_terrain(point.lat, point.lon, location_name=location_name)
        return self._merge(
            point,
            water=water,
            terrain=terrain,
            bortle_override=_finite_or_none(bortle_override),
            location_name=location_name,
        )

    async def estimate_async(
        self,
        lat: float,
        lon: float,
        *,
        bortle_override: float | None = None,
        location_name: str | None = None,
    ) -> SiqsResult:
        if self.strategy != "network":
            return self.estimate(lat, lon, bortle_override=bortle_override, location_name=location_name)
        try:
            point = GeoPoint.parse(lat, lon)
        except CoordinateError as exc:
            return self._invalid(exc, location_name)
        point = GeoPoint(point.lat, normalize_longitude(point.lon))

        water = await self.water.classify_async(point.lat, point.lon)
        if water.is_water:
            return self._water_result(point, water, location_name)
        terrain = await self.terrain.estimate_terrain_async(point.lat, point.lon, location_name=location_name)
        return self._merge(
            point,
            water=water,
            terrain=terrain,
            bortle_override=_finite_or_none(bortle_override),
            location_name=location_name,
        )

    # ---- cached entry points -----------------------------------------

    def cache_key(
        self,
        lat: float,
        lon: float,
        *,
        bortle_override: float | None,
        location_name: str | None,
        network: bool = False,
    ) -> str:
        override = _finite_or_none(bortle_override)
        extra: tuple[Any, ...] = (None if override is None else round(override, 2), (location_name or "").strip().lower() or None)
        if network:
            extra += ("net",)
        return rounded_key("siqs", lat, lon, precision=self.precision, extra=extra)

    async def get_siqs(
        self,
        lat: float,
        lon: float,
        *,
        bortle_override: float | None = None,
        location_name: str | None = None,
    ) -> SiqsResult:
        try:
            GeoPoint.parse(lat, lon)
        except CoordinateError as exc:
            return self._invalid(exc, location_name)
        key = self.cache_key(
            lat,
            lon,
            bortle_override=bortle_override,
            location_name=location_name,
            network=self.strategy == "network",
        )

        async def _compute() -> dict[str, Any]:
            result = await self.estimate_async(lat, lon, bortle_override=bortle_override, location_name=location_name)
            return result.as_dict()

        data = await self.cache.get_or_compute(key, _compute)
        return SiqsResult.from_dict(data)

    def get_siqs_sync(
        self,
        lat: float,
        lon: float,
        *,
        bortle_override: float | None = None,
        location_name: str | None = None,
    ) -> SiqsResult:
        try:
            GeoPoint.parse(lat, lon)
        except CoordinateError as exc:
            return self._invalid(exc, location_name)
        key = self.cache_key(lat, lon, bortle_override=bortle_override, location_name=location_name)
        data = self.cache.get_or_compute_sync(
            key,
            lambda: self.estimate(lat, lon, bortle_override=bortle_override, location_name=location_name).as_dict(),
        )
        return SiqsResult.from_dict(data)

    # ---- lifecycle ---------------------------------------------------

    def start(self) -> None:
        self.cache.warm_from_storage()
        self.cache.start_sweeper(settings.cache_sweep_interval_s)
        self.water.cache.start_sweeper(settings.cache_sweep_interval_s)

    async def aclose(self) -> None:
        await self.cache.destroy()
        await self.water.cache.destroy()
        for client in self._clients:
            await client.aclose()


def build_estimator(
    *,
    strategy: EstimationStrategy | None = None,
    persist: bool | None = None,
) -> SiqsEstimator:
    network = settings.network_enabled if strategy is None else strategy == "network"
    storage = None
    if settings.siqs_cache_persist if persist is None else persist:
        storage = JsonFileStorage(settings.cache_storage_path, max_bytes=settings.siqs_cache_storage_max_bytes)

    geocoder: ReverseGeocoder | None = None
    elevation: ElevationClient | None = None
    if network:
        geocoder = ReverseGeocoder(base_url=settings.reverse_geocode_url)
        elevation = ElevationClient(base_url=settings.elevation_service_url)

    return SiqsEstimator(
        water=WaterBodyClassifier(geocoder=geocoder),
        terrain=TerrainEstimator(elevation_client=elevation),
        city_model=CityLightModel(),
        known_locations=KnownLocationSource(),
        cache=TTLCache(
            "siqs",
            default_ttl_s=settings.siqs_cache_ttl_s,
            max_entries=settings.siqs_cache_max_entries,
            storage=storage,
        ),
        strategy="network" if network else "static",
        clients=tuple(client for client in (geocoder, elevation) if client is not None),
    )
