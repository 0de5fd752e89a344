from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .city_profiles import CITY_LIGHT_PROFILES, CityLightProfile
from .geo import GeoPoint, haversine_km
from .settings import settings


CORE_EDGE_FACTOR = 0.85
ELEVATION_DEAD_ZONE_M = 500.0
RURAL_CONFIDENCE = 0.45
MIN_CITY_CONFIDENCE = 0.4


@dataclass(frozen=True)
class LightModelConstants:
    baseline_bortle: float = 3.5
    decay_rate_per_km: float = 0.04
    rayleigh_length_km: float = 180.0
    humidity: float = 0.7
    saturation_rate: float = 0.4

    @classmethod
    def from_settings(cls) -> "LightModelConstants":
        return cls(
            baseline_bortle=settings.rural_baseline_bortle,
            decay_rate_per_km=settings.light_decay_rate_per_km,
            rayleigh_length_km=settings.rayleigh_length_km,
            humidity=settings.default_humidity,
            saturation_rate=settings.multi_city_saturation_rate,
        )


@dataclass(frozen=True)
class CityContribution:
    bortle: float
    confidence: float
    weight: float
    distance_km: float
    city: CityLightProfile

    def as_dict(self) -> dict[str, Any]:
        return {
            "city": self.city.name,
            "bortle": round(self.bortle, 3),
            "confidence": round(self.confidence, 3),
            "weight": round(self.weight, 4),
            "distance_km": round(self.distance_km, 2),
        }


@dataclass(frozen=True)
class CityLightEstimate:
    bortle: float
    confidence: float
    source: str
    contributions: tuple[CityContribution, ...] = ()


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _decay_rate(city: CityLightProfile, base_rate: float) -> float:
    # Bigger cities keep their glow further out.
    population_factor = math.log10(city.population / 1_000_000.0 + 1.0)
    return base_rate / (1.0 + 0.2 * population_factor)


def _attenuation(
    distance_km: float,
    *,
    city_elevation_m: float,
    target_elevation_m: float | None,
    constants: LightModelConstants,
) -> float:
    rayleigh = math.exp(-distance_km / constants.rayleigh_length_km)
    humidity_mult = 1.0 - constants.humidity * 0.2 * (1.0 - rayleigh)
    if target_elevation_m is None:
        view_mult = 1.0
    else:
        delta = target_elevation_m - city_elevation_m
        view_mult = 1.0 + (0.08 if delta > 0 else 0.03) * delta / 1000.0
    return rayleigh * humidity_mult * max(0.0, view_mult)


def compute_city_contribution(
    point: GeoPoint,
    city: CityLightProfile,
    *,
    target_elevation_m: float | None = None,
    constants: LightModelConstants | None = None,
) -> CityContribution | None:
    """Light-pollution contribution of one city at `point`, or None outside its influence.

    Inside the core the value falls linearly from `bortle_core` to 85% of it.
    Beyond the core, the excess over the rural baseline decays exponentially,
    then is attenuated by the atmosphere and adjusted by the city's lighting
    multipliers. Only the excess is attenuated or corrected; the baseline is
    left alone, so the value never increases with distance.
    """
    c = constants or LightModelConstants.from_settings()
    distance = haversine_km(point.lat, point.lon, city.lat, city.lon)
    if distance > city.radius_influence_km:
        return None

    baseline = c.baseline_bortle
    r_core = city.radius_core_km
    if distance <= r_core:
        position = distance / r_core
        raw = city.bortle_core * (1.0 - 0.15 * position)
        confidence = 0.95 - 0.10 * position
    else:
        from_edge = distance - r_core
        edge_excess = max(0.0, CORE_EDGE_FACTOR * city.bortle_core - baseline)
        raw = baseline + edge_excess * math.exp(-_decay_rate(city, c.decay_rate_per_km) * from_edge)
        confidence = max(MIN_CITY_CONFIDENCE, 0.85 * math.exp(-0.012 * from_edge))

    city_elevation = city.elevation_m if city.elevation_m is not None else 0.0
    excess = max(0.0, raw - baseline)
    excess *= _attenuation(
        distance,
        city_elevation_m=city_elevation,
        target_elevation_m=target_elevation_m,
        constants=c,
    )

    peak_excess = max(0.0, city.bortle_core - baseline)
    share = excess / peak_excess if peak_excess > 0 else 0.0
    excess += (city.coastal_factor - 1.0) * excess * 0.3
    excess += (city.industrial_index - 1.0) * 0.5 * share
    excess += (city.cultural_lighting - 1.0) * 0.3 * share
    excess -= (1.0 - city.lighting_efficiency) * 0.6 * share
    bortle = baseline + max(0.0, excess)

    if target_elevation_m is not None and city.elevation_m is not None:
        delta = target_elevation_m - city.elevation_m
        if delta > ELEVATION_DEAD_ZONE_M:
            bortle -= 0.4 * delta / 1000.0
        elif delta < -ELEVATION_DEAD_ZONE_M:
            bortle += 0.15 * (-delta) / 1000.0

    confidence = _clamp(confidence, 0.0, 1.0)
    return CityContribution(
        bortle=_clamp(bortle, 1.0, 9.0),
        confidence=confidence,
        weight=max(0.0, confidence * (1.0 - distance / city.radius_influence_km)),
        distance_km=distance,
        city=city,
    )


def aggregate_cities(
    point: GeoPoint,
    cities: Iterable[CityLightProfile],
    *,
    target_elevation_m: float | None = None,
    constants: LightModelConstants | None = None,
) -> CityLightEstimate:
    c = constants or LightModelConstants.from_settings()
    contributions = []
    for city in cities:
        contribution = compute_city_contribution(point, city, target_elevation_m=target_elevation_m, constants=c)
        if contribution is not None and contribution.weight > 0.0:
            contributions.append(contribution)

    if not contributions:
        return CityLightEstimate(bortle=c.baseline_bortle, confidence=RURAL_CONFIDENCE, source="rural_baseline")

    # Light domes overlap sub-additively: each weaker city counts for less.
    contributions.sort(key=lambda item: item.weight, reverse=True)
    total_weight = 0.0
    bortle_sum = 0.0
    confidence_sum = 0.0
    for i, contribution in enumerate(contributions):
        scaled = contribution.weight * math.exp(-i * c.saturation_rate)
        total_weight += scaled
        bortle_sum += contribution.bortle * scaled
        confidence_sum += contribution.confidence * scaled

    return CityLightEstimate(
        bortle=_clamp(bortle_sum / total_weight, 1.0, 9.0),
        confidence=_clamp(confidence_sum / total_weight, 0.0, 1.0),
        source=f"city_model:{contributions[0].city.name}",
        contributions=tuple(contributions),
    )


class CityLightModel:
    def __init__(
        self,
        profiles: Iterable[CityLightProfile] = CITY_LIGHT_PROFILES,
        *,
        constants: LightModelConstants | None = None,
    ) -> None:
        self.profiles: tuple[CityLightProfile, ...] = tuple(profiles)
        self.constants = constants or LightModelConstants.from_settings()

    def estimate(self, point: GeoPoint, *, target_elevation_m: float | None = None) -> CityLightEstimate:
        return aggregate_cities(
            point,
            self.profiles,
            target_elevation_m=target_elevation_m,
            constants=self.constants,
        )

    def nearest_city(self, point: GeoPoint) -> tuple[CityLightProfile, float] | None:
        best: tuple[CityLightProfile, float] | None = None
        for city in self.profiles:
            distance = haversine_km(point.lat, point.lon, city.lat, city.lon)
            if best is None or distance < best[1]:
                best = (city, distance)
        return best
