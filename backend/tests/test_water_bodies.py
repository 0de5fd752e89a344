from __future__ import annotations

import asyncio
from typing import Any

from siqs_engine.geo import Box
from siqs_engine.water_bodies import (
    WaterBodyClassifier,
    WaterCheckResult,
    classify_geocode_payload,
)


class _FakeGeocoder:
    def __init__(self, payload: dict[str, Any] | None) -> None:
        self.payload = payload
        self.calls = 0

    async def reverse(self, lat: float, lon: float) -> dict[str, Any] | None:  # noqa: ARG002
        self.calls += 1
        await asyncio.sleep(0.01)
        return self.payload


def test_mid_atlantic_point_is_water() -> None:
    classifier = WaterBodyClassifier()
    result = classifier.classify(40.0, -70.0)
    assert result.is_water is True
    assert result.confidence == 0.98
    assert result.source.startswith("precise_body:")
    assert classifier.is_water(40.0, -70.0)


def test_new_york_harbor_is_land() -> None:
    result = WaterBodyClassifier().classify(40.7, -74.0)
    assert result == WaterCheckResult(False, 0.95, "coastal_exclusion:New York Harbor")


def test_coastal_exclusion_beats_enclosing_ocean_box() -> None:
    classifier = WaterBodyClassifier(oceans=(Box("Test Atlantic", 30.0, 50.0, -80.0, -60.0),))
    assert classifier.is_water(40.7, -74.0) is False
    assert classifier.classify(40.7, -74.0).source == "coastal_exclusion:New York Harbor"
    assert classifier.is_water(45.0, -65.0) is True


def test_points_inside_ocean_boxes_are_water() -> None:
    classifier = WaterBodyClassifier()
    for lat, lon in [(30.0, 179.5), (30.0, -179.5), (-30.0, -120.0), (-20.0, -15.0), (-30.0, 80.0), (20.0, -40.0)]:
        assert classifier.is_water(lat, lon), (lat, lon)


def test_seas_and_lakes_are_water_body_sources() -> None:
    classifier = WaterBodyClassifier()
    assert classifier.classify(38.0, 5.0).source == "water_body:Mediterranean Sea"
    assert classifier.classify(43.0, 34.0).source == "water_body:Black Sea"
    assert classifier.classify(47.5, -87.0).source == "water_body:Lake Superior"
    assert classifier.classify(38.0, 5.0).confidence == 0.95


def test_land_points_fall_back_to_basic_check() -> None:
    classifier = WaterBodyClassifier()
    for lat, lon in [(48.8566, 2.3522), (39.9042, 116.4074), (45.0, 100.0), (-25.0, 133.0)]:
        result = classifier.classify(lat, lon)
        assert result == WaterCheckResult(False, 0.85, "basic_check"), (lat, lon)


def test_invalid_coordinates_are_not_water() -> None:
    classifier = WaterBodyClassifier()
    assert classifier.classify(float("nan"), 0.0) == WaterCheckResult(False, 0.0, "invalid_coordinates")
    assert classifier.is_water(95.0, 0.0) is False


def test_results_are_memoized() -> None:
    classifier = WaterBodyClassifier()
    first = classifier.classify(40.0, -70.0)
    second = classifier.classify(40.00001, -70.00001)
    assert first == second
    stats = classifier.cache.snapshot()
    assert stats["hits"] == 1
    assert stats["size"] == 1


def test_verify_land_location() -> None:
    classifier = WaterBodyClassifier()
    assert classifier.verify_land_location(48.8566, 2.3522) is True
    assert classifier.verify_land_location(40.7, -74.0) is True
    assert classifier.verify_land_location(40.0, -70.0) is False


def test_classify_geocode_payload_keywords() -> None:
    assert classify_geocode_payload({"category": "natural", "type": "water"}) is True
    assert classify_geocode_payload({"class": "waterway", "type": "river"}) is True
    assert classify_geocode_payload({"display_name": "Lake Geneva, Switzerland"}) is True
    assert classify_geocode_payload({"category": "natural", "type": "coastline"}) is True
    # Only the leading component is the feature; region names and prefixes do not count.
    assert classify_geocode_payload({"category": "place", "type": "village", "display_name": "Seaside, Bay County"}) is False
    assert classify_geocode_payload({"error": "Unable to geocode"}) is None
    assert classify_geocode_payload({}) is None


def test_async_static_match_skips_geocoder() -> None:
    geocoder = _FakeGeocoder({"category": "natural", "type": "water"})
    classifier = WaterBodyClassifier(geocoder=geocoder)
    result = asyncio.run(classifier.classify_async(40.0, -70.0))
    assert result.source.startswith("precise_body:")
    assert geocoder.calls == 0


def test_async_reverse_geocode_match() -> None:
    geocoder = _FakeGeocoder({"category": "natural", "type": "water", "display_name": "Lac de Test, France"})
    classifier = WaterBodyClassifier(geocoder=geocoder)
    result = asyncio.run(classifier.classify_async(45.5, 4.5))
    assert result == WaterCheckResult(True, 0.9, "reverse_geocode")
    assert asyncio.run(classifier.is_water_async(45.5, 4.5)) is True
    assert geocoder.calls == 1


def test_async_reverse_geocode_conclusive_land() -> None:
    geocoder = _FakeGeocoder({"category": "place", "type": "town", "display_name": "Vienne, Isere, France"})
    classifier = WaterBodyClassifier(geocoder=geocoder)
    result = asyncio.run(classifier.classify_async(45.5, 4.9))
    assert result == WaterCheckResult(False, 0.9, "reverse_geocode")


def test_async_geocoder_failure_falls_back_to_static() -> None:
    geocoder = _FakeGeocoder(None)
    classifier = WaterBodyClassifier(geocoder=geocoder)
    result = asyncio.run(classifier.classify_async(48.8566, 2.3522))
    assert result == WaterCheckResult(False, 0.85, "basic_check")
    assert geocoder.calls == 1


def test_async_concurrent_lookups_share_one_request() -> None:
    geocoder = _FakeGeocoder({"category": "natural", "type": "water"})
    classifier = WaterBodyClassifier(geocoder=geocoder)

    async def _run() -> list[WaterCheckResult]:
        return list(await asyncio.gather(*[classifier.classify_async(45.5, 4.5) for _ in range(4)]))

    results = asyncio.run(_run())
    assert geocoder.calls == 1
    assert all(r == results[0] for r in results)


def test_static_lookup_does_not_hide_the_geocoder() -> None:
    geocoder = _FakeGeocoder({"category": "natural", "type": "water", "display_name": "Etang, France"})
    classifier = WaterBodyClassifier(geocoder=geocoder)
    assert classifier.classify(48.5, 2.5) == WaterCheckResult(False, 0.85, "basic_check")
    assert classifier.verify_land_location(48.5, 2.5) is True

    result = asyncio.run(classifier.classify_async(48.5, 2.5))
    assert result == WaterCheckResult(True, 0.9, "reverse_geocode")
    assert geocoder.calls == 1
    # The static answer is still served to sync callers.
    assert classifier.classify(48.5, 2.5).source == "basic_check"
