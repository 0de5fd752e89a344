from __future__ import annotations

import math

import pytest

from siqs_engine.geo import (
    Box,
    GeoPoint,
    first_containing,
    haversine_km,
    is_valid_coordinate,
    normalize_longitude,
    rounded_key,
)
from siqs_engine.model_data_errors import CoordinateError


def test_haversine_zero_and_known_distance() -> None:
    assert haversine_km(51.5074, -0.1278, 51.5074, -0.1278) == 0.0
    london_paris = haversine_km(51.5074, -0.1278, 48.8566, 2.3522)
    assert 335.0 < london_paris < 350.0


def test_haversine_is_symmetric() -> None:
    a = haversine_km(10.0, 20.0, -30.0, 140.0)
    b = haversine_km(-30.0, 140.0, 10.0, 20.0)
    assert a == pytest.approx(b)


def test_geopoint_parse_accepts_numeric_strings() -> None:
    point = GeoPoint.parse("39.9", "116.4")
    assert point == GeoPoint(39.9, 116.4)
    assert point.as_dict() == {"lat": 39.9, "lon": 116.4}


@pytest.mark.parametrize(
    ("lat", "lon", "reason"),
    [
        (float("nan"), 0.0, "coordinate_non_finite"),
        (0.0, float("inf"), "coordinate_non_finite"),
        (None, 0.0, "coordinate_non_finite"),
        (True, 0.0, "coordinate_non_finite"),
        ("north", 0.0, "coordinate_non_finite"),
        (91.0, 0.0, "coordinate_out_of_range"),
        (0.0, -180.5, "coordinate_out_of_range"),
    ],
)
def test_geopoint_parse_rejects_invalid(lat, lon, reason: str) -> None:  # noqa: ANN001
    with pytest.raises(CoordinateError) as exc_info:
        GeoPoint.parse(lat, lon)
    assert exc_info.value.reason_code == reason
    assert not is_valid_coordinate(lat, lon)


def test_is_valid_coordinate_accepts_edges() -> None:
    assert is_valid_coordinate(90.0, 180.0)
    assert is_valid_coordinate(-90.0, -180.0)


def test_normalize_longitude_wraps() -> None:
    assert normalize_longitude(190.0) == pytest.approx(-170.0)
    assert normalize_longitude(-190.0) == pytest.approx(170.0)
    assert normalize_longitude(45.0) == pytest.approx(45.0)
    assert math.isclose(normalize_longitude(180.0), -180.0)


def test_rounded_key_rounds_and_marks_missing_extras() -> None:
    assert rounded_key("siqs", 1.23457, 2.0, extra=(None, "x")) == "siqs:1.2346:2.0000:-:x"
    assert rounded_key("water", 1.0, 2.0, precision=2) == "water:1.00:2.00"
    # Points closer than the key precision share a key.
    assert rounded_key("siqs", 10.00001, 20.0) == rounded_key("siqs", 10.00002, 20.0)


def test_box_contains_plain_and_antimeridian() -> None:
    plain = Box("plain", 0.0, 10.0, 0.0, 10.0)
    assert plain.contains(5.0, 5.0)
    assert plain.contains(0.0, 10.0)
    assert not plain.contains(11.0, 5.0)

    wrapped = Box("wrapped", 0.0, 50.0, 150.0, -130.0)
    assert wrapped.crosses_antimeridian
    assert wrapped.contains(10.0, 170.0)
    assert wrapped.contains(10.0, -179.9)
    assert wrapped.contains(10.0, -140.0)
    assert not wrapped.contains(10.0, -120.0)
    assert not wrapped.contains(10.0, 100.0)


def test_first_containing_respects_order() -> None:
    outer = Box("outer", -10.0, 10.0, -10.0, 10.0)
    inner = Box("inner", -1.0, 1.0, -1.0, 1.0)
    assert first_containing((inner, outer), 0.0, 0.0) is inner
    assert first_containing((outer, inner), 0.0, 0.0) is outer
    assert first_containing((inner,), 5.0, 5.0) is None
