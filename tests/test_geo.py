import math

import pytest

from homedispatch.domain.geo.service import (
    Coordinates,
    coordinates_from_list,
    haversine_km,
    haversine_meters,
    validate_coordinates,
)


def test_haversine_zero_for_same_point():
    point = Coordinates(lng=28.0567, lat=-26.1076)
    assert haversine_meters(point, point) == 0


def test_haversine_johannesburg_to_pretoria():
    johannesburg = Coordinates(lng=28.0473, lat=-26.2041)
    pretoria = Coordinates(lng=28.2293, lat=-25.7479)
    assert 50 < haversine_km(johannesburg, pretoria) < 60


def test_haversine_is_symmetric():
    a = Coordinates(lng=18.4241, lat=-33.9249)
    b = Coordinates(lng=18.4232, lat=-33.9180)
    assert math.isclose(haversine_meters(a, b), haversine_meters(b, a))


def test_small_longitude_offset_is_about_one_meter():
    a = Coordinates(lng=28.0567, lat=-26.1076)
    b = Coordinates(lng=28.05671, lat=-26.1076)
    assert 0.9 < haversine_meters(a, b) < 1.1


@pytest.mark.parametrize(
    "lng, lat",
    [
        (0, 0),
        (181, 10),
        (-181, 10),
        (10, 91),
        (10, -91),
        (float("nan"), 10),
        (10, float("inf")),
    ],
)
def test_invalid_coordinates_rejected(lng, lat):
    with pytest.raises(ValueError):
        validate_coordinates(lng, lat)


def test_coordinates_from_list_uses_longitude_first():
    point = coordinates_from_list([28.0567, -26.1076])
    assert point.lng == 28.0567
    assert point.lat == -26.1076
    assert point.as_list() == [28.0567, -26.1076]


def test_coordinates_from_short_list_rejected():
    with pytest.raises(ValueError):
        coordinates_from_list([28.0567])
