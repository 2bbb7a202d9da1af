from __future__ import annotations

import math

import pytest

from models import GeoPoint
from utils import (
    calculate_distance,
    calculate_walking_time,
    is_within_walking_distance,
    to_radians,
    walking_radius_km,
)

LONDON_EYE = GeoPoint(lat=51.5033, lng=-0.1196)
BIG_BEN = GeoPoint(lat=51.5007, lng=-0.1246)
PARIS = GeoPoint(lat=48.8566, lng=2.3522)


def test_to_radians() -> None:
    assert to_radians(180) == pytest.approx(math.pi)
    assert to_radians(0) == 0


def test_distance_to_self_is_exactly_zero() -> None:
    for p in (LONDON_EYE, PARIS, GeoPoint(lat=-89.9, lng=179.9)):
        assert calculate_distance(p, p) == 0


def test_distance_is_symmetric() -> None:
    assert calculate_distance(LONDON_EYE, PARIS) == calculate_distance(PARIS, LONDON_EYE)


def test_distance_london_paris() -> None:
    assert 340 < calculate_distance(LONDON_EYE, PARIS) < 350


def test_walking_time_linear_model() -> None:
    assert calculate_walking_time(5) == 60
    assert calculate_walking_time(0) == 0
    assert walking_radius_km(20) == pytest.approx(20 / 60 * 5)


def test_within_walking_distance() -> None:
    # about 0.45 km apart, roughly 5 minutes on foot
    assert is_within_walking_distance(LONDON_EYE, BIG_BEN, 20)
    assert not is_within_walking_distance(LONDON_EYE, PARIS, 20)


def test_walking_boundary_counts_as_within() -> None:
    minutes = calculate_walking_time(calculate_distance(LONDON_EYE, BIG_BEN))
    assert is_within_walking_distance(LONDON_EYE, BIG_BEN, minutes)
    assert not is_within_walking_distance(LONDON_EYE, BIG_BEN, minutes - 0.01)


def test_geopoint_rejects_out_of_range() -> None:
    with pytest.raises(ValueError):
        GeoPoint(lat=91, lng=0)
    with pytest.raises(ValueError):
        GeoPoint(lat=0, lng=-180.5)
