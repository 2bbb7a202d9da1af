from models import GeoPoint
from services.bbox_builder import bbox_around


def test_bbox_contains_center() -> None:
    center = GeoPoint(lat=51.5074, lng=-0.1278)  # London
    box = bbox_around(center, 3.0)
    assert box.min_lat < center.lat < box.max_lat
    assert box.min_lng < center.lng < box.max_lng
    assert box.contains(center)


def test_bbox_size_roughly_matches_km() -> None:
    center = GeoPoint(lat=0.0, lng=0.0)
    box = bbox_around(center, 111.32)
    assert abs((box.max_lng - box.min_lng) - 2.0) < 1e-6
    assert abs((box.max_lat - box.min_lat) - 2 * 111.32 / 110.574) < 1e-6


def test_bbox_clamped_near_pole() -> None:
    box = bbox_around(GeoPoint(lat=89.99, lng=10.0), 50.0)
    assert box.max_lat == 90.0
    assert box.min_lng >= -180.0
    assert box.max_lng <= 180.0


def test_bbox_excludes_far_point() -> None:
    box = bbox_around(GeoPoint(lat=51.5074, lng=-0.1278), 2.0)
    assert not box.contains(GeoPoint(lat=48.8566, lng=2.3522))
