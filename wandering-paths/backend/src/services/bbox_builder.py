from __future__ import annotations

import math
from typing import NamedTuple

from models import GeoPoint

KM_PER_DEG_LAT = 110.574
KM_PER_DEG_LNG_EQUATOR = 111.320


class BBox(NamedTuple):
    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    def contains(self, point: GeoPoint) -> bool:
        return self.min_lat <= point.lat <= self.max_lat and self.min_lng <= point.lng <= self.max_lng


def bbox_around(center: GeoPoint, km: float) -> BBox:
    """Rectangle extending ``km`` from ``center`` on both axes, clamped to valid coordinates.

    Used as a cheap prefilter before exact haversine checks and as a geocoder
    viewport bias.
    """
    dlat = km / KM_PER_DEG_LAT
    cos_lat = math.cos(math.radians(center.lat))
    # near the poles every longitude is within reach
    dlng = 180.0 if cos_lat < 1e-6 else km / (KM_PER_DEG_LNG_EQUATOR * cos_lat)
    return BBox(
        min_lat=max(center.lat - dlat, -90.0),
        min_lng=max(center.lng - dlng, -180.0),
        max_lat=min(center.lat + dlat, 90.0),
        max_lng=min(center.lng + dlng, 180.0),
    )
