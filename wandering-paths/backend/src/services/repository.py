"""Restaurant persistence.

The production deployment keeps restaurants in a managed database; this module
defines the query surface the search and enrichment services rely on and an
in-memory implementation of it (optionally seeded from a JSON file).
"""

from __future__ import annotations

import dataclasses
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from loguru import logger

from models import GeoPoint, Restaurant, RestaurantLocation, SearchFilters, as_utc, utc_now
from services.bbox_builder import bbox_around
from utils import calculate_distance


class RestaurantNotFound(KeyError):
    pass


class RestaurantRepository(Protocol):
    def find_by_text(self, query: str, filters: Optional[SearchFilters] = None) -> List[Restaurant]: ...

    def find_by_radius(
        self, center: GeoPoint, radius_km: float, filters: Optional[SearchFilters] = None
    ) -> List[Restaurant]: ...

    def find_all_with_locations(self) -> List[Restaurant]: ...

    def get(self, restaurant_id: str) -> Restaurant: ...

    def update(self, restaurant_id: str, **changes: Any) -> Restaurant: ...


def matches_filters(restaurant: Restaurant, filters: Optional[SearchFilters]) -> bool:
    if filters is None:
        return True
    cuisine = filters.active_cuisine()
    if cuisine and (restaurant.cuisine or "").lower() != cuisine.lower():
        return False
    status = filters.active_status()
    if status and restaurant.status != status:
        return False
    return True


def _matches_text(restaurant: Restaurant, needle: str) -> bool:
    haystacks = [restaurant.name, restaurant.address]
    haystacks.extend(loc.full_address for loc in restaurant.locations)
    return any(needle in (text or "").lower() for text in haystacks)


def nearest_distance_km(restaurant: Restaurant, center: GeoPoint) -> Optional[float]:
    distances = [calculate_distance(center, point) for point in restaurant.geocoded_points()]
    return min(distances) if distances else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def location_from_dict(data: Dict[str, Any]) -> RestaurantLocation:
    lat, lng = data.get("latitude"), data.get("longitude")
    return RestaurantLocation(
        location_name=str(data.get("location_name") or data.get("city") or ""),
        full_address=str(data.get("full_address") or ""),
        city=data.get("city") or None,
        country=data.get("country") or None,
        point=GeoPoint(lat=float(lat), lng=float(lng)) if lat is not None and lng is not None else None,
        phone=data.get("phone") or None,
        opening_hours=data.get("opening_hours") or None,
    )


def restaurant_from_dict(data: Dict[str, Any]) -> Restaurant:
    kwargs: Dict[str, Any] = {
        "name": str(data["name"]),
        "address": str(data.get("address") or ""),
        "status": data.get("status") or "to-visit",
        "cuisine": data.get("cuisine") or None,
        "price_range": data.get("price_range") or None,
        "website": data.get("website") or None,
        "description": data.get("description") or None,
        "atmosphere": data.get("atmosphere") or None,
        "dietary_options": data.get("dietary_options") or None,
        "public_rating": data.get("public_rating"),
        "public_rating_count": data.get("public_rating_count"),
        "personal_appreciation": data.get("personal_appreciation") or "unknown",
        "must_try_dishes": list(data.get("must_try_dishes") or []),
        "review_summary": data.get("public_review_summary") or data.get("review_summary") or None,
        "summary_updated_at": _parse_dt(
            data.get("public_review_summary_updated_at") or data.get("summary_updated_at")
        ),
        "latest_review_date": _parse_dt(
            data.get("public_review_latest_date") or data.get("latest_review_date")
        ),
        "locations": [location_from_dict(loc) for loc in data.get("locations") or []],
    }
    if data.get("id"):
        kwargs["id"] = str(data["id"])
    return Restaurant(**kwargs)


class InMemoryRestaurantRepository:
    """Dict-backed repository. Every call is individually atomic; there are no transactions."""

    def __init__(self, restaurants: Optional[Iterable[Restaurant]] = None) -> None:
        self._lock = threading.RLock()
        self._restaurants: Dict[str, Restaurant] = {}
        for restaurant in restaurants or []:
            self._restaurants[restaurant.id] = restaurant

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryRestaurantRepository":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        restaurants = [restaurant_from_dict(item) for item in raw]
        logger.info("loaded {} restaurants from {}", len(restaurants), path)
        return cls(restaurants)

    # -- queries -----------------------------------------------------------

    def _newest_first(self, items: Iterable[Restaurant]) -> List[Restaurant]:
        return sorted(items, key=lambda r: r.created_at, reverse=True)

    def list_restaurants(self, filters: Optional[SearchFilters] = None) -> List[Restaurant]:
        with self._lock:
            items = [r for r in self._restaurants.values() if matches_filters(r, filters)]
        if filters and filters.search_text and filters.search_text.strip():
            needle = filters.search_text.strip().lower()
            items = [r for r in items if _matches_text(r, needle)]
        return self._newest_first(items)

    def find_by_text(self, query: str, filters: Optional[SearchFilters] = None) -> List[Restaurant]:
        needle = (query or "").strip().lower()
        if not needle:
            return []
        with self._lock:
            items = [
                r for r in self._restaurants.values() if matches_filters(r, filters) and _matches_text(r, needle)
            ]
        return self._newest_first(items)

    def find_by_radius(
        self, center: GeoPoint, radius_km: float, filters: Optional[SearchFilters] = None
    ) -> List[Restaurant]:
        # padded so the prefilter never drops a point the haversine check would keep
        box = bbox_around(center, radius_km * 1.01)
        with self._lock:
            candidates = [r for r in self._restaurants.values() if matches_filters(r, filters)]

        scored: list[tuple[float, Restaurant]] = []
        for restaurant in candidates:
            points = [p for p in restaurant.geocoded_points() if box.contains(p)]
            if not points:
                continue
            distance = min(calculate_distance(center, p) for p in points)
            if distance <= radius_km:
                scored.append((distance, restaurant))
        scored.sort(key=lambda item: item[0])
        logger.debug("{} restaurants within {:.2f} km", len(scored), radius_km)
        return [r for _, r in scored]

    def find_all_with_locations(self) -> List[Restaurant]:
        with self._lock:
            return self._newest_first(self._restaurants.values())

    def get(self, restaurant_id: str) -> Restaurant:
        with self._lock:
            restaurant = self._restaurants.get(restaurant_id)
        if restaurant is None:
            raise RestaurantNotFound(restaurant_id)
        return restaurant

    def distinct_cuisines(self) -> List[str]:
        with self._lock:
            return sorted({r.cuisine for r in self._restaurants.values() if r.cuisine})

    # -- writes ------------------------------------------------------------

    def create(self, restaurant: Restaurant) -> Restaurant:
        with self._lock:
            if restaurant.id in self._restaurants:
                raise ValueError(f"restaurant {restaurant.id} already exists")
            for loc in restaurant.locations:
                loc.restaurant_id = restaurant.id
            self._restaurants[restaurant.id] = restaurant
        return restaurant

    def update(self, restaurant_id: str, **changes: Any) -> Restaurant:
        if "id" in changes:
            raise ValueError("restaurant id is immutable")
        with self._lock:
            current = self.get(restaurant_id)
            # replace() re-runs validation and dish normalization
            updated = dataclasses.replace(current, updated_at=utc_now(), **changes)
            self._restaurants[restaurant_id] = updated
        return updated

    def update_status(self, restaurant_id: str, status: str) -> Restaurant:
        changes: Dict[str, Any] = {"status": status}
        if status == "to-visit":
            changes["personal_appreciation"] = "unknown"
        return self.update(restaurant_id, **changes)

    def delete(self, restaurant_id: str) -> None:
        with self._lock:
            restaurant = self.get(restaurant_id)
            restaurant.locations.clear()
            del self._restaurants[restaurant_id]

    # -- locations ---------------------------------------------------------

    def add_location(self, restaurant_id: str, location: RestaurantLocation) -> RestaurantLocation:
        with self._lock:
            restaurant = self.get(restaurant_id)
            location.restaurant_id = restaurant_id
            restaurant.locations.append(location)
        return location

    def replace_locations(self, restaurant_id: str, locations: List[RestaurantLocation]) -> Restaurant:
        with self._lock:
            restaurant = self.get(restaurant_id)
            restaurant.locations.clear()
            for loc in locations:
                loc.restaurant_id = restaurant_id
                restaurant.locations.append(loc)
        return restaurant

    def _find_location(self, location_id: str) -> RestaurantLocation:
        for restaurant in self._restaurants.values():
            for loc in restaurant.locations:
                if loc.id == location_id:
                    return loc
        raise RestaurantNotFound(location_id)

    def update_location(self, location_id: str, **changes: Any) -> RestaurantLocation:
        with self._lock:
            loc = self._find_location(location_id)
            for key, value in changes.items():
                if not hasattr(loc, key) or key in {"id", "restaurant_id"}:
                    raise ValueError(f"cannot update location field: {key}")
                setattr(loc, key, value)
            loc.updated_at = utc_now()
        return loc

    def delete_location(self, location_id: str) -> None:
        with self._lock:
            loc = self._find_location(location_id)
            restaurant = self.get(loc.restaurant_id or "")
            restaurant.locations.remove(loc)

    def all_locations(self) -> List[RestaurantLocation]:
        with self._lock:
            locs = [loc for r in self._restaurants.values() for loc in r.locations]
        return sorted(locs, key=lambda loc: loc.created_at)

    def locations_needing_geocoding(self, force_all: bool = False) -> List[RestaurantLocation]:
        locs = self.all_locations()
        if force_all:
            return locs
        return [loc for loc in locs if loc.point is None]
