from __future__ import annotations

import time
from typing import List, Optional

from loguru import logger
from rapidfuzz.distance import Levenshtein

from models import Restaurant
from services.repository import RestaurantRepository


KNOWN_CITIES = (
    # UK
    "london",
    "manchester",
    "liverpool",
    "edinburgh",
    "glasgow",
    "birmingham",
    "bristol",
    "leeds",
    "cardiff",
    # international
    "paris",
    "barcelona",
    "madrid",
    "rome",
    "berlin",
    "amsterdam",
    "brussels",
)


def infer_city_from_address(address: Optional[str]) -> Optional[str]:
    if not address:
        return None
    lower = address.lower()
    for city in KNOWN_CITIES:
        if city in lower:
            return city.capitalize()
    return None


def _overlaps(a: str, b: str) -> bool:
    a, b = a.lower(), b.lower()
    return a in b or b in a


class CityMatcher:
    """Matches a geocoded city name against the cities restaurants are recorded in."""

    def __init__(self, repository: RestaurantRepository, cache_ttl_sec: int = 300) -> None:
        self.repository = repository
        self.cache_ttl_sec = cache_ttl_sec
        self._cities: Optional[List[str]] = None
        self._cached_at = 0.0

    def invalidate(self) -> None:
        self._cities = None

    def restaurant_cities(self) -> List[str]:
        now = time.time()
        if self._cities is not None and now - self._cached_at < self.cache_ttl_sec:
            return self._cities

        cities: set[str] = set()
        for restaurant in self.repository.find_all_with_locations():
            found = False
            for loc in restaurant.locations:
                if loc.city and loc.city.strip():
                    cities.add(loc.city.strip())
                    found = True
            if not found:
                inferred = infer_city_from_address(restaurant.address)
                if inferred:
                    cities.add(inferred)

        self._cities = sorted(cities)
        self._cached_at = now
        logger.debug("cached {} restaurant cities", len(self._cities))
        return self._cities

    def fuzzy_match_city(self, search_city: str, threshold: float = 0.7) -> List[str]:
        needle = search_city.strip().lower()
        if not needle:
            return []
        scored: list[tuple[float, str]] = []
        for city in self.restaurant_cities():
            candidate = city.lower()
            if candidate == needle:
                scored.append((1.0, city))
                continue
            if candidate in needle or needle in candidate:
                scored.append((min(len(candidate), len(needle)) / max(len(candidate), len(needle)), city))
                continue
            score = Levenshtein.normalized_similarity(needle, candidate)
            if score >= threshold:
                scored.append((score, city))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [city for _, city in scored]

    def find_restaurants_by_city(self, city_name: str, threshold: float = 0.6) -> List[Restaurant]:
        matched = self.fuzzy_match_city(city_name, threshold)
        if not matched:
            logger.info("no city matches for '{}'", city_name)
            return []
        logger.info("city matches for '{}': {}", city_name, ", ".join(matched[:3]))

        results: list[Restaurant] = []
        for restaurant in self.repository.find_all_with_locations():
            if restaurant.locations:
                hit = any(
                    loc.city and any(_overlaps(loc.city, m) for m in matched) for loc in restaurant.locations
                )
            else:
                inferred = infer_city_from_address(restaurant.address)
                hit = bool(inferred) and any(_overlaps(inferred, m) for m in matched)
            if hit:
                results.append(restaurant)
        return results
