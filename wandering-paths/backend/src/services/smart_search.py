"""Three-tier geographic search.

1. local text match against the repository
2. geocode the query and look for restaurants within walking distance
3. fall back to every restaurant in the geocoded city

Tiers run strictly in order and each one either produces the final result or
hands over to the next tier.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from loguru import logger

from config import Configuration
from models import GeocodeResult, GeoPoint, Restaurant, SearchFilters, SearchLocation, SearchResult, SearchStrategy
from services.city_matcher import CityMatcher
from services.geocoding import GeocodingClient
from services.repository import RestaurantRepository, matches_filters
from utils import Cancelled, CancelToken, check_cancelled, walking_radius_km


class SearchTier(Enum):
    LOCAL = "local"
    PROXIMITY = "proximity"
    CITY = "city"


@dataclass
class _SearchState:
    query: str
    filters: SearchFilters
    user_location: Optional[GeoPoint]
    cancel: Optional[CancelToken]
    local_results: Optional[List[Restaurant]] = None
    geocoded: Optional[GeocodeResult] = None
    trail: List[str] = field(default_factory=list)


_Outcome = Union[SearchResult, SearchTier]


def _plural(count: int) -> str:
    return f"{count} restaurant{'s' if count != 1 else ''}"


def location_display_name(geo: GeocodeResult) -> str:
    address = geo.formatted_address or ""
    return address.split(",")[0].strip() or address


def _search_location(state: _SearchState) -> Optional[SearchLocation]:
    geo = state.geocoded
    if geo is None:
        return None
    return SearchLocation(
        name=state.query,
        point=geo.point,
        city=geo.city,
        formatted_address=geo.formatted_address,
    )


class SmartGeoSearch:
    def __init__(
        self,
        cfg: Configuration,
        repository: RestaurantRepository,
        geocoder: Optional[GeocodingClient] = None,
        city_matcher: Optional[CityMatcher] = None,
    ) -> None:
        self.cfg = cfg
        self.repository = repository
        self.geocoder = geocoder or GeocodingClient(cfg)
        self.city_matcher = city_matcher or CityMatcher(repository, cache_ttl_sec=cfg.city_cache_ttl_sec)
        self._tiers: Dict[SearchTier, Callable[[_SearchState], _Outcome]] = {
            SearchTier.LOCAL: self._local_tier,
            SearchTier.PROXIMITY: self._proximity_tier,
            SearchTier.CITY: self._city_tier,
        }

    @property
    def walking_radius_km(self) -> float:
        return walking_radius_km(self.cfg.max_walking_minutes, self.cfg.walking_speed_kmh)

    def search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        user_location: Optional[GeoPoint] = None,
        cancel: Optional[CancelToken] = None,
    ) -> SearchResult:
        started = time.perf_counter()
        text = (query or "").strip()
        if not text:
            return self._finish(
                SearchResult(strategy=SearchStrategy.LOCAL, message="Please enter a search term"), started
            )

        state = _SearchState(
            query=text,
            filters=filters or SearchFilters(),
            user_location=user_location,
            cancel=cancel,
        )
        logger.info("smart search for '{}'", text)

        tier = SearchTier.LOCAL
        try:
            while True:
                check_cancelled(cancel)
                state.trail.append(tier.value)
                outcome = self._tiers[tier](state)
                if isinstance(outcome, SearchResult):
                    logger.info(
                        "smart search '{}' finished via {} with {} results (tiers: {})",
                        text,
                        outcome.strategy.value,
                        len(outcome.restaurants),
                        " -> ".join(state.trail),
                    )
                    return self._finish(outcome, started)
                tier = outcome
        except Cancelled:
            raise
        except Exception as exc:
            if state.local_results is None:
                raise
            logger.exception("smart search failed after local tier: {}", exc)
            fallback = state.local_results
            return self._finish(
                SearchResult(
                    strategy=SearchStrategy.LOCAL,
                    restaurants=fallback,
                    message=f"Search temporarily unavailable. Found {len(fallback)} local results for \"{text}\".",
                ),
                started,
            )

    def _finish(self, result: SearchResult, started: float) -> SearchResult:
        result.search_time_ms = int((time.perf_counter() - started) * 1000)
        return result

    def _local_tier(self, state: _SearchState) -> _Outcome:
        results = self.repository.find_by_text(state.query, state.filters)
        state.local_results = results
        if results:
            return SearchResult(
                strategy=SearchStrategy.LOCAL,
                restaurants=results,
                message=f"Found {_plural(len(results))} matching \"{state.query}\"",
            )
        logger.info("local search found nothing for '{}', trying geocoding", state.query)
        return SearchTier.PROXIMITY

    def _proximity_tier(self, state: _SearchState) -> _Outcome:
        geo = self.geocoder.geocode(
            state.query,
            bias=state.user_location,
            bias_radius_m=self.cfg.geocode_bias_radius_m,
            cancel=state.cancel,
        )
        if geo is None:
            # unresolvable location: there is no anchor for a city fallback
            return SearchResult(
                strategy=SearchStrategy.LOCAL,
                message=(
                    f"No restaurants found for \"{state.query}\". "
                    "Try searching for a neighborhood, landmark, or restaurant name."
                ),
            )
        state.geocoded = geo
        check_cancelled(state.cancel)

        nearby = self.repository.find_by_radius(geo.point, self.walking_radius_km, state.filters)
        if nearby:
            return SearchResult(
                strategy=SearchStrategy.PROXIMITY,
                restaurants=nearby,
                search_location=_search_location(state),
                message=f"Found {_plural(len(nearby))} within walking distance of {location_display_name(geo)}",
            )
        logger.info("nothing within walking distance of {}, trying city fallback", geo.formatted_address)
        return SearchTier.CITY

    def _city_tier(self, state: _SearchState) -> _Outcome:
        geo = state.geocoded
        assert geo is not None
        display = location_display_name(geo)
        if not geo.city:
            return SearchResult(
                strategy=SearchStrategy.CITY,
                search_location=_search_location(state),
                message=f"No restaurants near {display}, and its city could not be determined.",
            )

        in_city = self.city_matcher.find_restaurants_by_city(geo.city)
        restaurants = [r for r in in_city if matches_filters(r, state.filters)]
        return SearchResult(
            strategy=SearchStrategy.CITY,
            restaurants=restaurants,
            search_location=_search_location(state),
            message=f"No restaurants near {display}. Showing all restaurants in {geo.city}.",
        )
