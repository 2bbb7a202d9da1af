"""Data models for the restaurant bookmarking backend."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional


RESTAURANT_STATUSES = ("to-visit", "visited")
APPRECIATION_LEVELS = ("unknown", "avoid", "fine", "good", "great")
VISIT_RATINGS = ("avoid", "fine", "good", "great")
PRICE_RANGES = ("$", "$$", "$$$", "$$$$")
MAX_MUST_TRY_DISHES = 5


def _new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are read as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_dishes(dishes: Optional[list[str]], limit: int = MAX_MUST_TRY_DISHES) -> list[str]:
    """Trim, drop blanks and case-insensitive duplicates, keep first ``limit`` in order."""
    out: list[str] = []
    seen: set[str] = set()
    for dish in dishes or []:
        name = str(dish).strip()
        if not name:
            continue
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(name)
        if len(out) >= limit:
            break
    return out


class SearchStrategy(str, Enum):
    LOCAL = "local"
    PROXIMITY = "proximity"
    CITY = "city"


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"latitude out of range: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"longitude out of range: {self.lng}")


@dataclass
class RestaurantLocation:
    location_name: str
    full_address: str
    city: Optional[str] = None
    country: Optional[str] = None
    point: Optional[GeoPoint] = None
    phone: Optional[str] = None
    opening_hours: Optional[str] = None
    restaurant_id: Optional[str] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class Restaurant:
    name: str
    id: str = field(default_factory=_new_id)
    address: str = ""  # human-readable summary, e.g. "Shoreditch, London"
    status: str = "to-visit"
    cuisine: Optional[str] = None
    price_range: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    atmosphere: Optional[str] = None
    dietary_options: Optional[str] = None
    public_rating: Optional[float] = None
    public_rating_count: Optional[int] = None
    personal_appreciation: str = "unknown"
    must_try_dishes: list[str] = field(default_factory=list)
    review_summary: Optional[str] = None
    summary_updated_at: Optional[datetime] = None
    latest_review_date: Optional[datetime] = None
    locations: list[RestaurantLocation] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.status not in RESTAURANT_STATUSES:
            raise ValueError(f"invalid status: {self.status}")
        if self.personal_appreciation not in APPRECIATION_LEVELS:
            raise ValueError(f"invalid appreciation: {self.personal_appreciation}")
        if self.price_range is not None and self.price_range not in PRICE_RANGES:
            raise ValueError(f"invalid price range: {self.price_range}")
        if self.public_rating is not None and not 0.0 <= self.public_rating <= 5.0:
            raise ValueError(f"public rating out of range: {self.public_rating}")
        self.must_try_dishes = normalize_dishes(self.must_try_dishes)
        self.summary_updated_at = as_utc(self.summary_updated_at)
        self.latest_review_date = as_utc(self.latest_review_date)
        for loc in self.locations:
            loc.restaurant_id = self.id

    def primary_location(self) -> Optional[RestaurantLocation]:
        return self.locations[0] if self.locations else None

    def geocoded_points(self) -> list[GeoPoint]:
        return [loc.point for loc in self.locations if loc.point is not None]


@dataclass
class Visit:
    restaurant_id: str
    visit_date: date
    rating: str
    experience_notes: Optional[str] = None
    company_notes: Optional[str] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class SearchFilters:
    """Immutable query object passed into every repository/search call."""

    cuisine: Optional[str] = None
    status: Optional[str] = None
    search_text: Optional[str] = None

    def active_cuisine(self) -> Optional[str]:
        return self.cuisine if self.cuisine and self.cuisine != "all" else None

    def active_status(self) -> Optional[str]:
        return self.status if self.status and self.status != "all" else None


@dataclass
class AddressComponent:
    long_name: str
    short_name: str = ""
    types: list[str] = field(default_factory=list)


@dataclass
class GeocodeResult:
    point: GeoPoint
    formatted_address: str = ""
    address_components: list[AddressComponent] = field(default_factory=list)
    city: Optional[str] = None
    confidence: str = "medium"  # high | medium | low
    place_id: Optional[str] = None


@dataclass
class SearchLocation:
    name: str
    point: GeoPoint
    city: Optional[str] = None
    formatted_address: Optional[str] = None


@dataclass
class SearchResult:
    strategy: SearchStrategy
    restaurants: list[Restaurant] = field(default_factory=list)
    message: str = ""
    search_location: Optional[SearchLocation] = None
    search_time_ms: int = 0


@dataclass
class PlaceCandidate:
    place_id: str
    name: str
    address: str = ""


@dataclass
class PlaceReview:
    author: str
    rating: float
    text: str
    timestamp: int  # unix seconds


@dataclass
class PlaceDetails:
    place_id: str
    name: str
    rating: Optional[float] = None
    rating_count: int = 0
    reviews: list[PlaceReview] = field(default_factory=list)
    formatted_address: Optional[str] = None
    point: Optional[GeoPoint] = None


@dataclass
class ReviewSummary:
    summary: str
    popular_dishes: list[str] = field(default_factory=list)
    sentiment: str = "mixed"  # positive | mixed | negative
    confidence: str = "low"  # high | medium | low


@dataclass
class EnrichmentData:
    rating: Optional[float] = None
    rating_count: int = 0
    review_summary: Optional[str] = None
    extracted_dishes: list[str] = field(default_factory=list)
    latest_review_date: Optional[datetime] = None


@dataclass
class EnrichmentResult:
    success: bool
    restaurant_id: str
    restaurant_name: str
    message: Optional[str] = None
    error: Optional[str] = None
    data: Optional[EnrichmentData] = None


@dataclass
class Progress:
    step: str
    details: Optional[str] = None
    current: Optional[int] = None
    total: Optional[int] = None
