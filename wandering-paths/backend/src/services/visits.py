from __future__ import annotations

import dataclasses
import re
import threading
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

from loguru import logger

from models import VISIT_RATINGS, Visit, utc_now
from services.repository import InMemoryRestaurantRepository, RestaurantNotFound

MIN_VISIT_DATE = date(1900, 1, 1)
MAX_EXPERIENCE_NOTES = 2000
MAX_COMPANY_NOTES = 500
MARKUP_CHARS = ("<", ">", "&")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class VisitValidationError(ValueError):
    pass


class DuplicateVisitError(ValueError):
    pass


@dataclass
class VisitInput:
    restaurant_id: str
    visit_date: str  # YYYY-MM-DD
    rating: str
    experience_notes: Optional[str] = None
    company_notes: Optional[str] = None


def _clean_notes(value: Optional[str], label: str, limit: int) -> Optional[str]:
    if value is None:
        return None
    if any(ch in value for ch in MARKUP_CHARS):
        raise VisitValidationError(f"{label} must not contain <, > or &")
    text = value.strip()
    if len(text) > limit:
        raise VisitValidationError(f"{label} must be {limit} characters or less")
    return text or None


def parse_visit_date(value: str, today: Optional[date] = None) -> date:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise VisitValidationError("Invalid date format. Expected YYYY-MM-DD")
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        raise VisitValidationError("Invalid date")
    if parsed < MIN_VISIT_DATE or parsed > (today or date.today()):
        raise VisitValidationError("Visit date must be between 1900-01-01 and today")
    return parsed


def validate_visit_input(data: VisitInput, today: Optional[date] = None) -> Visit:
    """Validate raw input and build an unsaved Visit. Raises VisitValidationError per violated rule."""
    visit_date = parse_visit_date(data.visit_date, today)
    if data.rating not in VISIT_RATINGS:
        raise VisitValidationError(f"Invalid rating: {data.rating}. Expected one of {', '.join(VISIT_RATINGS)}")
    return Visit(
        restaurant_id=data.restaurant_id,
        visit_date=visit_date,
        rating=data.rating,
        experience_notes=_clean_notes(data.experience_notes, "Experience notes", MAX_EXPERIENCE_NOTES),
        company_notes=_clean_notes(data.company_notes, "Company notes", MAX_COMPANY_NOTES),
    )


def _newest_first(visits: List[Visit]) -> List[Visit]:
    return sorted(visits, key=lambda v: (v.visit_date, v.created_at), reverse=True)


class VisitService:
    """Visit log for restaurants; keeps status and appreciation in sync with the latest visit."""

    def __init__(self, restaurants: InMemoryRestaurantRepository) -> None:
        self.restaurants = restaurants
        self._lock = threading.RLock()
        self._visits: Dict[str, Visit] = {}

    def get_visits_by_restaurant(self, restaurant_id: str) -> List[Visit]:
        with self._lock:
            items = [v for v in self._visits.values() if v.restaurant_id == restaurant_id]
        return _newest_first(items)

    def get_latest_visits(self, restaurant_id: str, limit: int = 5) -> List[Visit]:
        return self.get_visits_by_restaurant(restaurant_id)[:limit]

    def get_visit_count(self, restaurant_id: str) -> int:
        with self._lock:
            return sum(1 for v in self._visits.values() if v.restaurant_id == restaurant_id)

    def get_visit_by_id(self, visit_id: str) -> Optional[Visit]:
        with self._lock:
            return self._visits.get(visit_id)

    def _ensure_unique_date(self, visit: Visit) -> None:
        for other in self._visits.values():
            if other.id != visit.id and other.restaurant_id == visit.restaurant_id and other.visit_date == visit.visit_date:
                raise DuplicateVisitError("You already logged a visit to this restaurant on this date")

    def _sync_restaurant(self, restaurant_id: str) -> None:
        latest = self.get_latest_visits(restaurant_id, limit=1)
        if not latest:
            return
        self.restaurants.update(restaurant_id, status="visited", personal_appreciation=latest[0].rating)

    def add_visit(self, data: VisitInput, today: Optional[date] = None) -> Visit:
        visit = validate_visit_input(data, today)
        self.restaurants.get(visit.restaurant_id)
        with self._lock:
            self._ensure_unique_date(visit)
            self._visits[visit.id] = visit
        self._sync_restaurant(visit.restaurant_id)
        logger.info("logged visit {} for restaurant {} on {}", visit.id, visit.restaurant_id, visit.visit_date)
        return visit

    def update_visit(self, visit_id: str, data: VisitInput, today: Optional[date] = None) -> Visit:
        with self._lock:
            current = self._visits.get(visit_id)
        if current is None:
            raise RestaurantNotFound(visit_id)
        validated = validate_visit_input(data, today)
        if validated.restaurant_id != current.restaurant_id:
            raise VisitValidationError("A visit cannot be moved to another restaurant")
        updated = dataclasses.replace(
            current,
            visit_date=validated.visit_date,
            rating=validated.rating,
            experience_notes=validated.experience_notes,
            company_notes=validated.company_notes,
            updated_at=utc_now(),
        )
        with self._lock:
            self._ensure_unique_date(updated)
            self._visits[visit_id] = updated
        self._sync_restaurant(updated.restaurant_id)
        return updated
