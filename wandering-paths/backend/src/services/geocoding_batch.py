from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from loguru import logger

from config import Configuration
from models import GeocodeResult, RestaurantLocation
from services.geocoding import GeocodingClient
from services.repository import InMemoryRestaurantRepository
from utils import Cancelled, CancelToken, check_cancelled, pause

UK_POSTCODE_RE = re.compile(r"\b[A-Z]{1,2}\d{1,2}[A-Z]?\s?\d[A-Z]{2}\b", re.IGNORECASE)


@dataclass
class GeocodingProgress:
    total: int
    processed: int = 0
    success: int = 0
    errors: List[str] = field(default_factory=list)
    is_complete: bool = False

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "processed": self.processed,
            "success": self.success,
            "errors": list(self.errors),
            "isComplete": self.is_complete,
        }


def fallback_queries(location: RestaurantLocation) -> List[str]:
    """Queries to try in order, from the full address down to just the city."""
    address = (location.full_address or "").strip()
    city = (location.city or "").strip()
    parts = [p.strip() for p in address.split(",") if p.strip()]
    postcode = UK_POSTCODE_RE.search(address)

    queries: List[str] = []
    if address:
        queries.append(address)
    if postcode and city:
        queries.append(f"{postcode.group(0)}, {city}")
    if postcode:
        queries.append(postcode.group(0))
    if len(parts) > 1:
        queries.append(", ".join(parts[1:]))
    if len(parts) >= 2 and city:
        queries.append(f"{parts[1]}, {city}")
    if city:
        queries.append(city)
    return list(dict.fromkeys(queries))


class BatchGeocoder:
    def __init__(
        self,
        cfg: Configuration,
        repository: InMemoryRestaurantRepository,
        geocoder: Optional[GeocodingClient] = None,
    ) -> None:
        self.cfg = cfg
        self.repository = repository
        self.geocoder = geocoder or GeocodingClient(cfg)

    def geocode_location(self, location: RestaurantLocation, cancel: Optional[CancelToken] = None) -> bool:
        result: Optional[GeocodeResult] = None
        for query in fallback_queries(location):
            check_cancelled(cancel)
            result = self.geocoder.geocode(query, cancel=cancel)
            if result is not None:
                logger.debug("geocoded location {} via '{}'", location.id, query)
                break
        if result is None:
            logger.warning("could not geocode address: {}", location.full_address)
            return False
        changes = {"point": result.point}
        if not location.city and result.city:
            changes["city"] = result.city
        self.repository.update_location(location.id, **changes)
        return True

    def run(
        self,
        on_progress: Optional[Callable[[GeocodingProgress], None]] = None,
        force_all: bool = False,
        cancel: Optional[CancelToken] = None,
        delay_sec: Optional[float] = None,
    ) -> GeocodingProgress:
        delay = self.cfg.geocoding_delay_sec if delay_sec is None else delay_sec
        locations = self.repository.locations_needing_geocoding(force_all=force_all)
        progress = GeocodingProgress(total=len(locations))
        logger.info("{} for {} locations", "full regeneration" if force_all else "batch geocoding", len(locations))

        for idx, location in enumerate(locations):
            check_cancelled(cancel)
            try:
                ok = self.geocode_location(location, cancel)
            except Cancelled:
                raise
            except Exception as exc:
                logger.exception("error geocoding location {}: {}", location.id, exc)
                progress.processed += 1
                progress.errors.append(f"Error processing {location.full_address}: {exc}")
            else:
                progress.processed += 1
                if ok:
                    progress.success += 1
                else:
                    progress.errors.append(f"Failed to geocode: {location.full_address}")
            if on_progress:
                on_progress(progress)
            if idx < len(locations) - 1:
                pause(delay, cancel)

        progress.is_complete = True
        if on_progress:
            on_progress(progress)
        logger.info("batch geocoding complete: {}/{}", progress.success, progress.total)
        return progress

    def stats(self) -> dict:
        locations = self.repository.all_locations()
        total = len(locations)
        geocoded = sum(1 for loc in locations if loc.point is not None)
        return {
            "total": total,
            "geocoded": geocoded,
            "needsGeocoding": total - geocoded,
            "percentage": round(geocoded / total * 100) if total else 0,
        }
