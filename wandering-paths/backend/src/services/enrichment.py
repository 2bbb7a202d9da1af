"""Public review enrichment.

For each restaurant: find it in Google Places, pull the newest reviews and the
aggregate rating, and ask the LLM for a short summary plus a few notable dishes.
"Not found" is a normal ``success=False`` result, never an exception.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from loguru import logger

from config import Configuration
from models import (
    EnrichmentData,
    EnrichmentResult,
    PlaceReview,
    Progress,
    Restaurant,
    ReviewSummary,
    as_utc,
    utc_now,
)
from services.places import GooglePlacesClient
from services.repository import RestaurantRepository
from services.summarizer import summarize_reviews
from utils import Cancelled, CancelToken, check_cancelled, pause

NOT_FOUND_MESSAGE = "Restaurant not found in Google Places"

ProgressCallback = Callable[[Progress], None]
Summarizer = Callable[[List[PlaceReview], str], ReviewSummary]


def build_search_query(restaurant: Restaurant) -> str:
    parts = [restaurant.name]
    loc = restaurant.primary_location()
    if loc is not None:
        if loc.city:
            parts.append(loc.city)
        if loc.location_name and loc.location_name != loc.city:
            parts.append(loc.location_name)
    elif restaurant.address:
        parts.append(restaurant.address)
    parts.append("restaurant")
    return " ".join(p.strip() for p in parts if p and p.strip())


def latest_review_date(reviews: Iterable[PlaceReview]) -> Optional[datetime]:
    stamps = [r.timestamp for r in reviews if r.timestamp]
    if not stamps:
        return None
    return datetime.fromtimestamp(max(stamps), tz=timezone.utc)


def _report(callback: Optional[ProgressCallback], progress: Progress) -> None:
    if callback is None:
        return
    try:
        callback(progress)
    except Exception as exc:
        logger.warning("progress callback raised: {}", exc)


class ReviewEnrichmentService:
    def __init__(
        self,
        cfg: Configuration,
        repository: RestaurantRepository,
        places: Optional[GooglePlacesClient] = None,
        summarizer: Optional[Summarizer] = None,
    ) -> None:
        self.cfg = cfg
        self.repository = repository
        self.places = places or GooglePlacesClient(cfg)
        self.summarizer = summarizer or (lambda reviews, name: summarize_reviews(cfg, reviews, name))

    def enrich_restaurant(
        self,
        restaurant: Restaurant,
        progress_callback: Optional[ProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> EnrichmentResult:
        try:
            return self._enrich(restaurant, progress_callback, cancel)
        except Cancelled:
            raise
        except Exception as exc:
            logger.exception("enrichment failed for {}: {}", restaurant.name, exc)
            return EnrichmentResult(
                success=False,
                restaurant_id=restaurant.id,
                restaurant_name=restaurant.name,
                error=f"Enrichment failed: {exc}",
            )

    def _enrich(
        self,
        restaurant: Restaurant,
        progress_callback: Optional[ProgressCallback],
        cancel: Optional[CancelToken],
    ) -> EnrichmentResult:
        check_cancelled(cancel)
        query = build_search_query(restaurant)
        _report(progress_callback, Progress(step=f"Searching Google Maps for \"{restaurant.name}\"...", details=query))

        details = self.places.find_place(query)
        if details is None:
            return EnrichmentResult(
                success=False,
                restaurant_id=restaurant.id,
                restaurant_name=restaurant.name,
                message=NOT_FOUND_MESSAGE,
            )
        check_cancelled(cancel)

        rating_text = f"{details.rating:g}" if details.rating is not None else "N/A"
        _report(
            progress_callback,
            Progress(
                step=f"Found on Google Maps! Analyzing {details.rating_count} reviews...",
                details=f"Rating: {rating_text}/5",
            ),
        )

        reviews = sorted(details.reviews, key=lambda r: r.timestamp, reverse=True)[: self.cfg.max_reviews]
        _report(progress_callback, Progress(step="Fetched reviews", details=f"{len(reviews)} recent reviews"))

        if not reviews:
            summary = (
                f"{details.name or restaurant.name} has a {rating_text}/5 rating from "
                f"{details.rating_count} Google reviews; no detailed reviews are available yet."
            )
            return EnrichmentResult(
                success=True,
                restaurant_id=restaurant.id,
                restaurant_name=restaurant.name,
                message="Found restaurant but no reviews available",
                data=EnrichmentData(
                    rating=details.rating,
                    rating_count=details.rating_count,
                    review_summary=summary,
                    extracted_dishes=[],
                ),
            )

        check_cancelled(cancel)
        review_summary = self.summarizer(reviews, restaurant.name)
        dishes = review_summary.popular_dishes[: self.cfg.max_dishes]
        _report(
            progress_callback,
            Progress(step="Enrichment complete!", details=f"Found {len(dishes)} popular dishes"),
        )

        return EnrichmentResult(
            success=True,
            restaurant_id=restaurant.id,
            restaurant_name=restaurant.name,
            data=EnrichmentData(
                rating=details.rating,
                rating_count=details.rating_count,
                review_summary=review_summary.summary,
                extracted_dishes=dishes,
                latest_review_date=latest_review_date(reviews),
            ),
        )

    def enrich_many(
        self,
        restaurants: List[Restaurant],
        progress_callback: Optional[ProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
        delay_sec: Optional[float] = None,
    ) -> List[EnrichmentResult]:
        delay = self.cfg.enrichment_delay_sec if delay_sec is None else delay_sec
        total = len(restaurants)
        results: List[EnrichmentResult] = []
        for idx, restaurant in enumerate(restaurants, start=1):
            check_cancelled(cancel)
            _report(
                progress_callback,
                Progress(
                    step=f"Processing restaurant {idx} of {total}",
                    details=restaurant.name,
                    current=idx,
                    total=total,
                ),
            )
            results.append(self.enrich_restaurant(restaurant, progress_callback, cancel))
            if idx < total:
                pause(delay, cancel)
        succeeded = sum(1 for r in results if r.success)
        logger.info("enrichment batch done: {}/{} succeeded", succeeded, total)
        return results

    def apply_enrichment(self, result: EnrichmentResult) -> Optional[Restaurant]:
        """Persist a successful result; returns the updated restaurant or None if nothing was written."""
        if not result.success or result.data is None:
            return None
        data = result.data
        current = self.repository.get(result.restaurant_id)
        changes = {
            "public_rating": data.rating,
            "public_rating_count": data.rating_count,
            "summary_updated_at": utc_now(),
            "must_try_dishes": list(current.must_try_dishes) + list(data.extracted_dishes),
        }
        if data.review_summary:
            changes["review_summary"] = data.review_summary
        if data.latest_review_date is not None:
            changes["latest_review_date"] = data.latest_review_date
        return self.repository.update(result.restaurant_id, **changes)

    def save_result(self, result: EnrichmentResult) -> EnrichmentResult:
        """``apply_enrichment`` for one batch item; a write failure only marks that item failed."""
        try:
            self.apply_enrichment(result)
        except Exception as exc:
            logger.exception("saving enrichment for {} failed: {}", result.restaurant_name, exc)
            return replace(result, success=False, error=f"Failed to save enrichment: {exc}")
        return result

    @staticmethod
    def get_needs_enrichment(
        restaurants: Iterable[Restaurant],
        now: Optional[datetime] = None,
        max_age_days: int = 30,
    ) -> List[Restaurant]:
        cutoff = (as_utc(now) or utc_now()) - timedelta(days=max_age_days)
        out: List[Restaurant] = []
        for restaurant in restaurants:
            if not restaurant.review_summary:
                out.append(restaurant)
            elif restaurant.summary_updated_at is None or restaurant.summary_updated_at < cutoff:
                out.append(restaurant)
        return out
