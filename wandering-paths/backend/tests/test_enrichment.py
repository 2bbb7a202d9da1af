from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from config import Configuration
from models import PlaceDetails, PlaceReview, Restaurant, RestaurantLocation, ReviewSummary
from services.enrichment import NOT_FOUND_MESSAGE, ReviewEnrichmentService, build_search_query
from services.repository import InMemoryRestaurantRepository
from services.summarizer import summarize_reviews, summarize_without_llm

NOW = datetime(2025, 6, 15, tzinfo=timezone.utc)


def _reviews() -> list[PlaceReview]:
    return [
        PlaceReview(author="A", rating=5, text="The black dal is unreal", timestamp=1_700_000_000),
        PlaceReview(author="B", rating=4, text="Great naan, long queue", timestamp=1_710_000_000),
        PlaceReview(author="C", rating=3, text="Okay", timestamp=1_690_000_000),
    ]


def _restaurant() -> Restaurant:
    return Restaurant(
        name="Dishoom",
        id="r1",
        address="Shoreditch, London",
        must_try_dishes=["Bacon naan roll"],
        locations=[RestaurantLocation(location_name="Shoreditch", full_address="7 Boundary St", city="London")],
    )


def test_search_query_uses_primary_location() -> None:
    assert build_search_query(_restaurant()) == "Dishoom London Shoreditch restaurant"


def test_search_query_falls_back_to_address() -> None:
    r = Restaurant(name="Padella", address="Borough, London")
    assert build_search_query(r) == "Padella Borough, London restaurant"


def test_search_query_skips_duplicate_city_name() -> None:
    r = Restaurant(
        name="Kitchin",
        locations=[RestaurantLocation(location_name="Edinburgh", full_address="x", city="Edinburgh")],
    )
    assert build_search_query(r) == "Kitchin Edinburgh restaurant"


def test_needs_enrichment() -> None:
    fresh = Restaurant(name="fresh", review_summary="ok", summary_updated_at=NOW - timedelta(days=5))
    stale = Restaurant(name="stale", review_summary="ok", summary_updated_at=NOW - timedelta(days=31))
    missing = Restaurant(name="missing")
    picked = ReviewEnrichmentService.get_needs_enrichment([fresh, stale, missing], now=NOW)
    assert [r.name for r in picked] == ["stale", "missing"]


def test_needs_enrichment_accepts_naive_datetimes() -> None:
    naive_now = datetime(2025, 6, 15, 12, 0)
    stale = Restaurant(name="stale", review_summary="ok", summary_updated_at=naive_now - timedelta(days=40))
    fresh = Restaurant(name="fresh", review_summary="ok", summary_updated_at=naive_now - timedelta(days=1))
    assert stale.summary_updated_at.tzinfo is timezone.utc
    assert [r.name for r in ReviewEnrichmentService.get_needs_enrichment([stale, fresh], now=naive_now)] == ["stale"]
    assert [r.name for r in ReviewEnrichmentService.get_needs_enrichment([stale, fresh], now=NOW)] == ["stale"]


def test_repository_update_normalizes_naive_datetimes() -> None:
    repo = InMemoryRestaurantRepository([_restaurant()])
    updated = repo.update("r1", review_summary="ok", summary_updated_at=datetime(2025, 6, 1))
    assert updated.summary_updated_at == datetime(2025, 6, 1, tzinfo=timezone.utc)


class EnrichmentServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cfg = Configuration(google_maps_api_key="k", enrichment_delay_sec=0)
        self.repo = InMemoryRestaurantRepository([_restaurant()])
        self.places = MagicMock()
        self.summarizer = MagicMock(
            return_value=ReviewSummary(summary="Loved for dal.", popular_dishes=["Black dal", "Naan", "Chai", "Okra"])
        )
        self.service = ReviewEnrichmentService(self.cfg, self.repo, places=self.places, summarizer=self.summarizer)

    def test_not_found_is_a_normal_result(self) -> None:
        self.places.find_place.return_value = None
        result = self.service.enrich_restaurant(_restaurant())
        assert result.success is False
        assert result.message == NOT_FOUND_MESSAGE == "Restaurant not found in Google Places"
        self.summarizer.assert_not_called()

    def test_zero_reviews_templated_summary(self) -> None:
        self.places.find_place.return_value = PlaceDetails(place_id="p", name="Dishoom", rating=4.2, rating_count=50)
        result = self.service.enrich_restaurant(_restaurant())
        assert result.success is True
        assert result.data.rating == 4.2
        assert result.data.rating_count == 50
        assert "4.2/5 rating" in result.data.review_summary
        assert result.data.extracted_dishes == []
        self.summarizer.assert_not_called()

    def test_successful_enrichment(self) -> None:
        self.places.find_place.return_value = PlaceDetails(
            place_id="p", name="Dishoom", rating=4.6, rating_count=1000, reviews=_reviews()
        )
        progress = []
        result = self.service.enrich_restaurant(_restaurant(), progress_callback=progress.append)
        assert result.success is True
        assert result.data.review_summary == "Loved for dal."
        assert result.data.extracted_dishes == ["Black dal", "Naan", "Chai"]
        assert result.data.latest_review_date == datetime.fromtimestamp(1_710_000_000, tz=timezone.utc)
        assert len(progress) == 4
        reviews_arg = self.summarizer.call_args.args[0]
        assert [r.author for r in reviews_arg] == ["B", "A", "C"]

    def test_unexpected_error_isolated(self) -> None:
        self.places.find_place.side_effect = RuntimeError("quota")
        result = self.service.enrich_restaurant(_restaurant())
        assert result.success is False
        assert result.error == "Enrichment failed: quota"

    def test_progress_callback_errors_ignored(self) -> None:
        self.places.find_place.return_value = None

        def broken(_progress) -> None:
            raise RuntimeError("ui gone")

        assert self.service.enrich_restaurant(_restaurant(), progress_callback=broken).message == NOT_FOUND_MESSAGE

    def test_enrich_many_continues_after_failure(self) -> None:
        ok = PlaceDetails(place_id="p", name="X", rating=4.0, rating_count=3)
        self.places.find_place.side_effect = [RuntimeError("boom"), ok]
        progress = []
        results = self.service.enrich_many(
            [_restaurant(), Restaurant(name="Other", address="Leeds")], progress_callback=progress.append
        )
        assert [r.success for r in results] == [False, True]
        batch_steps = [p for p in progress if p.total is not None]
        assert [(p.current, p.total) for p in batch_steps] == [(1, 2), (2, 2)]

    def test_enrich_many_waits_between_items(self) -> None:
        self.places.find_place.return_value = None
        with patch("services.enrichment.pause") as pause:
            self.service.enrich_many([_restaurant(), _restaurant(), _restaurant()], delay_sec=2.0)
        assert pause.call_count == 2
        assert pause.call_args.args[0] == 2.0

    def test_apply_enrichment_persists_and_merges_dishes(self) -> None:
        self.places.find_place.return_value = PlaceDetails(
            place_id="p", name="Dishoom", rating=4.6, rating_count=1000, reviews=_reviews()
        )
        result = self.service.enrich_restaurant(self.repo.get("r1"))
        updated = self.service.apply_enrichment(result)
        assert updated.public_rating == 4.6
        assert updated.public_rating_count == 1000
        assert updated.review_summary == "Loved for dal."
        assert updated.summary_updated_at is not None
        assert updated.must_try_dishes == ["Bacon naan roll", "Black dal", "Naan", "Chai"]
        assert ReviewEnrichmentService.get_needs_enrichment([updated]) == []

    def test_save_result_isolates_missing_restaurant(self) -> None:
        self.places.find_place.return_value = PlaceDetails(
            place_id="p", name="Dishoom", rating=4.6, rating_count=1000, reviews=_reviews()
        )
        result = self.service.enrich_restaurant(self.repo.get("r1"))
        self.repo.delete("r1")
        saved = self.service.save_result(result)
        assert saved.success is False
        assert saved.error.startswith("Failed to save enrichment")
        assert result.success is True

    def test_apply_skips_failed_result(self) -> None:
        self.places.find_place.return_value = None
        assert self.service.apply_enrichment(self.service.enrich_restaurant(_restaurant())) is None


class SummarizerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cfg = Configuration(llm_provider="ollama", local_llm="llama3")

    def test_prose_wrapped_json_is_parsed(self) -> None:
        raw = (
            'Here is the summary: {"summary": "Warm service, rich dal.", "popularDishes": '
            '["Black dal", "Naan", "Chai", "Okra"], "sentiment": "positive", "confidence": "medium"} Hope this helps!'
        )
        with patch("services.summarizer.complete", return_value=raw):
            summary = summarize_reviews(self.cfg, _reviews(), "Dishoom")
        assert summary.summary == "Warm service, rich dal."
        assert summary.popular_dishes == ["Black dal", "Naan", "Chai"]
        assert summary.sentiment == "positive"
        assert summary.confidence == "medium"

    def test_unusable_output_defaults(self) -> None:
        with patch("services.summarizer.complete", return_value="sorry, I cannot help"):
            summary = summarize_reviews(self.cfg, _reviews(), "Dishoom")
        assert summary.sentiment == "mixed"
        assert summary.confidence == "low"
        assert summary.popular_dishes == []

    def test_unknown_enum_values_default(self) -> None:
        raw = '{"summary": "Fine.", "popularDishes": "dal", "sentiment": "ecstatic", "confidence": "certain"}'
        with patch("services.summarizer.complete", return_value=raw):
            summary = summarize_reviews(self.cfg, _reviews(), "Dishoom")
        assert (summary.sentiment, summary.confidence, summary.popular_dishes) == ("mixed", "low", [])

    def test_llm_error_defaults(self) -> None:
        with patch("services.summarizer.complete", side_effect=RuntimeError("offline")):
            summary = summarize_reviews(self.cfg, _reviews(), "Dishoom")
        assert summary.summary == "Unable to analyze reviews at this time"

    def test_rule_based_without_llm(self) -> None:
        summary = summarize_reviews(Configuration(), _reviews(), "Dishoom")
        assert summary.popular_dishes == ["naan", "dal"]
        assert summary.sentiment == "positive"
        assert summary.confidence == "low"
        assert "4.0/5" in summary.summary
        assert summarize_without_llm([], "X").sentiment == "mixed"
