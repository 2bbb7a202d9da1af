from __future__ import annotations

import time
import unittest
from unittest.mock import MagicMock

import pytest

from config import Configuration
from services.extraction import (
    ExtractedRestaurant,
    ExtractionCache,
    RestaurantExtractor,
    calculate_confidence,
    find_relevant_links,
    parse_extracted,
)

MAIN_HTML = """
<html><head><script>var x = 1;</script></head><body>
<h1>Trattoria Uno</h1><p>Fresh pasta in Borough.</p>
<a href="/menu">Our Menu</a>
<a href="/about-us">About</a>
<a href="https://other.example.org/menu">Partner menu</a>
<a href="/contact">Find us</a>
<a href="#top">Top</a>
<a href="/gallery"></a>
</body></html>
"""

TYPE_RESTAURANT = 'Sure! {"businessType": "restaurant", "confidence": "high", "reasoning": "menu"}'
TYPE_HOTEL = '{"businessType": "hotel", "confidence": "high", "reasoning": "rooms"}'
EXTRACTED = """Here you go:
{"name": "Trattoria Uno", "addressSummary": "Borough, London", "cuisine": "Italian",
 "description": "Handmade pasta served at a long counter.", "priceRange": "$$",
 "mustTryDishes": ["Pici cacio e pepe", "pici cacio e pepe", "Tiramisu"],
 "locations": [{"locationName": "Borough", "fullAddress": "6 Southwark St, London SE1 1TQ"}, {"locationName": "x"}]}
"""


def _response(text: str, ok: bool = True) -> MagicMock:
    resp = MagicMock()
    resp.ok = ok
    resp.status_code = 200 if ok else 500
    resp.text = text
    return resp


def test_find_relevant_links_same_host_only() -> None:
    links = find_relevant_links("https://uno.example.com/", MAIN_HTML)
    urls = [u for u, _ in links]
    assert "https://uno.example.com/menu" in urls
    assert "https://uno.example.com/contact" in urls
    assert all("other.example.org" not in u for u in urls)
    assert "https://uno.example.com/gallery" not in urls


def test_parse_extracted_normalizes() -> None:
    data = parse_extracted(
        {"name": "X", "priceRange": "cheap", "mustTryDishes": ["A", "a", "B"], "locations": "bad"},
        "https://x.example.com",
    )
    assert data.price_range is None
    assert data.must_try_dishes == ["A", "B"]
    assert data.locations == []
    assert data.website == "https://x.example.com"


def test_confidence_scoring() -> None:
    full = ExtractedRestaurant(
        name="Uno",
        website="u",
        address_summary="Borough",
        cuisine="Italian",
        description="A long enough description here",
        must_try_dishes=["Pici"],
        price_range="$$",
    )
    assert calculate_confidence(full) == "high"
    assert calculate_confidence(ExtractedRestaurant(name="Uno", website="u", address_summary="Borough")) == "medium"
    assert calculate_confidence(ExtractedRestaurant(name="Unknown", website="u")) == "low"


def test_cache_expires() -> None:
    cache = ExtractionCache(ttl_sec=10)
    data = ExtractedRestaurant(name="Uno", website="u")
    cache.set("u", data)
    assert cache.get("u") is data
    cache._items["u"] = (time.time() - 11, data)  # type: ignore[attr-defined]
    assert cache.get("u") is None
    assert len(cache) == 0


class ExtractorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = MagicMock()
        self.session.headers = {}
        self.session.get.side_effect = lambda url, timeout: _response(
            MAIN_HTML if url == "https://uno.example.com/" else f"<p>page {url}</p>"
        )
        self.llm = MagicMock(side_effect=[TYPE_RESTAURANT, EXTRACTED])
        self.extractor = RestaurantExtractor(Configuration(), session=self.session, llm=self.llm)

    def test_restaurant_extraction(self) -> None:
        steps = []
        result = self.extractor.extract("https://uno.example.com/", progress_callback=steps.append)
        assert result.success is True
        assert result.data.name == "Trattoria Uno"
        assert result.data.must_try_dishes == ["Pici cacio e pepe", "Tiramisu"]
        assert [loc.location_name for loc in result.data.locations] == ["Borough"]
        assert result.confidence == "high"
        assert steps[-1].step == "Extraction complete!"
        fetched = [c.args[0] for c in self.session.get.call_args_list]
        # main page, two menu/about pages and one contact page
        assert len(fetched) == 4
        assert "https://uno.example.com/contact" in fetched
        restaurant = result.data.to_restaurant()
        assert restaurant.price_range == "$$"
        assert restaurant.locations[0].full_address.startswith("6 Southwark St")

    def test_second_call_served_from_cache(self) -> None:
        self.extractor.extract("https://uno.example.com/")
        again = self.extractor.extract("https://uno.example.com/")
        assert again.cached is True
        assert self.llm.call_count == 2

    def test_not_a_restaurant(self) -> None:
        self.llm.side_effect = [TYPE_HOTEL]
        result = self.extractor.extract("https://uno.example.com/")
        assert result.success is False
        assert result.is_not_restaurant is True
        assert result.detected_type == "hotel"
        assert "not a restaurant" in result.message

    def test_model_without_json_fails_softly(self) -> None:
        self.llm.side_effect = ["no idea"]
        result = self.extractor.extract("https://uno.example.com/")
        assert result.success is False
        assert result.error.startswith("Extraction failed:")

    def test_unreachable_site(self) -> None:
        self.session.get.side_effect = lambda url, timeout: _response("", ok=False)
        result = self.extractor.extract("https://uno.example.com/")
        assert result.success is False
        self.llm.assert_not_called()

    def test_invalid_url(self) -> None:
        with pytest.raises(ValueError):
            self.extractor.extract("ftp://uno.example.com")
