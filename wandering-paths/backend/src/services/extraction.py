"""Restaurant extraction from a website URL.

Crawls the main page plus a few relevant same-host subpages, asks the LLM
whether the business is a restaurant, then extracts structured fields.
"""

from __future__ import annotations

import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from loguru import logger

from config import Configuration
from models import PRICE_RANGES, Progress, Restaurant, RestaurantLocation, normalize_dishes
from services.llm import complete
from utils import Cancelled, CancelToken, check_cancelled, extract_json_object

UA = "Mozilla/5.0 (compatible; WanderingPathsBot/1.0)"
CACHE_TTL_SEC = 24 * 60 * 60
MAX_MENU_PAGES = 3
TYPE_CONTENT_LIMIT = 8000
EXTRACT_CONTENT_LIMIT = 15000
PAGE_BREAK = "\n\n---PAGE BREAK---\n\n"

MENU_LINK_RE = re.compile(r"menu|food|chef|about", re.IGNORECASE)
CONTACT_LINK_RE = re.compile(r"contact|location|find.*us|reservations", re.IGNORECASE)

BUSINESS_TYPE_PROMPT = """Analyze this website content and determine if this is a restaurant business.

CONTENT:
<website_content>
{content}
</website_content>

Return JSON in this format:
{{
  "businessType": "restaurant|hotel|retail|gallery|bookshop|service|other",
  "confidence": "high|medium|low",
  "reasoning": "Brief explanation of your determination"
}}

Classify a hotel or venue as "restaurant" only if the restaurant is the primary business focus.
"""

EXTRACT_PROMPT = """Analyze this restaurant website content and extract structured information.

CONTENT TO ANALYZE:
{content}

Return JSON:
{{
  "name": "Official restaurant name",
  "addressSummary": "Neighbourhood and city, e.g. Shoreditch, London",
  "phone": "Phone number if found",
  "cuisine": "Standardized cuisine type",
  "description": "2-3 sentence summary of the concept",
  "dietaryOptions": "1-2 sentences about dietary accommodations",
  "priceRange": "$|$$|$$$|$$$$",
  "atmosphere": "1-2 sentences about ambiance",
  "mustTryDishes": ["dish1", "dish2", "dish3"],
  "locations": [{{"locationName": "Shoreditch", "fullAddress": "7 Boundary St, London E2 7JE", "phone": null, "openingHours": null}}]
}}

Return null for fields you cannot determine. Must-try dishes should come from menus, not generic items.
"""

SYSTEM_PROMPT = "You analyze restaurant websites and answer with a single JSON object only."


class ExtractionError(RuntimeError):
    pass


@dataclass
class ExtractedLocation:
    location_name: str
    full_address: str
    phone: Optional[str] = None
    opening_hours: Optional[str] = None


@dataclass
class ExtractedRestaurant:
    name: str
    website: str
    address_summary: str = ""
    phone: Optional[str] = None
    cuisine: Optional[str] = None
    description: Optional[str] = None
    dietary_options: Optional[str] = None
    price_range: Optional[str] = None
    atmosphere: Optional[str] = None
    must_try_dishes: List[str] = field(default_factory=list)
    locations: List[ExtractedLocation] = field(default_factory=list)

    def to_restaurant(self) -> Restaurant:
        return Restaurant(
            name=self.name,
            address=self.address_summary,
            website=self.website,
            cuisine=self.cuisine,
            description=self.description,
            dietary_options=self.dietary_options,
            price_range=self.price_range,
            atmosphere=self.atmosphere,
            must_try_dishes=list(self.must_try_dishes),
            locations=[
                RestaurantLocation(
                    location_name=loc.location_name,
                    full_address=loc.full_address,
                    phone=loc.phone,
                    opening_hours=loc.opening_hours,
                )
                for loc in self.locations
            ],
        )


@dataclass
class ExtractionResult:
    success: bool
    data: Optional[ExtractedRestaurant] = None
    confidence: Optional[str] = None
    is_not_restaurant: bool = False
    detected_type: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    cached: bool = False


@dataclass
class CrawledContent:
    main_page: Optional[str] = None
    menu_pages: List[str] = field(default_factory=list)
    contact_page: Optional[str] = None

    def combined(self) -> str:
        parts = [self.main_page, *self.menu_pages, self.contact_page]
        return PAGE_BREAK.join(p for p in parts if p)


class ExtractionCache:
    """URL -> extracted data, kept for 24 hours."""

    def __init__(self, ttl_sec: int = CACHE_TTL_SEC, max_items: int = 256) -> None:
        self.ttl_sec = ttl_sec
        self.max_items = max_items
        self._items: "OrderedDict[str, Tuple[float, ExtractedRestaurant]]" = OrderedDict()

    def get(self, url: str) -> Optional[ExtractedRestaurant]:
        item = self._items.get(url)
        if not item:
            return None
        ts, data = item
        if time.time() - ts > self.ttl_sec:
            self._items.pop(url, None)
            return None
        self._items.move_to_end(url)
        return data

    def set(self, url: str, data: ExtractedRestaurant) -> None:
        self._items[url] = (time.time(), data)
        self._items.move_to_end(url)
        while len(self._items) > self.max_items:
            self._items.popitem(last=False)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


def page_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return soup.get_text(" ", strip=True)


def find_relevant_links(base_url: str, html: str) -> List[Tuple[str, str]]:
    """(url, text) for anchors that stay on the same host as ``base_url``."""
    host = urlparse(base_url).hostname
    soup = BeautifulSoup(html, "html.parser")
    links: List[Tuple[str, str]] = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        text = anchor.get_text(" ", strip=True)
        if not text:
            continue
        full = urljoin(base_url, anchor["href"]).split("#")[0]
        parsed = urlparse(full)
        if parsed.scheme not in ("http", "https") or parsed.hostname != host:
            continue
        if full in seen or full.rstrip("/") == base_url.rstrip("/"):
            continue
        seen.add(full)
        links.append((full, text))
    return links


def calculate_confidence(data: ExtractedRestaurant) -> str:
    score = 0
    if data.name and data.name != "Unknown":
        score += 2
    if data.address_summary or data.locations:
        score += 2
    if data.cuisine:
        score += 1
    if data.description and len(data.description) > 20:
        score += 1
    if data.must_try_dishes:
        score += 1
    if data.price_range:
        score += 1
    if score >= 6:
        return "high"
    if score >= 4:
        return "medium"
    return "low"


def _opt_str(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_extracted(payload: dict, url: str) -> ExtractedRestaurant:
    price = _opt_str(payload.get("priceRange"))
    dishes = payload.get("mustTryDishes") or []
    locations: List[ExtractedLocation] = []
    for raw in payload.get("locations") or []:
        if not isinstance(raw, dict):
            continue
        full_address = _opt_str(raw.get("fullAddress"))
        if not full_address:
            continue
        locations.append(
            ExtractedLocation(
                location_name=_opt_str(raw.get("locationName")) or full_address.split(",")[0].strip(),
                full_address=full_address,
                phone=_opt_str(raw.get("phone")),
                opening_hours=_opt_str(raw.get("openingHours")),
            )
        )
    return ExtractedRestaurant(
        name=_opt_str(payload.get("name")) or "Unknown",
        website=url,
        address_summary=_opt_str(payload.get("addressSummary")) or _opt_str(payload.get("address")) or "",
        phone=_opt_str(payload.get("phone")),
        cuisine=_opt_str(payload.get("cuisine")),
        description=_opt_str(payload.get("description")),
        dietary_options=_opt_str(payload.get("dietaryOptions")),
        price_range=price if price in PRICE_RANGES else None,
        atmosphere=_opt_str(payload.get("atmosphere")),
        must_try_dishes=normalize_dishes([str(d) for d in dishes] if isinstance(dishes, list) else []),
        locations=locations,
    )


class RestaurantExtractor:
    def __init__(
        self,
        cfg: Configuration,
        session: Optional[requests.Session] = None,
        cache: Optional[ExtractionCache] = None,
        llm: Optional[Callable[[str, str], str]] = None,
    ) -> None:
        self.cfg = cfg
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": UA})
        self.cache = cache or ExtractionCache()
        self.llm = llm or (lambda system, prompt: complete(cfg, system, prompt, name="RestaurantExtractor"))

    def fetch_page(self, url: str) -> Optional[str]:
        try:
            resp = self.session.get(url, timeout=self.cfg.http_timeout)
        except requests.RequestException as exc:
            logger.warning("fetch failed for {}: {}", url, exc)
            return None
        if not resp.ok:
            logger.warning("fetch {} returned {}", url, resp.status_code)
            return None
        return resp.text

    def crawl(self, url: str, cancel: Optional[CancelToken] = None) -> CrawledContent:
        content = CrawledContent()
        html = self.fetch_page(url)
        if not html:
            return content
        content.main_page = page_text(html)

        links = find_relevant_links(url, html)
        menu_links = [u for u, text in links if MENU_LINK_RE.search(text + u)][:MAX_MENU_PAGES]
        for link in menu_links:
            check_cancelled(cancel)
            sub = self.fetch_page(link)
            if sub:
                content.menu_pages.append(page_text(sub))

        contact = next((u for u, text in links if CONTACT_LINK_RE.search(text + u) and u not in menu_links), None)
        if contact:
            check_cancelled(cancel)
            sub = self.fetch_page(contact)
            if sub:
                content.contact_page = page_text(sub)
        return content

    def _ask(self, prompt: str) -> dict:
        raw = self.llm(SYSTEM_PROMPT, prompt)
        data = extract_json_object(raw)
        if data is None:
            raise ExtractionError("model response did not contain a JSON object")
        return data

    def extract(
        self,
        url: str,
        progress_callback: Optional[Callable[[Progress], None]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> ExtractionResult:
        url = (url or "").strip()
        if not url.lower().startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")

        cached = self.cache.get(url)
        if cached is not None:
            logger.info("extraction cache hit for {}", url)
            return ExtractionResult(success=True, data=cached, confidence=calculate_confidence(cached), cached=True)

        def report(step: str, details: Optional[str] = None) -> None:
            if progress_callback:
                progress_callback(Progress(step=step, details=details))

        try:
            report("Fetching website content...", url)
            content = self.crawl(url, cancel)
            text = content.combined()
            if not text:
                return ExtractionResult(success=False, error="Could not fetch website content")

            check_cancelled(cancel)
            report("Analyzing business type...")
            analysis = self._ask(BUSINESS_TYPE_PROMPT.format(content=text[:TYPE_CONTENT_LIMIT]))
            business_type = str(analysis.get("businessType") or "other").lower()
            if business_type != "restaurant":
                return ExtractionResult(
                    success=False,
                    is_not_restaurant=True,
                    detected_type=business_type,
                    message=(
                        f"This appears to be a {business_type} website, not a restaurant. "
                        "Please use manual entry instead."
                    ),
                )

            check_cancelled(cancel)
            report("Extracting restaurant details...")
            data = parse_extracted(self._ask(EXTRACT_PROMPT.format(content=text[:EXTRACT_CONTENT_LIMIT])), url)
        except Cancelled:
            raise
        except Exception as exc:
            logger.exception("extraction failed for {}: {}", url, exc)
            return ExtractionResult(
                success=False,
                error=f"Extraction failed: {exc}. Please try again or use manual entry.",
            )

        self.cache.set(url, data)
        report("Extraction complete!")
        return ExtractionResult(success=True, data=data, confidence=calculate_confidence(data))
