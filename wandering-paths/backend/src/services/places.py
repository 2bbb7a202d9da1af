from __future__ import annotations

from typing import List, Optional

import requests
from loguru import logger

from config import Configuration
from models import GeoPoint, PlaceCandidate, PlaceDetails, PlaceReview

DETAIL_FIELDS = "place_id,name,rating,user_ratings_total,reviews,formatted_address,geometry"


class PlacesError(RuntimeError):
    pass


class GooglePlacesClient:
    """Google Places text search + details. Lookups that fail for any reason come back empty."""

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.google_maps_base_url.rstrip("/")
        self.session = session or requests.Session()

    def _get(self, path: str, params: dict) -> dict:
        url = f"{self.base}{path}"
        params = {**params, "key": self.cfg.google_maps_api_key}
        try:
            resp = self.session.get(url, params=params, timeout=self.cfg.http_timeout)
        except requests.RequestException as exc:
            raise PlacesError(f"request error: {exc}")
        if not resp.ok:
            raise PlacesError(f"upstream {resp.status_code}: {resp.text[:300]}")
        try:
            return resp.json()
        except ValueError:
            raise PlacesError("invalid json response")

    def text_search(self, query: str) -> List[PlaceCandidate]:
        try:
            payload = self._get("/place/textsearch/json", {"query": query})
        except PlacesError as exc:
            logger.warning("places search failed for '{}': {}", query, exc)
            return []
        out: list[PlaceCandidate] = []
        for item in payload.get("results") or []:
            place_id = item.get("place_id")
            if not place_id:
                continue
            out.append(
                PlaceCandidate(
                    place_id=str(place_id),
                    name=str(item.get("name") or ""),
                    address=str(item.get("formatted_address") or ""),
                )
            )
        return out

    def place_details(self, place_id: str) -> Optional[PlaceDetails]:
        try:
            payload = self._get("/place/details/json", {"place_id": place_id, "fields": DETAIL_FIELDS})
        except PlacesError as exc:
            logger.warning("place details failed for {}: {}", place_id, exc)
            return None
        result = payload.get("result")
        if not result:
            return None

        reviews: list[PlaceReview] = []
        for raw in result.get("reviews") or []:
            text = raw.get("text") or ""
            if not text.strip():
                continue
            reviews.append(
                PlaceReview(
                    author=str(raw.get("author_name") or "Anonymous"),
                    rating=float(raw.get("rating") or 0),
                    text=text,
                    timestamp=int(raw.get("time") or 0),
                )
            )

        point = None
        location = (result.get("geometry") or {}).get("location") or {}
        if location.get("lat") is not None and location.get("lng") is not None:
            point = GeoPoint(lat=float(location["lat"]), lng=float(location["lng"]))

        rating = result.get("rating")
        return PlaceDetails(
            place_id=str(result.get("place_id") or place_id),
            name=str(result.get("name") or ""),
            rating=float(rating) if isinstance(rating, (int, float)) else None,
            rating_count=int(result.get("user_ratings_total") or 0),
            reviews=reviews,
            formatted_address=result.get("formatted_address"),
            point=point,
        )

    def find_place(self, query: str) -> Optional[PlaceDetails]:
        candidates = self.text_search(query)
        if not candidates:
            logger.info("no places results for '{}'", query)
            return None
        best = candidates[0]
        logger.info("found place {} ({})", best.name, best.place_id)
        return self.place_details(best.place_id)
