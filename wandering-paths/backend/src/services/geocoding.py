from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, List, Optional, Tuple

import requests
from loguru import logger

from config import Configuration
from models import AddressComponent, GeocodeResult, GeoPoint
from services.bbox_builder import bbox_around
from utils import CancelToken, check_cancelled

CITY_COMPONENT_TYPES = ("locality", "postal_town", "administrative_area_level_1")


class GeocodingError(RuntimeError):
    pass


def extract_city_from_components(components: List[AddressComponent]) -> Optional[str]:
    for wanted in CITY_COMPONENT_TYPES:
        for comp in components:
            if wanted in comp.types:
                return comp.long_name
    return None


def determine_confidence(types: List[str], partial_match: bool = False) -> str:
    if "establishment" in types or "point_of_interest" in types:
        return "high"
    if "street_address" in types or "sublocality" in types:
        return "medium"
    if partial_match or "administrative_area_level_1" in types:
        return "low"
    return "medium"


def _bias_bounds(center: GeoPoint, radius_m: float) -> str:
    box = bbox_around(center, radius_m / 1000.0)
    return f"{box.min_lat:.6f},{box.min_lng:.6f}|{box.max_lat:.6f},{box.max_lng:.6f}"


class GoogleGeocoder:
    """Google Geocoding API. Returns None for zero results, raises GeocodingError on transport failure."""

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.google_maps_base_url.rstrip("/")
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.cfg.google_maps_api_key)

    def _get(self, path: str, params: dict) -> dict:
        url = f"{self.base}{path}"
        params = {**params, "key": self.cfg.google_maps_api_key}
        try:
            resp = self.session.get(url, params=params, timeout=self.cfg.http_timeout)
        except requests.RequestException as exc:
            raise GeocodingError(f"request error: {exc}")
        if not resp.ok:
            raise GeocodingError(f"upstream {resp.status_code}: {resp.text[:300]}")
        try:
            return resp.json()
        except ValueError:
            raise GeocodingError("invalid json response")

    def geocode(
        self,
        text: str,
        *,
        bias: Optional[GeoPoint] = None,
        bias_radius_m: Optional[float] = None,
    ) -> Optional[GeocodeResult]:
        params: dict[str, Any] = {"address": text}
        if bias is not None:
            params["bounds"] = _bias_bounds(bias, bias_radius_m or self.cfg.geocode_bias_radius_m)
        payload = self._get("/geocode/json", params)

        status = payload.get("status")
        results = payload.get("results") or []
        if status != "OK" or not results:
            logger.info("no geocoding results for '{}' (status: {})", text, status)
            return None

        first = results[0]
        location = (first.get("geometry") or {}).get("location") or {}
        lat, lng = location.get("lat"), location.get("lng")
        if lat is None or lng is None:
            return None
        components = [
            AddressComponent(
                long_name=str(comp.get("long_name") or ""),
                short_name=str(comp.get("short_name") or ""),
                types=list(comp.get("types") or []),
            )
            for comp in (first.get("address_components") or [])
        ]
        return GeocodeResult(
            point=GeoPoint(lat=float(lat), lng=float(lng)),
            formatted_address=str(first.get("formatted_address") or text),
            address_components=components,
            city=extract_city_from_components(components),
            confidence=determine_confidence(list(first.get("types") or []), bool(first.get("partial_match"))),
            place_id=first.get("place_id"),
        )


class NominatimGeocoder:
    """OpenStreetMap Nominatim, used when Google is not configured or unavailable."""

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.nominatim_base_url.rstrip("/")
        self.session = session or requests.Session()

    def geocode(
        self,
        text: str,
        *,
        bias: Optional[GeoPoint] = None,
        bias_radius_m: Optional[float] = None,
    ) -> Optional[GeocodeResult]:
        params: dict[str, Any] = {"q": text, "format": "json", "limit": 1, "addressdetails": 1}
        if bias is not None:
            box = bbox_around(bias, (bias_radius_m or self.cfg.geocode_bias_radius_m) / 1000.0)
            params["viewbox"] = f"{box.min_lng},{box.max_lat},{box.max_lng},{box.min_lat}"
        headers = {"User-Agent": self.cfg.nominatim_user_agent, "Accept": "application/json"}
        try:
            resp = self.session.get(
                f"{self.base}/search", params=params, headers=headers, timeout=self.cfg.http_timeout
            )
        except requests.RequestException as exc:
            raise GeocodingError(f"request error: {exc}")
        if not resp.ok:
            raise GeocodingError(f"upstream {resp.status_code}: {resp.text[:300]}")
        try:
            results = resp.json()
        except ValueError:
            raise GeocodingError("invalid json response")

        if not isinstance(results, list) or not results:
            logger.info("no nominatim results for '{}'", text)
            return None
        first = results[0]
        address = first.get("address") or {}
        city = address.get("city") or address.get("town") or address.get("village")
        return GeocodeResult(
            point=GeoPoint(lat=float(first["lat"]), lng=float(first["lon"])),
            formatted_address=str(first.get("display_name") or text),
            city=city,
            confidence="medium",
            place_id=str(first["place_id"]) if first.get("place_id") is not None else None,
        )


class GeocodingClient:
    """Primary (Google) geocoder with a Nominatim fallback and a short-TTL cache.

    Never raises for "not found" or provider failure: both come back as None.
    """

    def __init__(
        self,
        cfg: Configuration,
        primary: Optional[GoogleGeocoder] = None,
        fallback: Optional[NominatimGeocoder] = None,
    ) -> None:
        self.cfg = cfg
        self.primary = primary or GoogleGeocoder(cfg)
        self.fallback = fallback or NominatimGeocoder(cfg)
        self._cache_ttl = cfg.geocode_cache_ttl_sec
        self._cache_max = cfg.geocode_cache_max
        self._cache: OrderedDict[str, Tuple[float, Optional[GeocodeResult]]] = OrderedDict()
        self._cache_lock = threading.Lock()

    def _cache_get(self, key: str) -> Tuple[bool, Optional[GeocodeResult]]:
        with self._cache_lock:
            entry = self._cache.get(key)
            if not entry:
                return False, None
            ts, value = entry
            if time.time() - ts > self._cache_ttl:
                self._cache.pop(key, None)
                return False, None
            self._cache.move_to_end(key)
            return True, value

    def _cache_set(self, key: str, value: Optional[GeocodeResult]) -> None:
        with self._cache_lock:
            self._cache[key] = (time.time(), value)
            self._cache.move_to_end(key)
            while len(self._cache) > self._cache_max:
                self._cache.popitem(last=False)

    def geocode(
        self,
        query: str,
        hint: Optional[str] = None,
        *,
        bias: Optional[GeoPoint] = None,
        bias_radius_m: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[GeocodeResult]:
        if not query or not query.strip():
            raise ValueError("geocode query must not be empty")
        check_cancelled(cancel)

        text = query.strip()
        if hint and hint.strip():
            text = f"{hint.strip()} {text}"
        bias_key = "-"
        if bias:
            radius = bias_radius_m or self.cfg.geocode_bias_radius_m
            bias_key = f"{bias.lat:.4f},{bias.lng:.4f}@{radius:g}"
        key = f"geocode:{text.lower()}:{bias_key}"
        hit, cached = self._cache_get(key)
        if hit:
            return cached

        logger.debug("geocoding '{}'{}", text, " with location bias" if bias else "")
        providers = [self.primary, self.fallback] if self.primary.configured else [self.fallback]
        for provider in providers:
            check_cancelled(cancel)
            try:
                result = provider.geocode(text, bias=bias, bias_radius_m=bias_radius_m)
            except GeocodingError as exc:
                logger.warning("{} failed for '{}': {}", type(provider).__name__, text, exc)
                continue
            self._cache_set(key, result)
            if result:
                logger.info(
                    "geocoded '{}' to {:.5f},{:.5f} ({})",
                    text,
                    result.point.lat,
                    result.point.lng,
                    result.formatted_address,
                )
            return result
        return None
