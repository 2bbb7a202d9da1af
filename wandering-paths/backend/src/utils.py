"""Utility helpers for the restaurant bookmarking backend."""

from __future__ import annotations

import json
import math
import threading
import time
from typing import Any, Optional

from models import GeoPoint

EARTH_RADIUS_KM = 6371.0
WALKING_SPEED_KMH = 5.0


class Cancelled(RuntimeError):
    pass


class CancelToken:
    """Cooperative cancellation flag threaded from the caller into long-running work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("operation cancelled")

    def sleep(self, seconds: float) -> None:
        """Wait up to ``seconds``; raises Cancelled as soon as the token fires."""
        if self._event.wait(max(0.0, seconds)):
            raise Cancelled("operation cancelled")


def check_cancelled(token: Optional[CancelToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()


def pause(seconds: float, token: Optional[CancelToken] = None) -> None:
    if seconds <= 0:
        check_cancelled(token)
        return
    if token is None:
        time.sleep(seconds)
    else:
        token.sleep(seconds)


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    if not value:
        return "unset"
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}...{value[-visible:]}"


def strip_thinking_tokens(text: str) -> str:
    """Remove <think>...</think> blocks if present."""
    if not text:
        return text
    while True:
        start = text.find("<think>")
        if start == -1:
            break
        end = text.find("</think>", start)
        if end == -1:
            break
        text = text[:start] + text[end + len("</think>") :]
    return text


def _balanced_object_end(text: str, start: int) -> int:
    """Index one past the brace closing the object opened at ``start``, or -1."""
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return idx + 1
    return -1


def extract_json_object(text: Optional[str]) -> Optional[dict[str, Any]]:
    """Return the first balanced ``{...}`` block in ``text`` that parses as a JSON object.

    Model output often wraps the payload in prose ("Here is the summary: {...} Hope
    this helps!"), so the whole response is never required to be valid JSON.
    """
    if not text:
        return None
    cleaned = strip_thinking_tokens(text)
    start = cleaned.find("{")
    while start != -1:
        end = _balanced_object_end(cleaned, start)
        if end == -1:
            start = cleaned.find("{", start + 1)
            continue
        try:
            value = json.loads(cleaned[start:end])
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        start = cleaned.find("{", start + 1)
    return None


def to_radians(degrees: float) -> float:
    return degrees * (math.pi / 180.0)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers."""
    phi1 = to_radians(lat1)
    phi2 = to_radians(lat2)
    dphi = to_radians(lat2 - lat1)
    dlambda = to_radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def calculate_distance(a: GeoPoint, b: GeoPoint) -> float:
    if a == b:
        return 0.0
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def calculate_walking_time(distance_km: float, speed_kmh: float = WALKING_SPEED_KMH) -> float:
    """Minutes needed to walk ``distance_km`` at a constant speed."""
    return distance_km / speed_kmh * 60


def walking_radius_km(max_minutes: float, speed_kmh: float = WALKING_SPEED_KMH) -> float:
    return max_minutes / 60 * speed_kmh


def is_within_walking_distance(a: GeoPoint, b: GeoPoint, max_minutes: float = 20) -> bool:
    return calculate_walking_time(calculate_distance(a, b)) <= max_minutes
