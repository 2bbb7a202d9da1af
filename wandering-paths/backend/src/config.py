from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field

from utils import mask_secret


class Configuration(BaseModel):
    # Google Maps (geocoding + places)
    google_maps_api_key: Optional[str] = Field(default=None)
    google_maps_base_url: str = Field(default="https://maps.googleapis.com/maps/api")

    # Nominatim fallback geocoder
    nominatim_base_url: str = Field(default="https://nominatim.openstreetmap.org")
    nominatim_user_agent: str = Field(default="WanderingPaths/1.0")

    http_timeout: int = Field(default=15)

    # Geo search
    geocode_bias_radius_m: int = Field(default=50000)
    max_walking_minutes: float = Field(default=20.0)
    walking_speed_kmh: float = Field(default=5.0)
    city_cache_ttl_sec: int = Field(default=300)
    geocode_cache_ttl_sec: int = Field(default=1800)
    geocode_cache_max: int = Field(default=128)

    # Enrichment
    enrichment_delay_sec: float = Field(default=2.0)
    geocoding_delay_sec: float = Field(default=1.0)
    summary_max_age_days: int = Field(default=30)
    max_reviews: int = Field(default=5)
    max_dishes: int = Field(default=3)

    # LLM (optional)
    local_llm: Optional[str] = Field(default=None)
    llm_provider: Optional[str] = Field(default=None)
    llm_api_key: Optional[str] = Field(default=None)
    llm_base_url: Optional[str] = Field(default=None)
    llm_model_id: Optional[str] = Field(default=None)
    # native ollama base (without /v1)
    ollama_base_url: str = Field(default="http://localhost:11434")

    # Repository seed data (JSON list of restaurants)
    seed_path: Optional[str] = Field(default=None)

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "google_maps_api_key": os.getenv("GOOGLE_MAPS_API_KEY"),
            "google_maps_base_url": os.getenv("GOOGLE_MAPS_BASE_URL"),
            "nominatim_base_url": os.getenv("NOMINATIM_BASE_URL"),
            "nominatim_user_agent": os.getenv("NOMINATIM_USER_AGENT"),
            "http_timeout": os.getenv("HTTP_TIMEOUT"),
            "geocode_bias_radius_m": os.getenv("GEOCODE_BIAS_RADIUS_M"),
            "max_walking_minutes": os.getenv("MAX_WALKING_MINUTES"),
            "walking_speed_kmh": os.getenv("WALKING_SPEED_KMH"),
            "city_cache_ttl_sec": os.getenv("CITY_CACHE_TTL_SEC"),
            "geocode_cache_ttl_sec": os.getenv("GEOCODE_CACHE_TTL_SEC"),
            "geocode_cache_max": os.getenv("GEOCODE_CACHE_MAX"),
            "enrichment_delay_sec": os.getenv("ENRICHMENT_DELAY_SEC"),
            "geocoding_delay_sec": os.getenv("GEOCODING_DELAY_SEC"),
            "summary_max_age_days": os.getenv("SUMMARY_MAX_AGE_DAYS"),
            "max_reviews": os.getenv("MAX_REVIEWS"),
            "max_dishes": os.getenv("MAX_DISHES"),
            # LLM
            "local_llm": os.getenv("LOCAL_LLM"),
            "llm_provider": os.getenv("LLM_PROVIDER"),
            "llm_api_key": os.getenv("LLM_API_KEY"),
            "llm_base_url": os.getenv("LLM_BASE_URL"),
            "llm_model_id": os.getenv("LLM_MODEL_ID"),
            "ollama_base_url": os.getenv("OLLAMA_BASE_URL"),
            "seed_path": os.getenv("SEED_PATH"),
        }

        for k, v in env_map.items():
            if v is None:
                continue
            raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def require_google_maps(self) -> None:
        if not self.google_maps_api_key:
            raise ValueError("GOOGLE_MAPS_API_KEY is required")

    def llm_enabled(self) -> bool:
        return bool(self.llm_provider or self.llm_base_url or self.local_llm)

    def log_summary(self) -> str:
        return (
            "google_maps=%s base=%s timeout=%s walking=%smin@%skm/h llm=%s api_key=%s llm_key=%s"
            % (
                bool(self.google_maps_api_key),
                self.google_maps_base_url,
                self.http_timeout,
                self.max_walking_minutes,
                self.walking_speed_kmh,
                self.llm_provider or "unset",
                mask_secret(self.google_maps_api_key),
                mask_secret(self.llm_api_key),
            )
        )

    def sanitized_ollama_url(self) -> str:
        base = (self.ollama_base_url or "http://localhost:11434").rstrip("/")
        if not base.endswith("/v1"):
            base = f"{base}/v1"
        return base
