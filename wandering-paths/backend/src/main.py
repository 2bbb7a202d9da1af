from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field

from config import Configuration
from models import (
    EnrichmentResult,
    GeoPoint,
    Progress,
    Restaurant,
    RestaurantLocation,
    SearchFilters,
    SearchResult,
    Visit,
)
from services.city_matcher import CityMatcher
from services.enrichment import ReviewEnrichmentService
from services.extraction import ExtractionResult, RestaurantExtractor
from services.geocoding import GeocodingClient
from services.geocoding_batch import BatchGeocoder
from services.places import GooglePlacesClient
from services.repository import InMemoryRestaurantRepository, RestaurantNotFound, nearest_distance_km
from services.smart_search import SmartGeoSearch
from services.visits import VisitInput, VisitService

load_dotenv()

app = FastAPI(title="Wandering Paths")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass
class Services:
    cfg: Configuration
    repository: InMemoryRestaurantRepository
    city_matcher: CityMatcher
    search: SmartGeoSearch
    visits: VisitService
    enrichment: ReviewEnrichmentService
    batch_geocoder: BatchGeocoder
    extractor: RestaurantExtractor


def build_services(cfg: Configuration, repository: Optional[InMemoryRestaurantRepository] = None) -> Services:
    if repository is None:
        repository = (
            InMemoryRestaurantRepository.from_json_file(cfg.seed_path)
            if cfg.seed_path
            else InMemoryRestaurantRepository()
        )
    geocoder = GeocodingClient(cfg)
    city_matcher = CityMatcher(repository, cache_ttl_sec=cfg.city_cache_ttl_sec)
    return Services(
        cfg=cfg,
        repository=repository,
        city_matcher=city_matcher,
        search=SmartGeoSearch(cfg, repository, geocoder=geocoder, city_matcher=city_matcher),
        visits=VisitService(repository),
        enrichment=ReviewEnrichmentService(cfg, repository, places=GooglePlacesClient(cfg)),
        batch_geocoder=BatchGeocoder(cfg, repository, geocoder=geocoder),
        extractor=RestaurantExtractor(cfg),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        cfg = Configuration.from_env()
        logger.info("cfg: {}", cfg.log_summary())
        _services = build_services(cfg)
    return _services


# -- payloads --------------------------------------------------------------


class LocationPayload(BaseModel):
    id: str
    location_name: str
    full_address: str
    city: Optional[str] = None
    country: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    phone: Optional[str] = None
    opening_hours: Optional[str] = None


class RestaurantPayload(BaseModel):
    id: str
    name: str
    address: str
    status: str
    cuisine: Optional[str] = None
    price_range: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    atmosphere: Optional[str] = None
    dietary_options: Optional[str] = None
    public_rating: Optional[float] = None
    public_rating_count: Optional[int] = None
    personal_appreciation: str
    must_try_dishes: List[str] = []
    review_summary: Optional[str] = None
    summary_updated_at: Optional[datetime] = None
    latest_review_date: Optional[datetime] = None
    locations: List[LocationPayload] = []
    distance_km: Optional[float] = None


class SearchLocationPayload(BaseModel):
    name: str
    lat: float
    lng: float
    city: Optional[str] = None
    formatted_address: Optional[str] = None


class SearchResponse(BaseModel):
    strategy: str
    restaurants: List[RestaurantPayload]
    message: str
    search_location: Optional[SearchLocationPayload] = None
    search_time_ms: int = 0


class LocationRequest(BaseModel):
    location_name: str
    full_address: str
    city: Optional[str] = None
    country: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    phone: Optional[str] = None
    opening_hours: Optional[str] = None


class RestaurantRequest(BaseModel):
    name: str = Field(..., min_length=1)
    address: str = ""
    status: str = "to-visit"
    cuisine: Optional[str] = None
    price_range: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    atmosphere: Optional[str] = None
    dietary_options: Optional[str] = None
    must_try_dishes: List[str] = []
    locations: List[LocationRequest] = []


class StatusRequest(BaseModel):
    status: str


class VisitRequest(BaseModel):
    visit_date: str = Field(..., description="YYYY-MM-DD")
    rating: str
    experience_notes: Optional[str] = None
    company_notes: Optional[str] = None


class VisitPayload(BaseModel):
    id: str
    restaurant_id: str
    visit_date: date
    rating: str
    experience_notes: Optional[str] = None
    company_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class EnrichmentRunRequest(BaseModel):
    restaurant_ids: Optional[List[str]] = Field(None, description="Defaults to every restaurant needing enrichment")
    apply: bool = True


class EnrichmentDataPayload(BaseModel):
    rating: Optional[float] = None
    rating_count: int = 0
    review_summary: Optional[str] = None
    extracted_dishes: List[str] = []
    latest_review_date: Optional[datetime] = None


class EnrichmentResultPayload(BaseModel):
    success: bool
    restaurant_id: str
    restaurant_name: str
    message: Optional[str] = None
    error: Optional[str] = None
    data: Optional[EnrichmentDataPayload] = None


class GeocodingRunRequest(BaseModel):
    force_all: bool = False


class ExtractRequest(BaseModel):
    url: str
    save: bool = False


# -- conversions -----------------------------------------------------------


def _location_payload(loc: RestaurantLocation) -> LocationPayload:
    return LocationPayload(
        id=loc.id,
        location_name=loc.location_name,
        full_address=loc.full_address,
        city=loc.city,
        country=loc.country,
        lat=loc.point.lat if loc.point else None,
        lng=loc.point.lng if loc.point else None,
        phone=loc.phone,
        opening_hours=loc.opening_hours,
    )


def _restaurant_payload(r: Restaurant, center: Optional[GeoPoint] = None) -> RestaurantPayload:
    distance = nearest_distance_km(r, center) if center is not None else None
    return RestaurantPayload(
        id=r.id,
        name=r.name,
        address=r.address,
        status=r.status,
        cuisine=r.cuisine,
        price_range=r.price_range,
        website=r.website,
        description=r.description,
        atmosphere=r.atmosphere,
        dietary_options=r.dietary_options,
        public_rating=r.public_rating,
        public_rating_count=r.public_rating_count,
        personal_appreciation=r.personal_appreciation,
        must_try_dishes=list(r.must_try_dishes),
        review_summary=r.review_summary,
        summary_updated_at=r.summary_updated_at,
        latest_review_date=r.latest_review_date,
        locations=[_location_payload(loc) for loc in r.locations],
        distance_km=round(distance, 3) if distance is not None else None,
    )


def _search_payload(result: SearchResult) -> SearchResponse:
    loc = result.search_location
    center = loc.point if loc is not None else None
    return SearchResponse(
        strategy=result.strategy.value,
        restaurants=[_restaurant_payload(r, center) for r in result.restaurants],
        message=result.message,
        search_location=(
            SearchLocationPayload(
                name=loc.name,
                lat=loc.point.lat,
                lng=loc.point.lng,
                city=loc.city,
                formatted_address=loc.formatted_address,
            )
            if loc is not None
            else None
        ),
        search_time_ms=result.search_time_ms,
    )


def _visit_payload(v: Visit) -> VisitPayload:
    return VisitPayload(
        id=v.id,
        restaurant_id=v.restaurant_id,
        visit_date=v.visit_date,
        rating=v.rating,
        experience_notes=v.experience_notes,
        company_notes=v.company_notes,
        created_at=v.created_at,
        updated_at=v.updated_at,
    )


def _enrichment_payload(result: EnrichmentResult) -> EnrichmentResultPayload:
    data = result.data
    return EnrichmentResultPayload(
        success=result.success,
        restaurant_id=result.restaurant_id,
        restaurant_name=result.restaurant_name,
        message=result.message,
        error=result.error,
        data=(
            EnrichmentDataPayload(
                rating=data.rating,
                rating_count=data.rating_count,
                review_summary=data.review_summary,
                extracted_dishes=list(data.extracted_dishes),
                latest_review_date=data.latest_review_date,
            )
            if data is not None
            else None
        ),
    )


def _extraction_payload(result: ExtractionResult) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "success": result.success,
        "confidence": result.confidence,
        "is_not_restaurant": result.is_not_restaurant,
        "detected_type": result.detected_type,
        "message": result.message,
        "error": result.error,
        "cached": result.cached,
        "data": None,
    }
    if result.data is not None:
        d = result.data
        out["data"] = {
            "name": d.name,
            "website": d.website,
            "address_summary": d.address_summary,
            "phone": d.phone,
            "cuisine": d.cuisine,
            "description": d.description,
            "dietary_options": d.dietary_options,
            "price_range": d.price_range,
            "atmosphere": d.atmosphere,
            "must_try_dishes": list(d.must_try_dishes),
            "locations": [loc.__dict__ for loc in d.locations],
        }
    return out


def _to_location(req: LocationRequest) -> RestaurantLocation:
    point = GeoPoint(lat=req.lat, lng=req.lng) if req.lat is not None and req.lng is not None else None
    return RestaurantLocation(
        location_name=req.location_name,
        full_address=req.full_address,
        city=req.city,
        country=req.country,
        point=point,
        phone=req.phone,
        opening_hours=req.opening_hours,
    )


async def _run(fn, *args, **kwargs):
    """Run blocking service code off the event loop and map errors to HTTP statuses."""
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except RestaurantNotFound as exc:
        raise HTTPException(status_code=404, detail=f"not found: {exc.args[0] if exc.args else ''}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("request failed: {}", exc)
        raise HTTPException(status_code=500, detail="internal error")


# -- health ----------------------------------------------------------------


@app.get("/healthz")
def healthz(svc: Services = Depends(get_services)) -> dict:
    logger.info("cfg: {}", svc.cfg.log_summary())
    return {"status": "ok"}


@app.get("/health/geo")
def health_geo(svc: Services = Depends(get_services)) -> dict:
    cfg = svc.cfg
    provider = "google" if cfg.google_maps_api_key else "nominatim"
    try:
        if cfg.google_maps_api_key:
            r = requests.get(
                f"{cfg.google_maps_base_url.rstrip('/')}/geocode/json",
                params={"address": "London", "key": cfg.google_maps_api_key},
                timeout=cfg.http_timeout,
            )
        else:
            r = requests.get(
                f"{cfg.nominatim_base_url.rstrip('/')}/search",
                params={"q": "London", "format": "json", "limit": 1},
                headers={"User-Agent": cfg.nominatim_user_agent},
                timeout=cfg.http_timeout,
            )
        ok = r.ok
    except requests.RequestException as exc:
        logger.warning("geo health check failed: {}", exc)
        ok = False
    return {"ok": ok, "provider": provider}


@app.get("/health/llm")
def health_llm(svc: Services = Depends(get_services)) -> dict:
    cfg = svc.cfg
    provider = (cfg.llm_provider or "").lower()
    ok = False
    detail = None
    try:
        if provider == "ollama":
            r = requests.get(f"{cfg.ollama_base_url.rstrip('/')}/api/tags", timeout=5)
            ok = r.ok
            if r.ok:
                detail = r.json().get("models", [])
        elif cfg.llm_base_url:
            r = requests.get(f"{cfg.llm_base_url.rstrip('/')}/models", timeout=5)
            ok = r.ok
    except (requests.RequestException, ValueError) as exc:
        ok = False
        detail = str(exc)
    return {"ok": ok, "provider": provider or "unset", "detail": detail}


# -- restaurants -----------------------------------------------------------


@app.get("/restaurants", response_model=List[RestaurantPayload])
async def list_restaurants(
    cuisine: Optional[str] = None,
    status: Optional[str] = None,
    q: Optional[str] = None,
    svc: Services = Depends(get_services),
) -> List[RestaurantPayload]:
    filters = SearchFilters(cuisine=cuisine, status=status, search_text=q)
    items = await _run(svc.repository.list_restaurants, filters)
    return [_restaurant_payload(r) for r in items]


@app.get("/restaurants/{restaurant_id}", response_model=RestaurantPayload)
async def get_restaurant(restaurant_id: str, svc: Services = Depends(get_services)) -> RestaurantPayload:
    return _restaurant_payload(await _run(svc.repository.get, restaurant_id))


@app.post("/restaurants", response_model=RestaurantPayload, status_code=201)
async def create_restaurant(req: RestaurantRequest, svc: Services = Depends(get_services)) -> RestaurantPayload:
    def _create() -> Restaurant:
        restaurant = Restaurant(
            name=req.name.strip(),
            address=req.address,
            status=req.status,
            cuisine=req.cuisine,
            price_range=req.price_range,
            website=req.website,
            description=req.description,
            atmosphere=req.atmosphere,
            dietary_options=req.dietary_options,
            must_try_dishes=list(req.must_try_dishes),
            locations=[_to_location(loc) for loc in req.locations],
        )
        created = svc.repository.create(restaurant)
        svc.city_matcher.invalidate()
        return created

    return _restaurant_payload(await _run(_create))


@app.patch("/restaurants/{restaurant_id}/status", response_model=RestaurantPayload)
async def update_status(
    restaurant_id: str, req: StatusRequest, svc: Services = Depends(get_services)
) -> RestaurantPayload:
    return _restaurant_payload(await _run(svc.repository.update_status, restaurant_id, req.status))


@app.delete("/restaurants/{restaurant_id}", status_code=204)
async def delete_restaurant(restaurant_id: str, svc: Services = Depends(get_services)) -> None:
    await _run(svc.repository.delete, restaurant_id)
    svc.city_matcher.invalidate()


@app.get("/cuisines")
async def cuisines(svc: Services = Depends(get_services)) -> List[str]:
    return await _run(svc.repository.distinct_cuisines)


# -- search ----------------------------------------------------------------


@app.get("/search", response_model=SearchResponse)
async def search(
    q: str = "",
    cuisine: Optional[str] = None,
    status: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    svc: Services = Depends(get_services),
) -> SearchResponse:
    def _search() -> SearchResult:
        user_location = GeoPoint(lat=lat, lng=lng) if lat is not None and lng is not None else None
        return svc.search.search(q, SearchFilters(cuisine=cuisine, status=status), user_location)

    return _search_payload(await _run(_search))


# -- visits ----------------------------------------------------------------


@app.get("/restaurants/{restaurant_id}/visits", response_model=List[VisitPayload])
async def list_visits(
    restaurant_id: str, limit: Optional[int] = None, svc: Services = Depends(get_services)
) -> List[VisitPayload]:
    await _run(svc.repository.get, restaurant_id)
    if limit is not None:
        visits = await _run(svc.visits.get_latest_visits, restaurant_id, limit)
    else:
        visits = await _run(svc.visits.get_visits_by_restaurant, restaurant_id)
    return [_visit_payload(v) for v in visits]


@app.post("/restaurants/{restaurant_id}/visits", response_model=VisitPayload, status_code=201)
async def add_visit(restaurant_id: str, req: VisitRequest, svc: Services = Depends(get_services)) -> VisitPayload:
    data = VisitInput(
        restaurant_id=restaurant_id,
        visit_date=req.visit_date,
        rating=req.rating,
        experience_notes=req.experience_notes,
        company_notes=req.company_notes,
    )
    return _visit_payload(await _run(svc.visits.add_visit, data))


@app.put("/visits/{visit_id}", response_model=VisitPayload)
async def update_visit(visit_id: str, req: VisitRequest, svc: Services = Depends(get_services)) -> VisitPayload:
    existing = svc.visits.get_visit_by_id(visit_id)
    if existing is None:
        raise HTTPException(status_code=404, detail=f"not found: {visit_id}")
    data = VisitInput(
        restaurant_id=existing.restaurant_id,
        visit_date=req.visit_date,
        rating=req.rating,
        experience_notes=req.experience_notes,
        company_notes=req.company_notes,
    )
    return _visit_payload(await _run(svc.visits.update_visit, visit_id, data))


# -- enrichment ------------------------------------------------------------


def _enrichment_targets(svc: Services, ids: Optional[List[str]]) -> List[Restaurant]:
    if ids:
        return [svc.repository.get(rid) for rid in ids]
    return ReviewEnrichmentService.get_needs_enrichment(
        svc.repository.find_all_with_locations(), max_age_days=svc.cfg.summary_max_age_days
    )


@app.get("/enrichment/pending", response_model=List[RestaurantPayload])
async def enrichment_pending(svc: Services = Depends(get_services)) -> List[RestaurantPayload]:
    items = await _run(_enrichment_targets, svc, None)
    return [_restaurant_payload(r) for r in items]


@app.post("/enrichment/run", response_model=List[EnrichmentResultPayload])
async def enrichment_run(
    req: EnrichmentRunRequest, svc: Services = Depends(get_services)
) -> List[EnrichmentResultPayload]:
    try:
        svc.cfg.require_google_maps()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    def _enrich() -> List[EnrichmentResult]:
        results = svc.enrichment.enrich_many(_enrichment_targets(svc, req.restaurant_ids))
        if req.apply:
            results = [svc.enrichment.save_result(result) for result in results]
        return results

    return [_enrichment_payload(r) for r in await _run(_enrich)]


@app.post("/enrichment/stream")
async def enrichment_stream(req: EnrichmentRunRequest, svc: Services = Depends(get_services)):
    """SSE stream of enrichment progress followed by one event per restaurant result."""
    try:
        svc.cfg.require_google_maps()
        targets = _enrichment_targets(svc, req.restaurant_ids)
    except RestaurantNotFound as exc:
        raise HTTPException(status_code=404, detail=f"not found: {exc.args[0] if exc.args else ''}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_progress(progress: Progress) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, {"type": "progress", **progress.__dict__})

    def worker() -> None:
        try:
            for result in svc.enrichment.enrich_many(targets, progress_callback=on_progress):
                if req.apply:
                    result = svc.enrichment.save_result(result)
                payload = _enrichment_payload(result).model_dump(mode="json")
                loop.call_soon_threadsafe(queue.put_nowait, {"type": "result", "result": payload})
        except Exception as exc:
            logger.exception("enrichment stream failed: {}", exc)
            loop.call_soon_threadsafe(queue.put_nowait, {"type": "error", "message": str(exc)})
        finally:
            loop.call_soon_threadsafe(queue.put_nowait, None)

    async def event_generator():
        task = asyncio.create_task(asyncio.to_thread(worker))
        while True:
            event = await queue.get()
            if event is None:
                break
            yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"
        await task
        yield 'data: {"type":"complete"}\n\n'

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# -- geocoding -------------------------------------------------------------


@app.post("/geocoding/run")
async def geocoding_run(req: GeocodingRunRequest, svc: Services = Depends(get_services)) -> dict:
    progress = await _run(svc.batch_geocoder.run, force_all=req.force_all)
    svc.city_matcher.invalidate()
    return progress.as_dict()


@app.get("/geocoding/stats")
async def geocoding_stats(svc: Services = Depends(get_services)) -> dict:
    return await _run(svc.batch_geocoder.stats)


# -- extraction ------------------------------------------------------------


@app.post("/extract")
async def extract(req: ExtractRequest, svc: Services = Depends(get_services)) -> dict:
    if not svc.cfg.llm_enabled():
        raise HTTPException(status_code=400, detail="an LLM provider is required for extraction")
    result = await _run(svc.extractor.extract, req.url)
    payload = _extraction_payload(result)
    if req.save and result.success and result.data is not None:
        created = await _run(svc.repository.create, result.data.to_restaurant())
        svc.city_matcher.invalidate()
        payload["restaurant_id"] = created.id
    return payload


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8010, reload=True)
