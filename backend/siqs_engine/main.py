from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from .logging_utils import log_event
from .metrics_store import metrics_snapshot, record_estimation_source, record_request
from .models import (
    BatchSiqsRequest,
    BatchSiqsResponse,
    CacheClearResponse,
    SiqsRequest,
    SiqsResponse,
    TerrainResponse,
    WaterCheckResponse,
    siqs_response,
)
from .settings import settings
from .siqs import SiqsEstimator, build_estimator


@asynccontextmanager
async def lifespan(app: FastAPI):
    estimator = build_estimator()
    estimator.start()
    app.state.estimator = estimator
    log_event(
        "service_started",
        strategy=estimator.strategy,
        cache_persistent=settings.siqs_cache_persist,
    )
    yield
    await estimator.aclose()


app = FastAPI(title="SIQS Estimation Service", version="0.3.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    t0 = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = f"{request.method} {getattr(route, 'path', request.url.path)}"
    record_request(
        endpoint,
        duration_ms=(time.perf_counter() - t0) * 1000,
        error=response.status_code >= 400,
    )
    return response


def siqs_estimator(request: Request) -> SiqsEstimator:
    estimator: SiqsEstimator | None = getattr(request.app.state, "estimator", None)  # type: ignore[attr-defined]
    if estimator is None:
        raise HTTPException(status_code=503, detail="estimator not initialised")
    return estimator


EstimatorDep = Annotated[SiqsEstimator, Depends(siqs_estimator)]


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


async def _estimate(
    estimator: SiqsEstimator,
    *,
    lat: float,
    lon: float,
    bortle: float | None,
    name: str | None,
) -> SiqsResponse:
    result = await estimator.get_siqs(lat, lon, bortle_override=bortle, location_name=name)
    record_estimation_source(result.source)
    return siqs_response(result.as_dict())


@app.get("/siqs", response_model=SiqsResponse)
async def get_siqs(
    estimator: EstimatorDep,
    lat: float,
    lon: float,
    bortle: float | None = None,
    name: str | None = Query(default=None, max_length=200),
) -> SiqsResponse:
    t0 = time.perf_counter()
    response = await _estimate(estimator, lat=lat, lon=lon, bortle=bortle, name=name)
    log_event(
        "siqs_request",
        lat=lat,
        lon=lon,
        source=response.source,
        siqs=response.siqs,
        confidence=response.confidence,
        duration_ms=round((time.perf_counter() - t0) * 1000, 2),
    )
    return response


@app.post("/siqs", response_model=SiqsResponse)
async def post_siqs(req: SiqsRequest, estimator: EstimatorDep) -> SiqsResponse:
    t0 = time.perf_counter()
    response = await _estimate(estimator, lat=req.lat, lon=req.lon, bortle=req.bortle, name=req.name)
    log_event(
        "siqs_request",
        lat=req.lat,
        lon=req.lon,
        source=response.source,
        siqs=response.siqs,
        confidence=response.confidence,
        duration_ms=round((time.perf_counter() - t0) * 1000, 2),
    )
    return response


@app.post("/siqs/batch", response_model=BatchSiqsResponse)
async def batch_siqs(req: BatchSiqsRequest, estimator: EstimatorDep) -> BatchSiqsResponse:
    if len(req.points) > settings.batch_max_points:
        raise HTTPException(
            status_code=422,
            detail=f"batch is limited to {settings.batch_max_points} points",
        )
    batch_id = str(uuid.uuid4())
    t0 = time.perf_counter()

    sem = asyncio.Semaphore(settings.batch_concurrency)

    async def one(point: SiqsRequest) -> SiqsResponse:
        async with sem:
            return await _estimate(estimator, lat=point.lat, lon=point.lon, bortle=point.bortle, name=point.name)

    results = list(await asyncio.gather(*[one(p) for p in req.points]))
    if req.sort_by_siqs:
        # Stable sort keeps input order among equal scores.
        results.sort(key=lambda r: r.siqs, reverse=True)

    duration_ms = round((time.perf_counter() - t0) * 1000, 2)
    viable_count = sum(1 for r in results if r.is_viable)
    log_event(
        "siqs_batch_request",
        batch_id=batch_id,
        point_count=len(req.points),
        viable_count=viable_count,
        batch_concurrency=settings.batch_concurrency,
        duration_ms=duration_ms,
    )
    return BatchSiqsResponse(results=results, viable_count=viable_count, duration_ms=duration_ms)


@app.get("/water", response_model=WaterCheckResponse)
async def check_water(estimator: EstimatorDep, lat: float, lon: float) -> WaterCheckResponse:
    result = await estimator.water.classify_async(lat, lon)
    return WaterCheckResponse(**result.as_dict())


@app.get("/terrain", response_model=TerrainResponse)
async def check_terrain(
    estimator: EstimatorDep,
    lat: float,
    lon: float,
    name: str | None = Query(default=None, max_length=200),
) -> TerrainResponse:
    result = await estimator.terrain.estimate_terrain_async(lat, lon, location_name=name)
    return TerrainResponse(**result.as_dict())


@app.get("/cache/stats")
async def cache_stats(estimator: EstimatorDep) -> dict[str, Any]:
    return {
        "siqs": estimator.cache.snapshot(),
        "water": estimator.water.cache.snapshot(),
    }


@app.delete("/cache", response_model=CacheClearResponse)
async def clear_cache(
    estimator: EstimatorDep,
    prefix: str | None = Query(default=None, max_length=200),
) -> CacheClearResponse:
    removed = estimator.cache.clear(prefix)
    if not prefix:
        removed += estimator.water.cache.clear()
    log_event("cache_cleared", prefix=prefix, removed=removed)
    return CacheClearResponse(removed=removed, prefix=prefix)


@app.get("/metrics")
async def metrics() -> dict[str, object]:
    return metrics_snapshot()
