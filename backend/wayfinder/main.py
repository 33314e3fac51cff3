from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .campus_data import CampusDataSource, CampusSnapshot, build_data_source
from .graph_cache import clear_graph_cache, graph_cache_stats
from .logging_utils import log_event, log_warning
from .metrics_store import MetricsStore
from .models import (
    AlternativeRoute,
    AlternativesRequest,
    AlternativesResponse,
    LegRequest,
    LegResponse,
    NavigationRequest,
    NavigationResponse,
    PlaceListResponse,
)
from .pathfinding import find_alternative_paths, solve_leg
from .route_policy import AwaitingParkingSelection, RoutePlanner
from .routing_errors import RoutingError, http_status_for


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.campus_source = build_data_source()
    app.state.metrics = MetricsStore()
    yield
    source: CampusDataSource | None = getattr(app.state, "campus_source", None)
    if source is not None:
        await source.aclose()


app = FastAPI(title="Campus Wayfinder", version="0.3.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _metrics(request: Request) -> MetricsStore | None:
    return getattr(request.app.state, "metrics", None)


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    t0 = time.perf_counter()
    response = await call_next(request)
    metrics = _metrics(request)
    if metrics is not None:
        # Route templates keep parameterised paths as one series.
        route = request.scope.get("route")
        metrics.record(
            f"{request.method} {getattr(route, 'path', request.url.path)}",
            duration_ms=(time.perf_counter() - t0) * 1000,
            status_code=response.status_code,
        )
    return response


def _http_error(request: Request, exc: RoutingError, *, request_id: str) -> HTTPException:
    metrics = _metrics(request)
    if metrics is not None:
        metrics.record_failure(exc.reason_code)
    log_warning(
        "routing_request_failed",
        request_id=request_id,
        path=request.url.path,
        reason_code=exc.reason_code,
        message=exc.message,
    )
    return HTTPException(status_code=http_status_for(exc.reason_code), detail=exc.as_detail())


def campus_source(request: Request) -> CampusDataSource:
    source: CampusDataSource | None = getattr(request.app.state, "campus_source", None)
    if source is None:
        raise HTTPException(
            status_code=503,
            detail={
                "reason_code": "campus_data_unavailable",
                "message": "No campus data source configured (set CAMPUS_DATA_PATH or CAMPUS_DATA_URL)",
                "details": {},
            },
        )
    return source


CampusSourceDep = Annotated[CampusDataSource, Depends(campus_source)]


async def _snapshot(request: Request, source: CampusDataSource, request_id: str) -> CampusSnapshot:
    try:
        return await source.load()
    except RoutingError as e:
        raise _http_error(request, e, request_id=request_id) from e


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Campus wayfinder backend is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/places", response_model=PlaceListResponse)
async def list_places(request: Request, source: CampusSourceDep) -> PlaceListResponse:
    snapshot = await _snapshot(request, source, str(uuid.uuid4()))
    return PlaceListResponse(places=list(snapshot.with_kiosk()))


@app.post("/routes/calculate", response_model=LegResponse)
async def calculate_route(req: LegRequest, request: Request, source: CampusSourceDep) -> LegResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()
    snapshot = await _snapshot(request, source, request_id)
    planner = RoutePlanner(snapshot)
    try:
        start = planner.resolve_start(req.start_id, req.start_lat, req.start_lng)
        end = snapshot.require_place(req.end_id)
        solution = await asyncio.to_thread(solve_leg, start, end, planner.segments_for(req.mode))
        if solution is None:
            raise RoutingError(
                reason_code="no_projection",
                message="No route found: the campus has no paths for this mode",
                details={"mode": req.mode},
            )
    except RoutingError as e:
        raise _http_error(request, e, request_id=request_id) from e

    log_event(
        "leg_request",
        request_id=request_id,
        start_id=start.id,
        end_id=end.id,
        mode=req.mode,
        connected=solution.connected,
        distance_m=round(solution.distance_m, 1),
        duration_ms=round((time.perf_counter() - t0) * 1000, 2),
    )
    return LegResponse(route=solution.polyline, distance_m=solution.distance_m, connected=solution.connected)


@app.post("/navigation", response_model=NavigationResponse)
async def plan_navigation(req: NavigationRequest, request: Request, source: CampusSourceDep) -> NavigationResponse:
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()
    snapshot = await _snapshot(request, source, request_id)
    planner = RoutePlanner(snapshot)
    try:
        outcome = await asyncio.to_thread(planner.plan_request, req)
    except RoutingError as e:
        raise _http_error(request, e, request_id=request_id) from e

    if isinstance(outcome, AwaitingParkingSelection):
        response = NavigationResponse(
            status=outcome.status,
            parking_type=outcome.parking_type,
            candidates=list(outcome.candidates),
        )
        notice_codes: list[str] = []
    else:
        response = NavigationResponse(status=outcome.status, route=outcome.route)
        notice_codes = [notice.code for notice in outcome.route.notices]

    metrics = _metrics(request)
    if metrics is not None:
        metrics.record_plan(response.status, notice_codes)
    log_event(
        "navigation_request",
        request_id=request_id,
        start_id=req.start_id,
        end_id=req.end_id,
        mode=req.mode,
        vehicle_type=req.vehicle_type,
        waypoint_count=len(req.waypoint_ids),
        status=response.status,
        notice_codes=notice_codes,
        duration_ms=round((time.perf_counter() - t0) * 1000, 2),
    )
    return response


@app.post("/navigation/alternatives", response_model=AlternativesResponse)
async def navigation_alternatives(
    req: AlternativesRequest,
    request: Request,
    source: CampusSourceDep,
) -> AlternativesResponse:
    request_id = str(uuid.uuid4())
    snapshot = await _snapshot(request, source, request_id)
    planner = RoutePlanner(snapshot)
    try:
        start = planner.resolve_start(req.start_id, req.start_lat, req.start_lng)
        end = snapshot.require_place(req.end_id)
    except RoutingError as e:
        raise _http_error(request, e, request_id=request_id) from e

    paths = await asyncio.to_thread(find_alternative_paths, start, end, planner.segments_for(req.mode), req.k)
    log_event(
        "alternatives_request",
        request_id=request_id,
        start_id=start.id,
        end_id=end.id,
        mode=req.mode,
        route_count=len(paths),
    )
    return AlternativesResponse(
        routes=[
            AlternativeRoute(rank=i, polyline=list(path.coordinates), distance_m=path.distance_m)
            for i, path in enumerate(paths)
        ]
    )


@app.delete("/cache/graph")
async def invalidate_graph_cache() -> dict[str, int]:
    cleared = clear_graph_cache()
    log_event("graph_cache_cleared", cleared=cleared)
    return {"cleared": cleared}


@app.get("/metrics")
async def get_metrics(request: Request) -> dict[str, object]:
    metrics = _metrics(request)
    snapshot = metrics.snapshot() if metrics is not None else {}
    return {**snapshot, "graph_cache": graph_cache_stats()}
