"""Operator REST routers: health, metrics, monitor, services, usage, cache, geodata."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from geoshield import __version__
from geoshield.application.dtos import (
    AvailabilityRequest,
    CacheMaintenanceResponse,
    ErrorResponse,
    HealthResponse,
    ReportListResponse,
    RouteRequest,
    ServiceHealthResponse,
)
from geoshield.application.services import GeocodingService, RoutingService, TileService
from geoshield.dependencies import (
    ResilienceContainer,
    get_container,
    get_geocoding,
    get_routing,
    get_tiles,
)
from geoshield.domain.models import LatLng, Place, Route

_PROVIDER_ERRORS: dict[int | str, dict[str, Any]] = {
    429: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


# ═══════════════════════════════════════════════════════════════
#  Health & metrics
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(
    container: ResilienceContainer = Depends(get_container),
) -> HealthResponse:
    store_ok = await container.store.health_check()
    services = {
        "durable_store": "connected" if store_ok else "disconnected",
        "monitor": "running" if container.monitor.running_loops else "stopped",
        "connectivity": "online" if container.connectivity.is_online() else "offline",
    }
    return HealthResponse(
        status="ok" if store_ok else "degraded",
        version=__version__,
        environment=container.settings.app_env.value,
        services=services,
    )


@health_router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ═══════════════════════════════════════════════════════════════
#  Monitor
# ═══════════════════════════════════════════════════════════════
monitor_router = APIRouter(prefix="/monitor", tags=["Monitor"])


@monitor_router.get("/status")
async def monitor_status(
    container: ResilienceContainer = Depends(get_container),
) -> dict[str, Any]:
    return container.monitor.status()


@monitor_router.get("/reports", response_model=ReportListResponse)
async def list_reports(
    limit: int = Query(10, ge=1, le=100),
    container: ResilienceContainer = Depends(get_container),
) -> ReportListResponse:
    reports = await container.monitor.recent_reports(limit)
    return ReportListResponse(total=len(reports), reports=reports)


@monitor_router.post("/reports", status_code=status.HTTP_201_CREATED)
async def create_report(
    container: ResilienceContainer = Depends(get_container),
) -> dict[str, Any]:
    return await container.monitor.generate_report()


# ═══════════════════════════════════════════════════════════════
#  Provider health
# ═══════════════════════════════════════════════════════════════
services_router = APIRouter(prefix="/services", tags=["Provider Health"])


def _service_health(container: ResilienceContainer, name: str) -> ServiceHealthResponse:
    record = container.health.health(name)
    return ServiceHealthResponse(
        service_name=name,
        status=container.health.status_label(record).value,
        score=round(container.health.health_score(record), 1),
        record=record.to_dict(),
    )


@services_router.get("/health")
async def all_service_health(
    container: ResilienceContainer = Depends(get_container),
) -> dict[str, Any]:
    return {
        "overall_score": round(container.health.overall_score(), 2),
        "unhealthy": container.health.unhealthy_services(),
        "services": container.monitor.health_view(),
    }


@services_router.get("/{name}/health", response_model=ServiceHealthResponse)
async def service_health(
    name: str,
    container: ResilienceContainer = Depends(get_container),
) -> ServiceHealthResponse:
    return _service_health(container, name)


@services_router.put("/{name}/availability", response_model=ServiceHealthResponse)
async def override_availability(
    name: str,
    body: AvailabilityRequest,
    container: ResilienceContainer = Depends(get_container),
) -> ServiceHealthResponse:
    """Pin a service up or down until the override is cleared."""
    container.health.set_manual_availability(name, body.available)
    return _service_health(container, name)


@services_router.delete("/{name}/availability", response_model=ServiceHealthResponse)
async def clear_availability_override(
    name: str,
    container: ResilienceContainer = Depends(get_container),
) -> ServiceHealthResponse:
    container.health.clear_manual_availability(name)
    return _service_health(container, name)


@services_router.post("/{name}/reset")
async def reset_service(
    name: str,
    container: ResilienceContainer = Depends(get_container),
) -> dict[str, str]:
    """Forget the health history of one service."""
    container.health.reset(name)
    return {"status": "reset", "service_name": name}


# ═══════════════════════════════════════════════════════════════
#  Usage
# ═══════════════════════════════════════════════════════════════
usage_router = APIRouter(prefix="/usage", tags=["Usage"])


@usage_router.get("")
async def all_usage(
    container: ResilienceContainer = Depends(get_container),
) -> dict[str, dict[str, Any]]:
    return {name: s.to_dict() for name, s in container.usage.all_status().items()}


@usage_router.get("/{name}")
async def service_usage(
    name: str,
    container: ResilienceContainer = Depends(get_container),
) -> dict[str, Any]:
    if name not in container.usage.services:
        raise HTTPException(status_code=404, detail=f"No rate limit configured for {name!r}")
    return container.usage.status(name).to_dict()


# ═══════════════════════════════════════════════════════════════
#  Cache
# ═══════════════════════════════════════════════════════════════
cache_router = APIRouter(prefix="/cache", tags=["Cache"])


@cache_router.get("/stats")
async def cache_stats(
    container: ResilienceContainer = Depends(get_container),
) -> dict[str, Any]:
    return (await container.cache.stats()).to_dict()


@cache_router.post("/purge", response_model=CacheMaintenanceResponse)
async def purge_cache(
    namespace: str | None = Query(None),
    container: ResilienceContainer = Depends(get_container),
) -> CacheMaintenanceResponse:
    if namespace is not None and namespace not in container.cache.namespaces:
        raise HTTPException(status_code=404, detail=f"Unknown cache namespace {namespace!r}")
    removed = await container.cache.purge_expired(namespace)
    return CacheMaintenanceResponse(namespace=namespace, removed=removed)


@cache_router.delete("", response_model=CacheMaintenanceResponse)
async def clear_cache(
    container: ResilienceContainer = Depends(get_container),
) -> CacheMaintenanceResponse:
    return CacheMaintenanceResponse(removed=await container.cache.clear())


@cache_router.delete("/{namespace}", response_model=CacheMaintenanceResponse)
async def clear_namespace(
    namespace: str,
    container: ResilienceContainer = Depends(get_container),
) -> CacheMaintenanceResponse:
    if namespace not in container.cache.namespaces:
        raise HTTPException(status_code=404, detail=f"Unknown cache namespace {namespace!r}")
    removed = await container.cache.clear(namespace)
    return CacheMaintenanceResponse(namespace=namespace, removed=removed)


# ═══════════════════════════════════════════════════════════════
#  Geodata
# ═══════════════════════════════════════════════════════════════
geo_router = APIRouter(prefix="/geo", tags=["Geodata"], responses=_PROVIDER_ERRORS)


@geo_router.get("/search", response_model=list[Place])
async def search_places(
    q: str = Query(..., max_length=256),
    service: GeocodingService = Depends(get_geocoding),
) -> list[Place]:
    return await service.search_places(q)


@geo_router.get("/reverse", response_model=Place)
async def reverse_geocode(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    service: GeocodingService = Depends(get_geocoding),
) -> Place:
    place = await service.reverse_geocode(LatLng(lat=lat, lng=lng))
    if place is None:
        raise HTTPException(status_code=404, detail="No address found at this location")
    return place


@geo_router.post("/route", response_model=Route)
async def calculate_route(
    body: RouteRequest,
    service: RoutingService = Depends(get_routing),
) -> Route:
    waypoints = list(body.waypoints)
    order: list[int] | None = None
    if body.optimize and len(waypoints) > 1:
        points = [body.origin, *waypoints, body.destination]
        optimized = await service.optimize_waypoints(points)
        order = _waypoint_order(waypoints, optimized[1:-1])
        waypoints = optimized[1:-1]
    route = await service.calculate_route(body.origin, body.destination, waypoints)
    if order is not None:
        route = route.model_copy(update={"waypoint_order": order})
    return route


@geo_router.get(
    "/tiles/{z}/{x}/{y}",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def get_tile(
    z: int,
    x: int,
    y: int,
    service: TileService = Depends(get_tiles),
) -> Response:
    data = await service.get_tile(z, x, y)
    return Response(
        content=data,
        media_type="image/png",
        headers={"Cache-Control": "public, max-age=86400"},
    )


def _waypoint_order(waypoints: list[LatLng], optimized: list[LatLng]) -> list[int]:
    """Input index of each optimised waypoint; repeated points keep distinct indexes."""
    unused = list(range(len(waypoints)))
    order: list[int] = []
    for point in optimized:
        index = next(i for i in unused if waypoints[i] == point)
        unused.remove(index)
        order.append(index)
    return order
