"""Provider-specific geodata services.

Each service owns one primary/secondary provider pair. A call probes the
cache first, refuses to touch the network while offline, and otherwise
hands provider choice to the FallbackExecutor. Successful answers are
written back to the cache; ``None`` answers are not.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog

from geoshield.domain.exceptions import GeoShieldError, ProviderUnreachable
from geoshield.domain.models import LatLng, Place, Route
from geoshield.ports.outbound import (
    ConnectivityPort,
    GeocoderPort,
    RouterPort,
    TileFetcherPort,
)
from geoshield.shared.cache import (
    CacheStore,
    geocode_key,
    point_key,
    route_key,
    tile_key,
    waypoints_key,
)
from geoshield.shared.cache.keys import normalize_query
from geoshield.shared.resilience import FallbackExecutor

logger = structlog.get_logger(__name__)

# Health labels; tracked as primary_<label> / fallback_<label>.
LABEL_SEARCH = "geocoding_search"
LABEL_REVERSE = "geocoding_reverse"
LABEL_ROUTE = "routing"
LABEL_OPTIMIZE = "waypoint_optimization"
LABEL_TILES = "tiles"

SERVICE_LABELS = (LABEL_SEARCH, LABEL_REVERSE, LABEL_ROUTE, LABEL_OPTIMIZE, LABEL_TILES)


class _CachedProviderService:
    """Offline gate shared by every geodata service."""

    def __init__(
        self,
        executor: FallbackExecutor,
        cache: CacheStore,
        connectivity: ConnectivityPort,
    ) -> None:
        self._executor = executor
        self._cache = cache
        self._connectivity = connectivity

    async def _offline_lookup(self, namespace: str, key: str, label: str) -> Any:
        value = await self._cache.get(namespace, key)
        if value is None:
            logger.info("offline_cache_miss", namespace=namespace, label=label)
            raise ProviderUnreachable(label, "Offline and nothing cached")
        return value


# ═══════════════════════════════════════════════════════════════
#  Geocoding
# ═══════════════════════════════════════════════════════════════
class GeocodingService(_CachedProviderService):
    """Place search and reverse geocoding."""

    def __init__(
        self,
        primary: GeocoderPort,
        secondary: GeocoderPort,
        executor: FallbackExecutor,
        cache: CacheStore,
        connectivity: ConnectivityPort,
        *,
        result_limit: int = 10,
    ) -> None:
        super().__init__(executor, cache, connectivity)
        self._primary = primary
        self._secondary = secondary
        self._limit = result_limit

    async def search_places(self, query: str) -> list[Place]:
        query = " ".join(query.split())
        if not normalize_query(query):
            return []

        key = geocode_key(query)
        if not self._connectivity.is_online():
            return await self._offline_lookup("geocode", key, LABEL_SEARCH)

        async def load() -> list[Place]:
            return await self._executor.execute(
                lambda: self._primary.search(query, limit=self._limit),
                lambda: self._secondary.search(query, limit=self._limit),
                LABEL_SEARCH,
                usage_keys=[self._primary.name],
                secondary_usage_keys=[self._secondary.name],
            )

        places = await self._cache.get_or_load("geocode", key, load)
        logger.debug("places_searched", query=query, results=len(places))
        return places

    async def reverse_geocode(self, point: LatLng) -> Place | None:
        key = point_key(point.lat, point.lng)
        if not self._connectivity.is_online():
            return await self._offline_lookup("reverse_geocode", key, LABEL_REVERSE)

        async def load() -> Place | None:
            return await self._executor.execute(
                lambda: self._primary.reverse(point),
                lambda: self._secondary.reverse(point),
                LABEL_REVERSE,
                usage_keys=[self._primary.name],
                secondary_usage_keys=[self._secondary.name],
            )

        return await self._cache.get_or_load("reverse_geocode", key, load)


# ═══════════════════════════════════════════════════════════════
#  Routing
# ═══════════════════════════════════════════════════════════════
class RoutingService(_CachedProviderService):
    """Driving directions and waypoint ordering."""

    def __init__(
        self,
        primary: RouterPort,
        secondary: RouterPort,
        executor: FallbackExecutor,
        cache: CacheStore,
        connectivity: ConnectivityPort,
        *,
        primary_usage_keys: Sequence[str] | None = None,
    ) -> None:
        super().__init__(executor, cache, connectivity)
        self._primary = primary
        self._secondary = secondary
        self._primary_keys = list(primary_usage_keys or [primary.name])

    async def calculate_route(
        self,
        origin: LatLng,
        destination: LatLng,
        waypoints: Sequence[LatLng] = (),
    ) -> Route:
        points = [origin, *waypoints, destination]
        key = route_key(origin, destination, waypoints)
        if not self._connectivity.is_online():
            return await self._offline_lookup("route", key, LABEL_ROUTE)

        async def load() -> Route:
            return await self._executor.execute(
                lambda: self._primary.route(points),
                lambda: self._secondary.route(points),
                LABEL_ROUTE,
                usage_keys=self._primary_keys,
                secondary_usage_keys=[self._secondary.name],
            )

        route = await self._cache.get_or_load("route", key, load)
        logger.debug("route_calculated", key=key, summary=route.summary, source=route.source)
        return route

    async def optimize_waypoints(self, points: Sequence[LatLng]) -> list[LatLng]:
        """Best visiting order with the endpoints fixed.

        Never raises for provider trouble: the input order is returned and
        not cached.
        """
        points = list(points)
        if len(points) <= 3:
            return points

        key = waypoints_key(points)
        if not self._connectivity.is_online():
            cached = await self._cache.get("waypoints", key)
            return cached if cached is not None else points

        async def load() -> list[LatLng]:
            return await self._executor.execute(
                lambda: self._primary.optimize(points),
                lambda: self._secondary.optimize(points),
                LABEL_OPTIMIZE,
                usage_keys=self._primary_keys,
                secondary_usage_keys=[self._secondary.name],
            )

        try:
            return await self._cache.get_or_load("waypoints", key, load)
        except GeoShieldError as exc:
            logger.warning("waypoint_optimization_degraded", error=exc.message)
            return points


# ═══════════════════════════════════════════════════════════════
#  Tiles
# ═══════════════════════════════════════════════════════════════
class TileService(_CachedProviderService):
    """Raster map tiles."""

    def __init__(
        self,
        primary: TileFetcherPort,
        secondary: TileFetcherPort,
        executor: FallbackExecutor,
        cache: CacheStore,
        connectivity: ConnectivityPort,
    ) -> None:
        super().__init__(executor, cache, connectivity)
        self._primary = primary
        self._secondary = secondary

    async def get_tile(self, zoom: int, x: int, y: int) -> bytes:
        if not 0 <= zoom <= 22:
            raise GeoShieldError(f"Zoom {zoom} outside 0..22", code="INVALID_TILE")
        limit = 1 << zoom
        if not (0 <= x < limit and 0 <= y < limit):
            raise GeoShieldError(f"Tile {zoom}/{x}/{y} does not exist", code="INVALID_TILE")

        key = tile_key(zoom, x, y)
        if not self._connectivity.is_online():
            return await self._offline_lookup("tile", key, LABEL_TILES)

        async def load() -> bytes:
            return await self._executor.execute(
                lambda: self._primary.fetch(zoom, x, y),
                lambda: self._secondary.fetch(zoom, x, y),
                LABEL_TILES,
                usage_keys=[self._primary.name],
                secondary_usage_keys=[self._secondary.name],
            )

        return await self._cache.get_or_load("tile", key, load)


__all__ = [
    "GeocodingService",
    "RoutingService",
    "SERVICE_LABELS",
    "TileService",
]
