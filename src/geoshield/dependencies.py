"""Dependency injection container: wires adapters to ports.

One ``ResilienceContainer`` per process (or per test). It is built by
``build_container``, started and closed by the FastAPI lifespan, and read
by route handlers through the ``Depends()`` factories below.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import structlog
from fastapi import Request

from geoshield.adapters.outbound.connectivity import StaticConnectivity
from geoshield.adapters.outbound.geo import (
    ClientOptions,
    HttpProviderClient,
    HttpTileFetcher,
    NominatimGeocoder,
    OpenRouteServiceRouter,
    OsrmRouter,
    PhotonGeocoder,
)
from geoshield.adapters.outbound.persistence.database import create_engine
from geoshield.adapters.outbound.persistence.store import SqlDurableStore
from geoshield.adapters.outbound.store import MemoryDurableStore, RedisDurableStore
from geoshield.application.services import (
    LABEL_OPTIMIZE,
    LABEL_REVERSE,
    LABEL_ROUTE,
    LABEL_SEARCH,
    LABEL_TILES,
    GeocodingService,
    RoutingService,
    TileService,
)
from geoshield.config import DurableStoreKind, Settings
from geoshield.ports.outbound import DurableStorePort
from geoshield.shared.cache import CacheStore, default_namespaces
from geoshield.shared.clock import Clock, SystemClock
from geoshield.shared.resilience import (
    CallAnalytics,
    FallbackExecutor,
    HealthTracker,
    MonitorCoordinator,
    MonitorIntervals,
    MonitorThresholds,
    UsageTracker,
    fallback_key,
    primary_key,
)
from geoshield.shared.resilience.monitor import Probe

logger = structlog.get_logger(__name__)


@dataclass
class ResilienceContainer:
    settings: Settings
    clock: Clock
    store: DurableStorePort
    cache: CacheStore
    health: HealthTracker
    usage: UsageTracker
    analytics: CallAnalytics
    executor: FallbackExecutor
    monitor: MonitorCoordinator
    connectivity: StaticConnectivity
    geocoding: GeocodingService
    routing: RoutingService
    tiles: TileService
    clients: list[HttpProviderClient] = field(default_factory=list)
    probes: dict[str, tuple[Probe, str]] = field(default_factory=dict)
    started: bool = False

    async def start(self) -> None:
        if self.started:
            return
        await self.store.init()
        if self.settings.cache_purge_on_startup:
            removed = await self.cache.purge_expired()
            logger.info("cache_startup_purge", removed=removed)
        for service, (probe, usage_key) in self.probes.items():
            self.monitor.register_probe(service, probe, usage_key=usage_key)
        if self.settings.monitor_enabled:
            self.monitor.start()
        self.started = True
        logger.info("resilience_container_started", store=self.settings.durable_store.value)

    async def close(self) -> None:
        await self.monitor.stop()
        await self.cache.close()
        for client in self.clients:
            await client.close()
        await self.store.close()
        self.started = False
        logger.info("resilience_container_closed")


# ═══════════════════════════════════════════════════════════════
#  Factories
# ═══════════════════════════════════════════════════════════════
def _probes(
    pairs: dict[str, tuple[HttpProviderClient, HttpProviderClient]],
) -> dict[str, tuple[Probe, str]]:
    # Labels served by the same provider share one ping per tick, charged to its budget.
    probes: dict[str, tuple[Probe, str]] = {}
    for label, (primary, secondary) in pairs.items():
        probes[primary_key(label)] = (primary.ping, primary.name)
        probes[fallback_key(label)] = (secondary.ping, secondary.name)
    return probes


def build_store(settings: Settings) -> DurableStorePort:
    if settings.durable_store == DurableStoreKind.REDIS:
        return RedisDurableStore(
            settings.redis_url,
            prefix=settings.redis_prefix,
            max_connections=settings.redis_max_connections,
        )
    if settings.durable_store == DurableStoreKind.SQL:
        return SqlDurableStore(create_engine(settings))
    return MemoryDurableStore()


def build_container(
    settings: Settings,
    *,
    clock: Clock | None = None,
    store: DurableStorePort | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ResilienceContainer:
    """Wire every component from ``settings``.

    ``store`` and ``transport`` replace the configured durable store and
    the real network (tests pass a MemoryDurableStore and an
    ``httpx.MockTransport``).
    """
    clock = clock or SystemClock()
    store = store or build_store(settings)

    health = HealthTracker(policy=settings.health_policy, clock=clock)
    usage = UsageTracker(settings.rate_limits, clock=clock)
    analytics = CallAnalytics(clock=clock)
    cache = CacheStore(
        store,
        clock=clock,
        namespaces=default_namespaces(
            geocode_ttl=settings.cache_geocode_ttl_seconds,
            route_ttl=settings.cache_route_ttl_seconds,
            tile_ttl=settings.cache_tile_ttl_seconds,
            hot_entries=settings.cache_hot_entries,
        ),
    )
    executor = FallbackExecutor(
        health,
        usage,
        analytics,
        default_timeout=settings.provider_timeout_seconds,
        fallback_enabled=settings.fallback_enabled,
    )
    monitor = MonitorCoordinator(
        health,
        usage,
        cache,
        analytics,
        store,
        clock=clock,
        intervals=MonitorIntervals(
            report=settings.monitor_report_interval_seconds,
            alert=settings.monitor_alert_interval_seconds,
            health_check=settings.monitor_health_check_interval_seconds,
            cache_purge=settings.monitor_cache_purge_interval_seconds,
        ),
        thresholds=MonitorThresholds(
            error_rate=settings.alert_error_rate_threshold,
            response_time_s=settings.alert_response_time_threshold_seconds,
            health_score=settings.alert_health_score_threshold,
        ),
        report_history=settings.monitor_report_history,
        probe_timeout=settings.provider_timeout_seconds,
    )
    connectivity = StaticConnectivity()

    options = ClientOptions(
        user_agent=settings.http_user_agent,
        timeout_s=settings.provider_timeout_seconds,
        max_retries=settings.provider_max_retries,
        backoff_base=settings.provider_backoff_base,
        backoff_max=settings.provider_backoff_max,
    )
    nominatim = NominatimGeocoder(settings.nominatim_url, options=options, transport=transport)
    photon = PhotonGeocoder(settings.photon_url, options=options, transport=transport)
    ors = OpenRouteServiceRouter(
        settings.openrouteservice_url,
        api_key=settings.openrouteservice_api_key,
        options=options,
        transport=transport,
    )
    osrm = OsrmRouter(settings.osrm_url, options=options, transport=transport)
    osm_tiles = HttpTileFetcher(
        "osm_tiles", settings.tile_url_template, options=options, transport=transport
    )
    tile_mirror = HttpTileFetcher(
        "tile_mirror", settings.tile_mirror_url_template, options=options, transport=transport
    )

    return ResilienceContainer(
        settings=settings,
        clock=clock,
        store=store,
        cache=cache,
        health=health,
        usage=usage,
        analytics=analytics,
        executor=executor,
        monitor=monitor,
        connectivity=connectivity,
        geocoding=GeocodingService(
            nominatim,
            photon,
            executor,
            cache,
            connectivity,
            result_limit=settings.geocode_result_limit,
        ),
        routing=RoutingService(
            ors,
            osrm,
            executor,
            cache,
            connectivity,
            primary_usage_keys=["openrouteservice", "openrouteservice_daily"],
        ),
        tiles=TileService(osm_tiles, tile_mirror, executor, cache, connectivity),
        clients=[nominatim, photon, ors, osrm, osm_tiles, tile_mirror],
        probes=_probes(
            {
                LABEL_SEARCH: (nominatim, photon),
                LABEL_REVERSE: (nominatim, photon),
                LABEL_ROUTE: (ors, osrm),
                LABEL_OPTIMIZE: (ors, osrm),
                LABEL_TILES: (osm_tiles, tile_mirror),
            }
        ),
    )


# ═══════════════════════════════════════════════════════════════
#  FastAPI dependencies
# ═══════════════════════════════════════════════════════════════
def get_container(request: Request) -> ResilienceContainer:
    return request.app.state.container


def get_geocoding(request: Request) -> GeocodingService:
    return get_container(request).geocoding


def get_routing(request: Request) -> RoutingService:
    return get_container(request).routing


def get_tiles(request: Request) -> TileService:
    return get_container(request).tiles
