"""FastAPI application entry-point.

Assembles routers, middleware, exception handlers, and the container
lifecycle.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from geoshield import __version__
from geoshield.adapters.inbound.rest.routers import (
    cache_router,
    geo_router,
    health_router,
    monitor_router,
    services_router,
    usage_router,
)
from geoshield.config import Settings, get_settings
from geoshield.dependencies import ResilienceContainer, build_container
from geoshield.shared.errors import register_exception_handlers
from geoshield.shared.middleware import LoggingMiddleware, MetricsMiddleware, RequestIdMiddleware
from geoshield.shared.observability import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the container on startup, close it on shutdown."""
    settings: Settings = app.state.settings
    configure_logging(log_level=settings.log_level, json_logs=settings.is_production)
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        durable_store=settings.durable_store.value,
        monitor_enabled=settings.monitor_enabled,
    )

    container: ResilienceContainer = app.state.container
    await container.start()
    try:
        yield
    finally:
        await container.close()
        logger.info("application_shutdown")


def create_app(
    settings: Settings | None = None,
    *,
    container: ResilienceContainer | None = None,
) -> FastAPI:
    """Application factory: a fully configured FastAPI instance.

    Pass ``container`` to run the API over pre-wired components (tests).
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="GeoShield",
        description=(
            "Resilience and caching layer for public geodata providers: "
            "geocoding, routing and map tiles with health-aware failover, "
            "request budgets and an operator monitoring API."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container or build_container(settings)

    # ── Middleware (last added = outermost) ──────────────────
    allow_all_origins = "*" in settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if allow_all_origins else settings.cors_origins,
        allow_origin_regex=".*" if allow_all_origins else None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    api_v1 = "/api/v1"
    for router in (
        health_router,
        monitor_router,
        services_router,
        usage_router,
        cache_router,
        geo_router,
    ):
        app.include_router(router, prefix=api_v1)

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "geoshield.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )
