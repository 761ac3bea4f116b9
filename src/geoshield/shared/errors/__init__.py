"""Exception handlers: map resilience-layer errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
import structlog

from geoshield.domain.exceptions import (
    CombinedFailure,
    GeoShieldError,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnreachable,
    QuotaExceeded,
)

logger = structlog.get_logger(__name__)


def _body(exc: GeoShieldError, **extra: object) -> dict[str, object]:
    return {"code": exc.code, "message": exc.message, **extra}


def register_exception_handlers(app: FastAPI) -> None:
    """Register the error-family → status-code mapping on ``app``."""

    @app.exception_handler(QuotaExceeded)
    async def handle_quota(request: Request, exc: QuotaExceeded) -> ORJSONResponse:
        logger.warning("quota_exceeded_http", service=exc.service)
        return ORJSONResponse(status_code=429, content=_body(exc, service=exc.service))

    @app.exception_handler(ProviderTimeout)
    async def handle_timeout(request: Request, exc: ProviderTimeout) -> ORJSONResponse:
        logger.warning("provider_timeout_http", provider=exc.provider)
        return ORJSONResponse(status_code=504, content=_body(exc, provider=exc.provider))

    @app.exception_handler(ProviderUnreachable)
    async def handle_unreachable(request: Request, exc: ProviderUnreachable) -> ORJSONResponse:
        logger.warning("provider_unreachable_http", provider=exc.provider)
        return ORJSONResponse(status_code=503, content=_body(exc, provider=exc.provider))

    @app.exception_handler(ProviderRejected)
    async def handle_rejected(request: Request, exc: ProviderRejected) -> ORJSONResponse:
        logger.error("provider_rejected_http", provider=exc.provider, status=exc.status_code)
        return ORJSONResponse(status_code=502, content=_body(exc, provider=exc.provider))

    @app.exception_handler(CombinedFailure)
    async def handle_combined(request: Request, exc: CombinedFailure) -> ORJSONResponse:
        logger.error("combined_failure_http", label=exc.label, causes=exc.causes)
        return ORJSONResponse(status_code=502, content=_body(exc, causes=exc.causes))

    @app.exception_handler(GeoShieldError)
    async def handle_domain(request: Request, exc: GeoShieldError) -> ORJSONResponse:
        return ORJSONResponse(status_code=400, content=_body(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )
