"""Data Transfer Objects: pydantic models for the operator API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from geoshield.domain.models import LatLng


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str
    causes: dict[str, str] | None = None


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    services: dict[str, str] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════
#  Provider health
# ═══════════════════════════════════════════════════════════════
class AvailabilityRequest(BaseModel):
    available: bool


class ServiceHealthResponse(BaseModel):
    service_name: str
    status: str
    score: float
    record: dict[str, Any]


# ═══════════════════════════════════════════════════════════════
#  Cache
# ═══════════════════════════════════════════════════════════════
class CacheMaintenanceResponse(BaseModel):
    namespace: str | None = None
    removed: int


# ═══════════════════════════════════════════════════════════════
#  Monitor
# ═══════════════════════════════════════════════════════════════
class ReportListResponse(BaseModel):
    total: int
    reports: list[dict[str, Any]]


# ═══════════════════════════════════════════════════════════════
#  Geodata
# ═══════════════════════════════════════════════════════════════
class RouteRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    origin: LatLng
    destination: LatLng
    waypoints: list[LatLng] = Field(default_factory=list, max_length=23)
    optimize: bool = False
