"""Geodata value objects shared by provider clients, services and the cache.

All provider-specific payloads are normalised to these models so the
caller never learns which provider answered.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LatLng(BaseModel):
    """A WGS84 coordinate."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Place(BaseModel):
    """A geocoding hit."""

    place_id: str
    name: str
    address: str
    location: LatLng
    types: list[str] = Field(default_factory=list)
    relevance: float | None = None
    source: str | None = None


class RouteStep(BaseModel):
    instruction: str
    distance_m: float = Field(0.0, ge=0)
    duration_s: float = Field(0.0, ge=0)


class Route(BaseModel):
    """A driving route between an ordered list of points."""

    points: list[LatLng]
    distance_km: float = Field(..., ge=0)
    duration_s: float = Field(..., ge=0)
    steps: list[RouteStep] = Field(default_factory=list)
    waypoint_order: list[int] | None = None
    source: str | None = None

    @property
    def summary(self) -> str:
        minutes = round(self.duration_s / 60)
        if self.distance_km < 1:
            return f"{minutes} min ({self.distance_km * 1000:.0f} m)"
        return f"{minutes} min ({self.distance_km:.1f} km)"
