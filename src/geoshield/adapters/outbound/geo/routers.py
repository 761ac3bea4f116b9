"""Routing clients: OpenRouteService (primary) and OSRM (secondary)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from geoshield.domain.exceptions import ProviderRejected
from geoshield.domain.models import LatLng, Route, RouteStep
from geoshield.ports.outbound import RouterPort

from .base import ClientOptions, HttpProviderClient

logger = structlog.get_logger(__name__)


def _require_two(provider: str, points: Sequence[LatLng]) -> None:
    if len(points) < 2:
        raise ProviderRejected(provider, "At least two points are required", status_code=400)


def _geojson_points(geometry: dict[str, Any] | None) -> list[LatLng]:
    coords = (geometry or {}).get("coordinates") or []
    return [LatLng(lat=float(c[1]), lng=float(c[0])) for c in coords]


# ═══════════════════════════════════════════════════════════════
#  OpenRouteService
# ═══════════════════════════════════════════════════════════════
class OpenRouteServiceRouter(HttpProviderClient, RouterPort):
    """ORS directions (``driving-car``) and the VROOM optimisation endpoint."""

    name = "openrouteservice"
    _ping_path = "/health"
    _profile = "driving-car"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        options: ClientOptions = ClientOptions(),
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": api_key} if api_key else None
        super().__init__(base_url, options=options, headers=headers, transport=transport)

    async def route(self, points: Sequence[LatLng]) -> Route:
        _require_two(self.name, points)
        response = await self._request(
            "POST",
            f"/v2/directions/{self._profile}/geojson",
            json={
                "coordinates": [[p.lng, p.lat] for p in points],
                "instructions": True,
            },
        )
        data = self._json(response)
        features = data.get("features") if isinstance(data, dict) else None
        if not features:
            raise ProviderRejected(self.name, "No route found")

        feature = features[0]
        props = feature.get("properties") or {}
        summary = props.get("summary") or {}
        steps = [
            RouteStep(
                instruction=step.get("instruction") or "",
                distance_m=float(step.get("distance") or 0.0),
                duration_s=float(step.get("duration") or 0.0),
            )
            for segment in props.get("segments") or []
            for step in segment.get("steps") or []
        ]
        return Route(
            points=_geojson_points(feature.get("geometry")) or list(points),
            distance_km=float(summary.get("distance") or 0.0) / 1000,
            duration_s=float(summary.get("duration") or 0.0),
            steps=steps,
            source=self.name,
        )

    async def optimize(self, points: Sequence[LatLng]) -> list[LatLng]:
        if len(points) <= 3:
            return list(points)
        start, end = points[0], points[-1]
        middle = list(points[1:-1])
        response = await self._request(
            "POST",
            "/optimization",
            json={
                "jobs": [
                    {"id": i, "location": [p.lng, p.lat]}
                    for i, p in enumerate(middle, start=1)
                ],
                "vehicles": [
                    {
                        "id": 1,
                        "profile": self._profile,
                        "start": [start.lng, start.lat],
                        "end": [end.lng, end.lat],
                    }
                ],
            },
        )
        data = self._json(response)
        routes = data.get("routes") if isinstance(data, dict) else None
        if not routes:
            raise ProviderRejected(self.name, "Optimisation returned no routes")

        order = [s["id"] - 1 for s in routes[0].get("steps") or [] if s.get("type") == "job"]
        if sorted(order) != list(range(len(middle))):
            raise ProviderRejected(self.name, "Optimisation dropped waypoints")
        return [start, *(middle[i] for i in order), end]


# ═══════════════════════════════════════════════════════════════
#  OSRM
# ═══════════════════════════════════════════════════════════════
class OsrmRouter(HttpProviderClient, RouterPort):
    """Project-OSRM ``route`` and ``trip`` services."""

    name = "osrm"
    _ping_path = "/route/v1/driving/13.388860,52.517037;13.397634,52.529407"
    _ping_params = {"overview": "false"}

    @staticmethod
    def _coords(points: Sequence[LatLng]) -> str:
        return ";".join(f"{p.lng},{p.lat}" for p in points)

    def _checked(self, data: Any) -> dict[str, Any]:
        if not isinstance(data, dict) or data.get("code") != "Ok":
            code = data.get("code") if isinstance(data, dict) else None
            raise ProviderRejected(self.name, f"OSRM answered {code or 'unknown'}")
        return data

    async def route(self, points: Sequence[LatLng]) -> Route:
        _require_two(self.name, points)
        response = await self._request(
            "GET",
            f"/route/v1/driving/{self._coords(points)}",
            params={"overview": "full", "geometries": "geojson", "steps": "true"},
        )
        data = self._checked(self._json(response))
        routes = data.get("routes") or []
        if not routes:
            raise ProviderRejected(self.name, "No route found")

        best = routes[0]
        steps = [
            RouteStep(
                instruction=self._instruction(step),
                distance_m=float(step.get("distance") or 0.0),
                duration_s=float(step.get("duration") or 0.0),
            )
            for leg in best.get("legs") or []
            for step in leg.get("steps") or []
        ]
        return Route(
            points=_geojson_points(best.get("geometry")) or list(points),
            distance_km=float(best.get("distance") or 0.0) / 1000,
            duration_s=float(best.get("duration") or 0.0),
            steps=steps,
            source=self.name,
        )

    async def optimize(self, points: Sequence[LatLng]) -> list[LatLng]:
        if len(points) <= 3:
            return list(points)
        response = await self._request(
            "GET",
            f"/trip/v1/driving/{self._coords(points)}",
            params={
                "source": "first",
                "destination": "last",
                "roundtrip": "false",
                "overview": "false",
            },
        )
        data = self._checked(self._json(response))
        waypoints = data.get("waypoints") or []
        if len(waypoints) != len(points):
            raise ProviderRejected(self.name, "Trip returned a different number of waypoints")

        # waypoints[i].waypoint_index is the position of input i in the trip
        ordered: list[LatLng | None] = [None] * len(points)
        for i, wp in enumerate(waypoints):
            ordered[int(wp["waypoint_index"])] = points[i]
        if any(p is None for p in ordered):
            raise ProviderRejected(self.name, "Trip order is not a permutation")
        return [p for p in ordered if p is not None]

    @staticmethod
    def _instruction(step: dict[str, Any]) -> str:
        maneuver = step.get("maneuver") or {}
        parts = [maneuver.get("type"), maneuver.get("modifier")]
        text = " ".join(p for p in parts if p)
        name = step.get("name")
        return f"{text} onto {name}" if name else text
