"""Geocoding clients: Nominatim (primary) and Photon (secondary).

Both normalise their answers to ``Place`` so callers cannot tell which
provider answered.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from geoshield.domain.models import LatLng, Place
from geoshield.ports.outbound import GeocoderPort

from .base import HttpProviderClient

logger = structlog.get_logger(__name__)


def _first_part(display_name: str) -> str:
    return display_name.split(",")[0].strip() if display_name else ""


def _join(parts: Iterable[Any]) -> str:
    return ", ".join(str(p) for p in parts if p)


# ═══════════════════════════════════════════════════════════════
#  Nominatim
# ═══════════════════════════════════════════════════════════════
class NominatimGeocoder(HttpProviderClient, GeocoderPort):
    """OpenStreetMap Nominatim search and reverse endpoints."""

    name = "nominatim"
    _ping_path = "/status"
    _ping_params = {"format": "json"}

    async def search(self, query: str, *, limit: int = 10) -> list[Place]:
        response = await self._request(
            "GET",
            "/search",
            params={
                "q": query,
                "format": "json",
                "addressdetails": 1,
                "namedetails": 1,
                "limit": limit,
            },
        )
        data = self._json(response)
        if not isinstance(data, list):
            return []
        places = [p for p in (self._parse(item) for item in data) if p is not None]
        logger.debug("nominatim_search", query=query, results=len(places))
        return places

    async def reverse(self, point: LatLng) -> Place | None:
        response = await self._request(
            "GET",
            "/reverse",
            params={
                "lat": point.lat,
                "lon": point.lng,
                "format": "json",
                "addressdetails": 1,
                "namedetails": 1,
                "zoom": 18,
            },
        )
        data = self._json(response)
        if not isinstance(data, dict) or "error" in data:
            return None
        return self._parse(data)

    def _parse(self, item: dict[str, Any]) -> Place | None:
        try:
            lat = float(item["lat"])
            lng = float(item["lon"])
        except (KeyError, TypeError, ValueError):
            return None
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            return None

        display_name = item.get("display_name") or ""
        namedetails = item.get("namedetails") or {}
        name = item.get("name") or namedetails.get("name") or _first_part(display_name)
        place_id = str(item.get("place_id") or item.get("osm_id") or f"{lat}_{lng}")
        types = [t for t in (item.get("type"), item.get("class")) if t]
        try:
            importance = float(item.get("importance") or 0.0)
        except (TypeError, ValueError):
            importance = 0.0

        return Place(
            place_id=place_id,
            name=name,
            address=display_name,
            location=LatLng(lat=lat, lng=lng),
            types=types,
            relevance=max(0.0, min(100.0, importance * 100)),
            source=self.name,
        )


# ═══════════════════════════════════════════════════════════════
#  Photon
# ═══════════════════════════════════════════════════════════════
class PhotonGeocoder(HttpProviderClient, GeocoderPort):
    """Komoot Photon (OSM data, GeoJSON answers)."""

    name = "photon"
    _ping_path = "/api"
    _ping_params = {"q": "berlin", "limit": 1}

    async def search(self, query: str, *, limit: int = 10) -> list[Place]:
        response = await self._request("GET", "/api", params={"q": query, "limit": limit})
        places = self._parse_collection(self._json(response))
        logger.debug("photon_search", query=query, results=len(places))
        return places

    async def reverse(self, point: LatLng) -> Place | None:
        response = await self._request(
            "GET", "/reverse", params={"lat": point.lat, "lon": point.lng}
        )
        places = self._parse_collection(self._json(response))
        return places[0] if places else None

    def _parse_collection(self, data: Any) -> list[Place]:
        if not isinstance(data, dict):
            return []
        places: list[Place] = []
        for feature in data.get("features") or []:
            place = self._parse(feature)
            if place is not None:
                places.append(place)
        return places

    def _parse(self, feature: dict[str, Any]) -> Place | None:
        try:
            lng, lat = (float(c) for c in feature["geometry"]["coordinates"][:2])
        except (KeyError, TypeError, ValueError):
            return None
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            return None

        props = feature.get("properties") or {}
        street = _join([props.get("street"), props.get("housenumber")]).replace(", ", " ")
        address = _join(
            [
                props.get("name"),
                street,
                props.get("postcode"),
                props.get("city"),
                props.get("state"),
                props.get("country"),
            ]
        )
        name = props.get("name") or street or _first_part(address)
        osm_id = props.get("osm_id")
        place_id = f"{props.get('osm_type', '')}{osm_id}" if osm_id else f"{lat}_{lng}"
        types = [t for t in (props.get("osm_value"), props.get("osm_key")) if t]

        return Place(
            place_id=place_id,
            name=name,
            address=address,
            location=LatLng(lat=lat, lng=lng),
            types=types,
            source=self.name,
        )
