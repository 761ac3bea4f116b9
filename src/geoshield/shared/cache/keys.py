"""Deterministic cache-key derivation.

Keys only need to be unique inside a namespace: every namespace has its
own hot tier and its own durable-store namespace.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable

from geoshield.domain.models import LatLng

COORD_PRECISION = 4  # ~11 m


def normalize_query(query: str) -> str:
    return " ".join(query.casefold().split())


def geocode_key(query: str) -> str:
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()


def point_key(lat: float, lng: float) -> str:
    # Adding 0.0 folds -0.0 into 0.0 so both round to the same key.
    lat_r = round(lat, COORD_PRECISION) + 0.0
    lng_r = round(lng, COORD_PRECISION) + 0.0
    return f"{lat_r:.{COORD_PRECISION}f},{lng_r:.{COORD_PRECISION}f}"


def route_key(
    origin: LatLng,
    destination: LatLng,
    waypoints: Iterable[LatLng] = (),
) -> str:
    key = f"{point_key(origin.lat, origin.lng)}_to_{point_key(destination.lat, destination.lng)}"
    via = [point_key(p.lat, p.lng) for p in waypoints]
    if via:
        key += "_via_" + _digest(via)
    return key


def waypoints_key(points: Iterable[LatLng]) -> str:
    return _digest(point_key(p.lat, p.lng) for p in points)


def tile_key(zoom: int, x: int, y: int) -> str:
    return f"{zoom}/{x}/{y}"


def _digest(point_keys: Iterable[str]) -> str:
    # Fixed length however many points: durable keys are length-limited.
    return hashlib.sha256("|".join(point_keys).encode("utf-8")).hexdigest()
