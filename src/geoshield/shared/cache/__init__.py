"""Two-tier geodata cache and its key derivation helpers."""

from geoshield.shared.cache.keys import (
    geocode_key,
    point_key,
    route_key,
    tile_key,
    waypoints_key,
)
from geoshield.shared.cache.store import (
    CacheEntry,
    CacheNamespace,
    CacheStats,
    CacheStore,
    NamespaceStats,
    default_namespaces,
)

__all__ = [
    "CacheEntry",
    "CacheNamespace",
    "CacheStats",
    "CacheStore",
    "NamespaceStats",
    "default_namespaces",
    "geocode_key",
    "point_key",
    "route_key",
    "tile_key",
    "waypoints_key",
]
