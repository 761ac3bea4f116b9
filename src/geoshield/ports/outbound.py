"""Outbound ports: interfaces that infrastructure adapters must implement.

The resilience layer and the geo services depend only on these
abstractions, never on concrete drivers (Redis, SQLite, HTTP clients).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from geoshield.domain.models import LatLng, Place, Route


# ═══════════════════════════════════════════════════════════════
#  Durable key/value store
# ═══════════════════════════════════════════════════════════════
class DurableStorePort(ABC):
    """Namespaced byte store that survives process restarts."""

    @abstractmethod
    async def get(self, namespace: str, key: str) -> bytes | None: ...

    @abstractmethod
    async def put(self, namespace: str, key: str, data: bytes) -> None: ...

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> None: ...

    @abstractmethod
    async def list_keys(self, namespace: str) -> list[str]: ...

    async def init(self) -> None:
        """Create tables / open connections. Safe to call more than once."""
        return None

    async def close(self) -> None:
        return None

    async def health_check(self) -> bool:
        return True


# ═══════════════════════════════════════════════════════════════
#  Geodata providers
# ═══════════════════════════════════════════════════════════════
class GeocoderPort(ABC):
    """Forward and reverse geocoding."""

    name: str

    @abstractmethod
    async def search(self, query: str, *, limit: int = 10) -> list[Place]: ...

    @abstractmethod
    async def reverse(self, point: LatLng) -> Place | None: ...

    async def close(self) -> None:
        return None


class RouterPort(ABC):
    """Driving directions."""

    name: str

    @abstractmethod
    async def route(self, points: Sequence[LatLng]) -> Route:
        """Route through ``points`` in the given order."""
        ...

    @abstractmethod
    async def optimize(self, points: Sequence[LatLng]) -> list[LatLng]:
        """Reorder intermediate points, keeping the first and last fixed."""
        ...

    async def close(self) -> None:
        return None


class TileFetcherPort(ABC):
    """Raster map tiles addressed by ``(zoom, x, y)``."""

    name: str

    @abstractmethod
    async def fetch(self, zoom: int, x: int, y: int) -> bytes: ...

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════
#  Connectivity
# ═══════════════════════════════════════════════════════════════
class ConnectivityPort(ABC):
    """Boolean "is the network reachable" feed."""

    @abstractmethod
    def is_online(self) -> bool: ...
