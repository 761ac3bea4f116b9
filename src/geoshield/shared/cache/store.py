"""Two-tier cache: bounded in-process hot tier over a durable byte store.

Reads check the hot tier, then the durable tier (promoting hits).
Writes go to both; the durable write is authoritative. Expired and
corrupt entries are deleted where they are found and reported as misses.

Durable envelope (JSON)::

    {"key": ..., "cached_at": ..., "expires_at": ..., "size_bytes": ..., "payload": ...}
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

import orjson
import structlog
from pydantic import Base64Bytes, BaseModel, Field, TypeAdapter, ValidationError

from geoshield.domain.exceptions import CacheCorruption
from geoshield.domain.models import LatLng, Place, Route
from geoshield.ports.outbound import DurableStorePort
from geoshield.shared.clock import Clock, SystemClock
from geoshield.shared.observability.metrics import CACHE_LOOKUPS

logger = structlog.get_logger(__name__)

T = TypeVar("T")

HOUR = 3600.0
DEFAULT_HOT_ENTRIES = 100
DEFAULT_TTL = HOUR


@dataclass(frozen=True)
class CacheNamespace:
    """A payload kind with its own TTL, hot tier and durable namespace."""

    name: str
    default_ttl: float
    payload_type: Any = Any
    max_hot_entries: int = DEFAULT_HOT_ENTRIES


def default_namespaces(
    *,
    geocode_ttl: float = 24 * HOUR,
    route_ttl: float = 6 * HOUR,
    tile_ttl: float = 24 * HOUR,
    hot_entries: int = DEFAULT_HOT_ENTRIES,
) -> list[CacheNamespace]:
    return [
        CacheNamespace("geocode", geocode_ttl, list[Place], hot_entries),
        CacheNamespace("reverse_geocode", geocode_ttl, Place, hot_entries),
        CacheNamespace("route", route_ttl, Route, hot_entries),
        CacheNamespace("waypoints", route_ttl, list[LatLng], hot_entries),
        CacheNamespace("tile", tile_ttl, Base64Bytes, hot_entries),
    ]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    key: str
    payload: T
    cached_at: float
    expires_at: float
    size_bytes: int = 0

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class _LoadAbandoned(Exception):
    """The task running a shared load was cancelled before it finished."""


class _StoredEntry(BaseModel):
    key: str
    cached_at: float
    expires_at: float
    size_bytes: int = Field(0, ge=0)
    payload: Any


@dataclass
class NamespaceStats:
    name: str
    hot_entries: int = 0
    durable_entries: int = 0
    expired_entries: int = 0
    total_bytes: int = 0
    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hot_entries": self.hot_entries,
            "durable_entries": self.durable_entries,
            "expired_entries": self.expired_entries,
            "total_bytes": self.total_bytes,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hit_rate, 4),
        }


@dataclass
class CacheStats:
    namespaces: dict[str, NamespaceStats] = field(default_factory=dict)

    @property
    def total_entries(self) -> int:
        return sum(ns.durable_entries for ns in self.namespaces.values())

    @property
    def total_bytes(self) -> int:
        return sum(ns.total_bytes for ns in self.namespaces.values())

    @property
    def hits(self) -> int:
        return sum(ns.hits for ns in self.namespaces.values())

    @property
    def misses(self) -> int:
        return sum(ns.misses for ns in self.namespaces.values())

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "total_bytes": self.total_bytes,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hit_rate, 4),
            "namespaces": {name: ns.to_dict() for name, ns in self.namespaces.items()},
        }


class CacheStore:
    """Namespaced TTL cache with a FIFO-bounded hot tier."""

    def __init__(
        self,
        store: DurableStorePort,
        *,
        clock: Clock | None = None,
        namespaces: Iterable[CacheNamespace] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._namespaces: dict[str, CacheNamespace] = {}
        self._adapters: dict[str, TypeAdapter[Any]] = {}
        self._hot: dict[str, dict[str, CacheEntry[Any]]] = {}
        self._hits: dict[str, int] = {}
        self._misses: dict[str, int] = {}
        self._inflight: dict[tuple[str, str], asyncio.Future[Any]] = {}
        self._reserved: set[str] = set()
        for ns in namespaces if namespaces is not None else default_namespaces():
            self.register_namespace(ns)

    # ── Namespaces ───────────────────────────────────────────
    def register_namespace(self, namespace: CacheNamespace) -> None:
        if namespace.name in self._reserved:
            raise ValueError(f"Namespace {namespace.name!r} is reserved")
        if namespace.default_ttl <= 0:
            raise ValueError(f"TTL for namespace {namespace.name!r} must be positive")
        self._namespaces[namespace.name] = namespace
        self._adapters[namespace.name] = TypeAdapter(namespace.payload_type)
        self._hot.setdefault(namespace.name, {})

    def reserve(self, name: str) -> None:
        """Keep ``name`` out of the cache: it belongs to another user of the durable store."""
        if name in self._namespaces:
            raise ValueError(f"Namespace {name!r} is already a cache namespace")
        self._reserved.add(name)

    def namespace(self, name: str) -> CacheNamespace:
        ns = self._namespaces.get(name)
        if ns is None:
            ns = CacheNamespace(name, DEFAULT_TTL)
            self.register_namespace(ns)
            logger.debug("cache_namespace_registered", namespace=name)
        return ns

    @property
    def namespaces(self) -> list[str]:
        return sorted(self._namespaces)

    # ── Read path ────────────────────────────────────────────
    async def get(self, namespace: str, key: str) -> Any | None:
        entry = await self.get_entry(namespace, key)
        return None if entry is None else entry.payload

    async def get_entry(self, namespace: str, key: str) -> CacheEntry[Any] | None:
        ns = self.namespace(namespace)
        hot = self._hot[ns.name]
        now = self._clock.now()

        entry = hot.get(key)
        if entry is not None:
            if entry.is_valid(now):
                self._count(ns.name, "hot_hit")
                return entry
            hot.pop(key, None)
            await self._store.delete(ns.name, key)
            self._count(ns.name, "expired")
            return None

        data = await self._store.get(ns.name, key)
        if data is None:
            self._count(ns.name, "miss")
            return None

        try:
            entry = self._decode(ns, key, data)
        except CacheCorruption as exc:
            logger.warning("cache_entry_corrupt", namespace=ns.name, key=key, error=exc.message)
            await self._store.delete(ns.name, key)
            self._count(ns.name, "corrupt")
            return None

        if not entry.is_valid(now):
            await self._store.delete(ns.name, key)
            self._count(ns.name, "expired")
            return None

        self._promote(ns, entry)
        self._count(ns.name, "durable_hit")
        return entry

    # ── Write path ───────────────────────────────────────────
    async def put(
        self,
        namespace: str,
        key: str,
        value: Any,
        ttl: float | None = None,
    ) -> CacheEntry[Any]:
        ns = self.namespace(namespace)
        ttl = ns.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        payload_json = self._adapters[ns.name].dump_json(value)
        size = len(value) if isinstance(value, (bytes, bytearray)) else len(payload_json)
        now = self._clock.now()
        entry: CacheEntry[Any] = CacheEntry(
            key=key,
            payload=value,
            cached_at=now,
            expires_at=now + ttl,
            size_bytes=size,
        )
        envelope = orjson.dumps(
            {
                "key": key,
                "cached_at": entry.cached_at,
                "expires_at": entry.expires_at,
                "size_bytes": size,
                "payload": orjson.loads(payload_json),
            }
        )
        await self._store.put(ns.name, key, envelope)
        self._promote(ns, entry)
        return entry

    async def get_or_load(
        self,
        namespace: str,
        key: str,
        loader: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        """Cached value, or the loader's result stored under ``key``.

        Concurrent misses for the same key share one loader call. ``None``
        results are returned but never cached. If the task running the
        shared load is cancelled, the waiters start a load of their own.
        """
        flight = (namespace, key)
        while True:
            entry = await self.get_entry(namespace, key)
            if entry is not None:
                return entry.payload
            pending = self._inflight.get(flight)
            if pending is None:
                break
            try:
                return await asyncio.shield(pending)
            except _LoadAbandoned:
                logger.debug("cache_load_abandoned", namespace=namespace, key=key)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inflight[flight] = future
        try:
            value = await loader()
            if value is not None:
                await self.put(namespace, key, value, ttl)
        except asyncio.CancelledError:
            future.set_exception(_LoadAbandoned())
            future.exception()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Retrieve it so an unawaited future does not log a warning.
            future.exception()
            raise
        else:
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(flight, None)

    # ── Maintenance ──────────────────────────────────────────
    async def purge_expired(self, namespace: str | None = None) -> int:
        """Delete expired and corrupt durable entries; returns how many."""
        targets = self._targets(namespace)
        now = self._clock.now()
        removed = 0
        for ns in targets:
            hot = self._hot[ns.name]
            for key in [k for k, e in hot.items() if not e.is_valid(now)]:
                del hot[key]
            for key in await self._store.list_keys(ns.name):
                data = await self._store.get(ns.name, key)
                if data is None:
                    continue
                try:
                    entry = self._decode(ns, key, data)
                except CacheCorruption:
                    entry = None
                if entry is None or not entry.is_valid(now):
                    await self._store.delete(ns.name, key)
                    hot.pop(key, None)
                    removed += 1
        if removed:
            logger.info("cache_purged", namespace=namespace or "*", removed=removed)
        return removed

    async def clear(self, namespace: str | None = None) -> int:
        targets = self._targets(namespace)
        removed = 0
        for ns in targets:
            for key in await self._store.list_keys(ns.name):
                await self._store.delete(ns.name, key)
                removed += 1
            self._hot[ns.name].clear()
        logger.info("cache_cleared", namespace=namespace or "*", removed=removed)
        return removed

    async def stats(self) -> CacheStats:
        now = self._clock.now()
        stats = CacheStats()
        for name, ns in sorted(self._namespaces.items()):
            ns_stats = self._counters(name)
            for key in await self._store.list_keys(name):
                data = await self._store.get(name, key)
                if data is None:
                    continue
                try:
                    entry = self._decode(ns, key, data)
                except CacheCorruption:
                    continue
                if entry.is_valid(now):
                    ns_stats.durable_entries += 1
                    ns_stats.total_bytes += entry.size_bytes
                else:
                    ns_stats.expired_entries += 1
            stats.namespaces[name] = ns_stats
        return stats

    def snapshot(self) -> CacheStats:
        """Hot-tier sizes and hit counters, without touching the durable tier."""
        return CacheStats(
            namespaces={name: self._counters(name) for name in sorted(self._namespaces)}
        )

    async def close(self) -> None:
        for future in self._inflight.values():
            future.cancel()
        self._inflight.clear()

    # ── Internals ────────────────────────────────────────────
    def _targets(self, namespace: str | None) -> list[CacheNamespace]:
        # Maintenance never registers: unknown names match nothing.
        if namespace is None:
            return list(self._namespaces.values())
        ns = self._namespaces.get(namespace)
        return [ns] if ns is not None else []

    def _decode(self, ns: CacheNamespace, key: str, data: bytes) -> CacheEntry[Any]:
        try:
            stored = _StoredEntry.model_validate_json(data)
            payload = self._adapters[ns.name].validate_python(stored.payload)
        except (ValidationError, ValueError) as exc:
            raise CacheCorruption(ns.name, key, str(exc).splitlines()[0]) from exc
        if stored.key != key:
            raise CacheCorruption(ns.name, key, f"envelope key mismatch: {stored.key!r}")
        return CacheEntry(
            key=key,
            payload=payload,
            cached_at=stored.cached_at,
            expires_at=stored.expires_at,
            size_bytes=stored.size_bytes,
        )

    def _promote(self, ns: CacheNamespace, entry: CacheEntry[Any]) -> None:
        hot = self._hot[ns.name]
        # Re-inserting moves the key to the back of the FIFO.
        hot.pop(entry.key, None)
        hot[entry.key] = entry
        while len(hot) > ns.max_hot_entries:
            oldest = next(iter(hot))
            del hot[oldest]

    def _count(self, namespace: str, result: str) -> None:
        CACHE_LOOKUPS.labels(namespace=namespace, result=result).inc()
        if result in ("hot_hit", "durable_hit"):
            self._hits[namespace] = self._hits.get(namespace, 0) + 1
        else:
            self._misses[namespace] = self._misses.get(namespace, 0) + 1

    def _counters(self, name: str) -> NamespaceStats:
        return NamespaceStats(
            name=name,
            hot_entries=len(self._hot.get(name, {})),
            hits=self._hits.get(name, 0),
            misses=self._misses.get(name, 0),
        )

