"""Tests for the two-tier CacheStore."""

from __future__ import annotations

import asyncio

import orjson
import pytest

from geoshield.adapters.outbound.store import MemoryDurableStore
from geoshield.domain.models import LatLng, Place, Route
from geoshield.shared.cache import CacheNamespace, CacheStore


def _place(name: str = "Brandenburger Tor") -> Place:
    return Place(
        place_id="1",
        name=name,
        address=f"{name}, Berlin",
        location=LatLng(lat=52.5163, lng=13.3777),
        types=["attraction"],
        source="nominatim",
    )


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_put_then_get_from_hot_tier(self, cache: CacheStore) -> None:
        await cache.put("geocode", "k", [_place()])
        result = await cache.get("geocode", "k")
        assert result == [_place()]
        assert cache.snapshot().namespaces["geocode"].hits == 1

    @pytest.mark.asyncio
    async def test_durable_tier_survives_new_instance(
        self, memory_store: MemoryDurableStore, clock
    ) -> None:
        first = CacheStore(memory_store, clock=clock)
        await first.put("reverse_geocode", "52.5163,13.3777", _place())

        second = CacheStore(memory_store, clock=clock)
        result = await second.get("reverse_geocode", "52.5163,13.3777")
        assert isinstance(result, Place)
        assert result.name == "Brandenburger Tor"
        assert second.snapshot().namespaces["reverse_geocode"].hot_entries == 1

    @pytest.mark.asyncio
    async def test_route_round_trip_through_durable_tier(
        self, memory_store: MemoryDurableStore, clock
    ) -> None:
        route = Route(
            points=[LatLng(lat=1, lng=2), LatLng(lat=3, lng=4)],
            distance_km=12.5,
            duration_s=900,
            source="osrm",
        )
        await CacheStore(memory_store, clock=clock).put("route", "a_to_b", route)
        restored = await CacheStore(memory_store, clock=clock).get("route", "a_to_b")
        assert restored == route

    @pytest.mark.asyncio
    async def test_tile_bytes_round_trip(self, memory_store: MemoryDurableStore, clock) -> None:
        png = b"\x89PNG\r\n\x1a\n" + bytes(range(32))
        entry = await CacheStore(memory_store, clock=clock).put("tile", "3/4/5", png)
        assert entry.size_bytes == len(png)
        restored = await CacheStore(memory_store, clock=clock).get("tile", "3/4/5")
        assert restored == png

    @pytest.mark.asyncio
    async def test_miss(self, cache: CacheStore) -> None:
        assert await cache.get("geocode", "absent") is None
        assert cache.snapshot().namespaces["geocode"].misses == 1

    @pytest.mark.asyncio
    async def test_unknown_namespace_is_registered_on_demand(self, cache: CacheStore) -> None:
        await cache.put("custom", "k", {"a": 1})
        assert await cache.get("custom", "k") == {"a": 1}
        assert "custom" in cache.namespaces

    @pytest.mark.asyncio
    async def test_non_positive_ttl_rejected(self, cache: CacheStore) -> None:
        with pytest.raises(ValueError):
            await cache.put("geocode", "k", [], ttl=0)

    def test_non_positive_namespace_ttl_rejected(self, cache: CacheStore) -> None:
        with pytest.raises(ValueError):
            cache.register_namespace(CacheNamespace("bad", 0))


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss_and_deleted(
        self, cache: CacheStore, memory_store: MemoryDurableStore, clock
    ) -> None:
        await cache.put("geocode", "k", [_place()], ttl=60)
        clock.advance(59)
        assert await cache.get("geocode", "k") is not None

        clock.advance(2)
        assert await cache.get("geocode", "k") is None
        assert await memory_store.get("geocode", "k") is None

    @pytest.mark.asyncio
    async def test_expired_durable_entry_is_deleted(
        self, memory_store: MemoryDurableStore, clock
    ) -> None:
        await CacheStore(memory_store, clock=clock).put("geocode", "k", [], ttl=10)
        clock.advance(11)
        fresh = CacheStore(memory_store, clock=clock)
        assert await fresh.get("geocode", "k") is None
        assert await memory_store.list_keys("geocode") == []

    @pytest.mark.asyncio
    async def test_purge_expired(self, cache: CacheStore, clock) -> None:
        await cache.put("geocode", "old", [], ttl=10)
        await cache.put("geocode", "new", [], ttl=1000)
        await cache.put("tile", "0/0/0", b"png", ttl=10)
        clock.advance(20)
        assert await cache.purge_expired() == 2
        assert await cache.get("geocode", "new") == []

    @pytest.mark.asyncio
    async def test_purge_single_namespace(self, cache: CacheStore, clock) -> None:
        await cache.put("geocode", "old", [], ttl=10)
        await cache.put("tile", "0/0/0", b"png", ttl=10)
        clock.advance(20)
        assert await cache.purge_expired("tile") == 1
        assert await cache.purge_expired() == 1


    @pytest.mark.asyncio
    async def test_one_second_ttl_boundary(self, cache: CacheStore, clock) -> None:
        await cache.put("custom", "k", "X", ttl=1.0)
        clock.advance(0.5)
        assert await cache.get("custom", "k") == "X"
        clock.advance(1.0)
        assert await cache.get("custom", "k") is None


class TestCorruption:
    @pytest.mark.asyncio
    async def test_garbage_is_a_miss_and_deleted(
        self, cache: CacheStore, memory_store: MemoryDurableStore
    ) -> None:
        await memory_store.put("geocode", "k", b"{not json")
        assert await cache.get("geocode", "k") is None
        assert await memory_store.get("geocode", "k") is None

    @pytest.mark.asyncio
    async def test_wrong_payload_shape_is_a_miss(
        self, cache: CacheStore, memory_store: MemoryDurableStore, clock
    ) -> None:
        envelope = {
            "key": "k",
            "cached_at": clock.now(),
            "expires_at": clock.now() + 100,
            "size_bytes": 3,
            "payload": {"not": "a route"},
        }
        await memory_store.put("route", "k", orjson.dumps(envelope))
        assert await cache.get("route", "k") is None

    @pytest.mark.asyncio
    async def test_key_mismatch_is_a_miss(
        self, cache: CacheStore, memory_store: MemoryDurableStore, clock
    ) -> None:
        envelope = {
            "key": "other",
            "cached_at": clock.now(),
            "expires_at": clock.now() + 100,
            "size_bytes": 2,
            "payload": [],
        }
        await memory_store.put("geocode", "k", orjson.dumps(envelope))
        assert await cache.get("geocode", "k") is None

    @pytest.mark.asyncio
    async def test_purge_removes_corrupt_entries(
        self, cache: CacheStore, memory_store: MemoryDurableStore
    ) -> None:
        await memory_store.put("geocode", "bad", b"\x00\x01")
        assert await cache.purge_expired("geocode") == 1


class TestHotTier:
    @pytest.mark.asyncio
    async def test_fifo_bound(self, memory_store: MemoryDurableStore, clock) -> None:
        cache = CacheStore(
            memory_store,
            clock=clock,
            namespaces=[CacheNamespace("small", 60, int, max_hot_entries=2)],
        )
        for i in range(3):
            await cache.put("small", f"k{i}", i)
        assert cache.snapshot().namespaces["small"].hot_entries == 2
        # Evicted from the hot tier but still served from the durable tier.
        assert await cache.get("small", "k0") == 0


class TestGetOrLoad:
    @pytest.mark.asyncio
    async def test_loads_once_then_serves_cache(self, cache: CacheStore) -> None:
        calls = 0

        async def loader() -> list[Place]:
            nonlocal calls
            calls += 1
            return [_place()]

        assert await cache.get_or_load("geocode", "k", loader) == [_place()]
        assert await cache.get_or_load("geocode", "k", loader) == [_place()]
        assert calls == 1

    @pytest.mark.asyncio
    async def test_none_is_not_cached(self, cache: CacheStore) -> None:
        calls = 0

        async def loader() -> None:
            nonlocal calls
            calls += 1
            return None

        assert await cache.get_or_load("reverse_geocode", "k", loader) is None
        assert await cache.get_or_load("reverse_geocode", "k", loader) is None
        assert calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_load(self, cache: CacheStore) -> None:
        calls = 0
        release = asyncio.Event()

        async def loader() -> list[Place]:
            nonlocal calls
            calls += 1
            await release.wait()
            return [_place()]

        tasks = [asyncio.create_task(cache.get_or_load("geocode", "k", loader)) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)
        assert calls == 1
        assert all(r == [_place()] for r in results)

    @pytest.mark.asyncio
    async def test_loader_error_propagates_and_is_not_cached(self, cache: CacheStore) -> None:
        async def failing() -> list[Place]:
            raise RuntimeError("provider down")

        with pytest.raises(RuntimeError):
            await cache.get_or_load("geocode", "k", failing)

        async def working() -> list[Place]:
            return []

        assert await cache.get_or_load("geocode", "k", working) == []


    @pytest.mark.asyncio
    async def test_cancelled_owner_does_not_cancel_waiters(self, cache: CacheStore) -> None:
        release = asyncio.Event()

        async def stuck() -> list[Place]:
            await release.wait()
            return [_place("never")]

        async def own() -> list[Place]:
            return [_place("Reichstag")]

        owner = asyncio.create_task(cache.get_or_load("geocode", "k", stuck))
        for _ in range(5):
            await asyncio.sleep(0)
        waiter = asyncio.create_task(cache.get_or_load("geocode", "k", own))
        for _ in range(5):
            await asyncio.sleep(0)

        owner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await owner
        assert await waiter == [_place("Reichstag")]
        assert not waiter.cancelled()
        assert await cache.get("geocode", "k") == [_place("Reichstag")]


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_counts_durable_entries(self, cache: CacheStore, clock) -> None:
        await cache.put("tile", "0/0/0", b"12345")
        await cache.put("tile", "1/0/0", b"123", ttl=5)
        await cache.get("tile", "0/0/0")
        await cache.get("tile", "9/9/9")
        clock.advance(10)

        stats = await cache.stats()
        tiles = stats.namespaces["tile"]
        assert tiles.durable_entries == 1
        assert tiles.expired_entries == 1
        assert tiles.total_bytes == 5
        assert tiles.hits == 1
        assert tiles.misses == 1
        assert stats.to_dict()["hit_rate"] == 0.5

    @pytest.mark.asyncio
    async def test_clear(self, cache: CacheStore) -> None:
        await cache.put("geocode", "a", [])
        await cache.put("tile", "0/0/0", b"x")
        assert await cache.clear("geocode") == 1
        assert await cache.get("geocode", "a") is None
        assert await cache.clear() == 1
        assert (await cache.stats()).total_entries == 0


class TestReadIdempotence:
    @pytest.mark.asyncio
    async def test_hot_hits_keep_timestamps(self, cache: CacheStore, clock) -> None:
        stored = await cache.put("geocode", "k", [_place()], ttl=100)
        first = await cache.get_entry("geocode", "k")
        clock.advance(30)
        second = await cache.get_entry("geocode", "k")
        assert first is not None and second is not None
        for entry in (first, second):
            assert entry.cached_at == stored.cached_at
            assert entry.expires_at == stored.expires_at

    @pytest.mark.asyncio
    async def test_durable_promotion_keeps_timestamps(
        self, memory_store: MemoryDurableStore, clock
    ) -> None:
        stored = await CacheStore(memory_store, clock=clock).put("geocode", "k", [_place()], ttl=100)
        clock.advance(30)
        fresh = CacheStore(memory_store, clock=clock)
        promoted = await fresh.get_entry("geocode", "k")
        clock.advance(30)
        again = await fresh.get_entry("geocode", "k")
        assert promoted is not None and again is not None
        for entry in (promoted, again):
            assert entry.cached_at == stored.cached_at
            assert entry.expires_at == stored.expires_at
        assert fresh.snapshot().namespaces["geocode"].hits == 2


class TestMaintenanceScope:
    @pytest.mark.asyncio
    async def test_purge_unknown_namespace_touches_nothing(
        self, cache: CacheStore, memory_store: MemoryDurableStore
    ) -> None:
        await memory_store.put("foreign", "k", b"not a cache envelope")
        assert await cache.purge_expired("foreign") == 0
        assert await cache.clear("foreign") == 0
        assert "foreign" not in cache.namespaces
        assert await memory_store.get("foreign", "k") == b"not a cache envelope"

    @pytest.mark.asyncio
    async def test_purge_all_skips_unregistered_data(
        self, cache: CacheStore, memory_store: MemoryDurableStore
    ) -> None:
        await memory_store.put("foreign", "k", b"\x00")
        await cache.purge_expired()
        await cache.clear()
        assert await memory_store.get("foreign", "k") == b"\x00"

    @pytest.mark.asyncio
    async def test_reserved_name_cannot_become_a_namespace(self, cache: CacheStore) -> None:
        cache.reserve("foreign")
        with pytest.raises(ValueError):
            await cache.put("foreign", "k", "v")
        with pytest.raises(ValueError):
            cache.register_namespace(CacheNamespace("foreign", 60))
        assert "foreign" not in cache.namespaces

    def test_existing_namespace_cannot_be_reserved(self, cache: CacheStore) -> None:
        with pytest.raises(ValueError):
            cache.reserve("geocode")
