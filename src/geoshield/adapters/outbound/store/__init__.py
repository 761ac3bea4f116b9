"""Key/value durable-store adapters implementing DurableStorePort.

``MemoryDurableStore`` keeps everything in process (tests, single-shot
tools); ``RedisDurableStore`` keeps one hash per namespace.
"""

from __future__ import annotations

import redis.asyncio as redis
import structlog

from geoshield.ports.outbound import DurableStorePort

logger = structlog.get_logger(__name__)


class MemoryDurableStore(DurableStorePort):
    """In-process store. Survives nothing, which is fine for tests."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, bytes]] = {}
        logger.info("durable_store_initialized_memory")

    async def get(self, namespace: str, key: str) -> bytes | None:
        return self._data.get(namespace, {}).get(key)

    async def put(self, namespace: str, key: str, data: bytes) -> None:
        self._data.setdefault(namespace, {})[key] = bytes(data)

    async def delete(self, namespace: str, key: str) -> None:
        bucket = self._data.get(namespace)
        if bucket is not None:
            bucket.pop(key, None)

    async def list_keys(self, namespace: str) -> list[str]:
        return sorted(self._data.get(namespace, {}))


class RedisDurableStore(DurableStorePort):
    """Async Redis adapter: namespace ``ns`` lives in hash ``<prefix>:<ns>``.

    Backend errors are logged and reported as absence, so a Redis outage
    degrades the cache to its hot tier instead of failing callers.
    """

    def __init__(self, url: str, *, prefix: str = "geoshield", max_connections: int = 50) -> None:
        self._prefix = prefix
        self._use_memory = not url
        if self._use_memory:
            logger.warning("redis_url_missing_falling_back_to_memory")
            self._memory = MemoryDurableStore()
            return

        try:
            self._pool = redis.ConnectionPool.from_url(
                url,
                max_connections=max_connections,
                decode_responses=False,
            )
            self._client = redis.Redis(connection_pool=self._pool)
        except (ValueError, redis.RedisError) as exc:
            logger.error("redis_init_failed", error=str(exc))
            self._use_memory = True
            self._memory = MemoryDurableStore()

    def _hash(self, namespace: str) -> str:
        return f"{self._prefix}:{namespace}"

    async def get(self, namespace: str, key: str) -> bytes | None:
        if self._use_memory:
            return await self._memory.get(namespace, key)
        try:
            return await self._client.hget(self._hash(namespace), key)
        except redis.RedisError as exc:
            logger.error("redis_get_error", namespace=namespace, key=key, error=str(exc))
            return None

    async def put(self, namespace: str, key: str, data: bytes) -> None:
        if self._use_memory:
            return await self._memory.put(namespace, key, data)
        try:
            await self._client.hset(self._hash(namespace), key, data)
        except redis.RedisError as exc:
            logger.error("redis_put_error", namespace=namespace, key=key, error=str(exc))

    async def delete(self, namespace: str, key: str) -> None:
        if self._use_memory:
            return await self._memory.delete(namespace, key)
        try:
            await self._client.hdel(self._hash(namespace), key)
        except redis.RedisError as exc:
            logger.error("redis_delete_error", namespace=namespace, key=key, error=str(exc))

    async def list_keys(self, namespace: str) -> list[str]:
        if self._use_memory:
            return await self._memory.list_keys(namespace)
        try:
            raw = await self._client.hkeys(self._hash(namespace))
        except redis.RedisError as exc:
            logger.error("redis_list_keys_error", namespace=namespace, error=str(exc))
            return []
        return sorted(k.decode("utf-8") if isinstance(k, bytes) else k for k in raw)

    async def close(self) -> None:
        if not self._use_memory:
            await self._client.aclose()
            await self._pool.aclose()

    async def health_check(self) -> bool:
        if self._use_memory:
            return True
        try:
            return bool(await self._client.ping())
        except redis.RedisError:
            return False
