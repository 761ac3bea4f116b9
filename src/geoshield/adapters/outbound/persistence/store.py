"""SQL-backed DurableStorePort (SQLite via aiosqlite by default).

Backend errors are logged and reported as absence, like the Redis
adapter, so a broken database degrades the cache instead of failing calls.
"""

from __future__ import annotations

import structlog
from sqlalchemy import delete, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from geoshield.ports.outbound import DurableStorePort

from .database import create_session_factory
from .models import Base, CacheRecordModel

logger = structlog.get_logger(__name__)


class SqlDurableStore(DurableStorePort):
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        self._initialized = False

    async def init(self) -> None:
        if self._initialized:
            return
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._initialized = True
        logger.info("durable_store_initialized_sql", url=self._engine.url.render_as_string(hide_password=True))

    async def get(self, namespace: str, key: str) -> bytes | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(CacheRecordModel, (namespace, key))
                return row.payload if row is not None else None
        except SQLAlchemyError as exc:
            logger.error("sql_store_get_error", namespace=namespace, key=key, error=str(exc))
            return None

    async def put(self, namespace: str, key: str, data: bytes) -> None:
        try:
            async with self._session_factory() as session:
                await session.merge(CacheRecordModel(namespace=namespace, key=key, payload=data))
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("sql_store_put_error", namespace=namespace, key=key, error=str(exc))

    async def delete(self, namespace: str, key: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(CacheRecordModel).where(
                        CacheRecordModel.namespace == namespace,
                        CacheRecordModel.key == key,
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("sql_store_delete_error", namespace=namespace, key=key, error=str(exc))

    async def list_keys(self, namespace: str) -> list[str]:
        stmt = (
            select(CacheRecordModel.key)
            .where(CacheRecordModel.namespace == namespace)
            .order_by(CacheRecordModel.key)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.error("sql_store_list_keys_error", namespace=namespace, error=str(exc))
            return []

    async def close(self) -> None:
        await self._engine.dispose()

    async def health_check(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False
