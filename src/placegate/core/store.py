from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from placegate.core.errors import StorageFailure
from placegate.models.api_key import ApiKeyRecord
from placegate.models.base import Base
from placegate.models.place import Place

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Store:
    """
    Persistent store for API key records and places.

    One instance is created by the process root and handed to every component
    that needs it. Each call is bounded by `timeout_seconds`; a timeout or any
    database error surfaces as StorageFailure.
    """

    def __init__(self, engine: AsyncEngine, timeout_seconds: float = 5.0):
        self.engine = engine
        self.timeout_seconds = timeout_seconds
        self.sessions = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 5.0) -> Store:
        engine = create_async_engine(url, pool_pre_ping=True)
        return cls(engine, timeout_seconds=timeout_seconds)

    async def _bounded(self, op: str, coro: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.exception("store_error", extra={"op": op, "error_type": type(exc).__name__})
            raise StorageFailure() from exc

    async def create_api_key(self, *, key: str, name: str, expires_at: datetime) -> ApiKeyRecord:
        async def _create() -> ApiKeyRecord:
            async with self.sessions() as session:
                record = ApiKeyRecord(
                    key=key,
                    name=name,
                    expires_at=expires_at,
                    created_at=datetime.now(timezone.utc),
                )
                session.add(record)
                # committed before returning: the key must be usable right away
                await session.commit()
                return record

        return await self._bounded("create_api_key", _create())

    async def find_api_key(self, key: str) -> ApiKeyRecord | None:
        async def _find() -> ApiKeyRecord | None:
            async with self.sessions() as session:
                return await session.get(ApiKeyRecord, key)

        return await self._bounded("find_api_key", _find())

    async def create_place(self, *, latitude: float, longitude: float) -> Place:
        async def _create() -> Place:
            async with self.sessions() as session:
                place = Place(
                    latitude=latitude,
                    longitude=longitude,
                    created_at=datetime.now(timezone.utc),
                )
                session.add(place)
                await session.commit()
                await session.refresh(place)
                return place

        return await self._bounded("create_place", _create())

    async def list_places(self) -> list[Place]:
        async def _list() -> list[Place]:
            async with self.sessions() as session:
                result = await session.execute(select(Place).order_by(Place.id))
                return list(result.scalars().all())

        return await self._bounded("list_places", _list())

    async def ping(self) -> None:
        """Raises the underlying driver error; used by the connectivity probe."""

        async def _ping() -> None:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

        # bounds the connect as well as the query
        await asyncio.wait_for(_ping(), timeout=self.timeout_seconds)

    async def create_schema(self) -> None:
        # local runs and tests; production goes through alembic
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()


def place_to_dict(place: Place) -> dict[str, Any]:
    return {
        "id": place.id,
        "latitude": place.latitude,
        "longitude": place.longitude,
        "createdAt": place.created_at,
    }
