"""Repository pattern implementations for data access.

``SubscriberRepository`` is the thin SQL layer over the ``subscribers``
table. ``SubscriberStore`` binds it to one collection, one bot and a
record codec, and is what the buybot and text-log modules talk to.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar, overload

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from near_fanout.storage.models import SubscriberModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from near_fanout.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

R = TypeVar("R")


class SubscriberStoreError(Exception):
    """Raised when the subscriber store cannot be read or written."""


@dataclass
class SubscriberDTO:
    """Data transfer object for subscriber rows."""

    collection: str
    bot_id: int
    destination: int
    payload: dict[str, Any]
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: SubscriberModel) -> SubscriberDTO:
        return cls(
            collection=model.collection,
            bot_id=model.bot_id,
            destination=model.destination,
            payload=dict(model.payload),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class SubscriberRepository:
    """Repository for per-destination subscriber payloads."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _get_model(self, collection: str, bot_id: int, destination: int) -> SubscriberModel | None:
        result = await self.session.execute(
            select(SubscriberModel).where(
                SubscriberModel.collection == collection,
                SubscriberModel.bot_id == bot_id,
                SubscriberModel.destination == destination,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, collection: str, bot_id: int, destination: int) -> SubscriberDTO | None:
        model = await self._get_model(collection, bot_id, destination)
        return SubscriberDTO.from_model(model) if model else None

    async def upsert(self, dto: SubscriberDTO) -> SubscriberDTO:
        """Insert the row, or replace the payload of an existing one."""
        now = datetime.now(UTC)
        model = await self._get_model(dto.collection, dto.bot_id, dto.destination)
        if model is None:
            model = SubscriberModel(
                collection=dto.collection,
                bot_id=dto.bot_id,
                destination=dto.destination,
                payload=dto.payload,
                created_at=now,
                updated_at=now,
            )
            self.session.add(model)
        else:
            model.payload = dto.payload
            model.updated_at = now
        await self.session.flush()
        return SubscriberDTO.from_model(model)

    async def list_all(self, collection: str, bot_id: int) -> list[SubscriberDTO]:
        result = await self.session.execute(
            select(SubscriberModel)
            .where(SubscriberModel.collection == collection, SubscriberModel.bot_id == bot_id)
            .order_by(SubscriberModel.destination)
        )
        return [SubscriberDTO.from_model(m) for m in result.scalars().all()]

    async def delete(self, collection: str, bot_id: int, destination: int) -> SubscriberDTO | None:
        """Delete a row and return what it held, if anything."""
        existing = await self.get(collection, bot_id, destination)
        if existing is None:
            return None
        await self.session.execute(
            delete(SubscriberModel).where(
                SubscriberModel.collection == collection,
                SubscriberModel.bot_id == bot_id,
                SubscriberModel.destination == destination,
            )
        )
        await self.session.flush()
        return existing


class SubscriberStore(Generic[R]):
    """Typed per-bot view over one subscriber collection.

    Records are converted to and from JSON payloads with the given codec.
    Writes are committed before the call returns, so a rebuild issued
    after a mutation always observes it.

    Args:
        db: Database manager providing sessions.
        collection: Namespace of this store (e.g. ``"buybot"``).
        bot_id: Owning bot identity.
        encode: Record to JSON-compatible dict.
        decode: JSON-compatible dict to record.
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        collection: str,
        bot_id: int,
        encode: Callable[[R], dict[str, Any]],
        decode: Callable[[dict[str, Any]], R],
    ) -> None:
        self._db = db
        self.collection = collection
        self.bot_id = bot_id
        self._encode = encode
        self._decode = decode
        # destination -> (lock, holders and waiters); dropped when unused
        self._locks: dict[int, tuple[asyncio.Lock, int]] = {}

    def _decode_payload(self, destination: int, payload: dict[str, Any]) -> R:
        try:
            return self._decode(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise SubscriberStoreError(
                f"Corrupt {self.collection} record for bot {self.bot_id} destination {destination}: {e}"
            ) from e

    async def get(self, destination: int) -> R | None:
        try:
            async with self._db.get_async_session() as session:
                dto = await SubscriberRepository(session).get(self.collection, self.bot_id, destination)
        except SQLAlchemyError as e:
            raise SubscriberStoreError(f"Failed to read {self.collection} record: {e}") from e
        return self._decode_payload(destination, dto.payload) if dto else None

    async def insert_or_update(self, destination: int, record: R) -> None:
        dto = SubscriberDTO(
            collection=self.collection,
            bot_id=self.bot_id,
            destination=destination,
            payload=self._encode(record),
        )
        try:
            async with self._db.get_async_session() as session:
                await SubscriberRepository(session).upsert(dto)
        except SQLAlchemyError as e:
            raise SubscriberStoreError(f"Failed to write {self.collection} record: {e}") from e

    async def iterate_all(self) -> list[tuple[int, R]]:
        """Read every record of this bot in this collection.

        Raises:
            SubscriberStoreError: If the read fails or any record is corrupt.
        """
        try:
            async with self._db.get_async_session() as session:
                rows = await SubscriberRepository(session).list_all(self.collection, self.bot_id)
        except SQLAlchemyError as e:
            raise SubscriberStoreError(f"Failed to list {self.collection} records: {e}") from e
        return [(row.destination, self._decode_payload(row.destination, row.payload)) for row in rows]

    async def remove(self, destination: int) -> R | None:
        try:
            async with self._db.get_async_session() as session:
                dto = await SubscriberRepository(session).delete(self.collection, self.bot_id, destination)
        except SQLAlchemyError as e:
            raise SubscriberStoreError(f"Failed to remove {self.collection} record: {e}") from e
        return self._decode_payload(destination, dto.payload) if dto else None

    @contextlib.asynccontextmanager
    async def _destination_lock(self, destination: int) -> AsyncIterator[None]:
        lock, users = self._locks.get(destination, (asyncio.Lock(), 0))
        self._locks[destination] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[destination]
            if users == 1:
                del self._locks[destination]
            else:
                self._locks[destination] = (lock, users - 1)

    @overload
    async def edit(self, destination: int, mutate: Callable[[R], R], *, default: Callable[[], R]) -> R: ...

    @overload
    async def edit(self, destination: int, mutate: Callable[[R], R], *, default: None = None) -> R | None: ...

    async def edit(
        self,
        destination: int,
        mutate: Callable[[R], R],
        *,
        default: Callable[[], R] | None = None,
    ) -> R | None:
        """Read-modify-write one record under a per-destination lock.

        Concurrent edits of the same destination through this store are
        serialized, so neither overwrites the other. Edits made through
        another process are still last-write-wins.

        Args:
            destination: Record to edit.
            mutate: Receives the current record and returns the new one.
            default: Factory for a fresh record when none exists. Without
                it, a missing record is left untouched.

        Returns:
            The record as written, or None if nothing was written.
        """
        async with self._destination_lock(destination):
            current = await self.get(destination)
            if current is None:
                if default is None:
                    return None
                current = default()
            updated = mutate(current)
            await self.insert_or_update(destination, updated)
            return updated
