"""Tests for the subscriber repository and typed store."""

import asyncio
from dataclasses import dataclass, replace
from typing import Any
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from near_fanout.storage.database import DatabaseManager
from near_fanout.storage.repos import (
    SubscriberDTO,
    SubscriberRepository,
    SubscriberStore,
    SubscriberStoreError,
)

# ============================================================================
# Fixtures
# ============================================================================


@dataclass(frozen=True)
class Counter:
    value: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Counter":
        return cls(value=int(data["value"]))


@pytest.fixture
def store(db: DatabaseManager) -> SubscriberStore[Counter]:
    return SubscriberStore(db, collection="counters", bot_id=1, encode=Counter.to_dict, decode=Counter.from_dict)


# ============================================================================
# Repository Tests
# ============================================================================


class TestSubscriberRepository:
    """Tests for SubscriberRepository."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            repo = SubscriberRepository(session)
            await repo.upsert(SubscriberDTO(collection="c", bot_id=1, destination=-100, payload={"a": 1}))

        async with db.get_async_session() as session:
            dto = await SubscriberRepository(session).get("c", 1, -100)

        assert dto is not None
        assert dto.payload == {"a": 1}
        assert dto.created_at is not None

    @pytest.mark.asyncio
    async def test_upsert_replaces_payload(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            repo = SubscriberRepository(session)
            await repo.upsert(SubscriberDTO(collection="c", bot_id=1, destination=5, payload={"a": 1}))
        async with db.get_async_session() as session:
            repo = SubscriberRepository(session)
            await repo.upsert(SubscriberDTO(collection="c", bot_id=1, destination=5, payload={"a": 2}))

        async with db.get_async_session() as session:
            rows = await SubscriberRepository(session).list_all("c", 1)

        assert len(rows) == 1
        assert rows[0].payload == {"a": 2}

    @pytest.mark.asyncio
    async def test_rows_are_scoped_by_collection_and_bot(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            repo = SubscriberRepository(session)
            await repo.upsert(SubscriberDTO(collection="c", bot_id=1, destination=5, payload={}))
            await repo.upsert(SubscriberDTO(collection="c", bot_id=2, destination=5, payload={}))
            await repo.upsert(SubscriberDTO(collection="d", bot_id=1, destination=5, payload={}))

        async with db.get_async_session() as session:
            rows = await SubscriberRepository(session).list_all("c", 1)

        assert [(r.collection, r.bot_id) for r in rows] == [("c", 1)]

    @pytest.mark.asyncio
    async def test_delete_returns_previous(self, db: DatabaseManager) -> None:
        async with db.get_async_session() as session:
            await SubscriberRepository(session).upsert(
                SubscriberDTO(collection="c", bot_id=1, destination=5, payload={"x": True})
            )
        async with db.get_async_session() as session:
            removed = await SubscriberRepository(session).delete("c", 1, 5)
            missing = await SubscriberRepository(session).delete("c", 1, 6)

        assert removed is not None
        assert removed.payload == {"x": True}
        assert missing is None


# ============================================================================
# Store Tests
# ============================================================================


class TestSubscriberStore:
    """Tests for the typed SubscriberStore."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store: SubscriberStore[Counter]) -> None:
        assert await store.get(1) is None

    @pytest.mark.asyncio
    async def test_insert_get_iterate_remove(self, store: SubscriberStore[Counter]) -> None:
        await store.insert_or_update(20, Counter(2))
        await store.insert_or_update(10, Counter(1))

        assert await store.get(10) == Counter(1)
        assert await store.iterate_all() == [(10, Counter(1)), (20, Counter(2))]

        assert await store.remove(10) == Counter(1)
        assert await store.get(10) is None
        assert await store.remove(10) is None

    @pytest.mark.asyncio
    async def test_corrupt_record_raises_store_error(self, db: DatabaseManager, store: SubscriberStore[Counter]) -> None:
        async with db.get_async_session() as session:
            await SubscriberRepository(session).upsert(
                SubscriberDTO(collection="counters", bot_id=1, destination=3, payload={"wrong": 1})
            )

        with pytest.raises(SubscriberStoreError, match="Corrupt"):
            await store.get(3)
        with pytest.raises(SubscriberStoreError):
            await store.iterate_all()

    @pytest.mark.asyncio
    async def test_database_error_is_wrapped(self, store: SubscriberStore[Counter]) -> None:
        with patch.object(
            SubscriberRepository,
            "get",
            side_effect=OperationalError("SELECT", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(SubscriberStoreError, match="Failed to read"):
                await store.get(1)

    @pytest.mark.asyncio
    async def test_edit_missing_without_default_writes_nothing(self, store: SubscriberStore[Counter]) -> None:
        result = await store.edit(1, lambda c: replace(c, value=c.value + 1))

        assert result is None
        assert await store.get(1) is None

    @pytest.mark.asyncio
    async def test_edit_with_default_creates_record(self, store: SubscriberStore[Counter]) -> None:
        result = await store.edit(1, lambda c: replace(c, value=c.value + 1), default=Counter)

        assert result == Counter(1)
        assert await store.get(1) == Counter(1)

    @pytest.mark.asyncio
    async def test_concurrent_edits_do_not_lose_updates(self, store: SubscriberStore[Counter]) -> None:
        await store.insert_or_update(1, Counter(0))

        await asyncio.gather(*(store.edit(1, lambda c: replace(c, value=c.value + 1)) for _ in range(10)))

        assert await store.get(1) == Counter(10)

    @pytest.mark.asyncio
    async def test_edit_mutation_error_leaves_record(self, store: SubscriberStore[Counter]) -> None:
        await store.insert_or_update(1, Counter(5))

        def fail(_: Counter) -> Counter:
            raise ValueError("rejected")

        with pytest.raises(ValueError, match="rejected"):
            await store.edit(1, fail)
        assert await store.get(1) == Counter(5)

    @pytest.mark.asyncio
    async def test_edit_locks_are_released_when_idle(self, store: SubscriberStore[Counter]) -> None:
        await asyncio.gather(
            *(store.edit(d, lambda c: replace(c, value=c.value + 1), default=Counter) for d in (1, 1, 2, 3))
        )

        def fail(_: Counter) -> Counter:
            raise ValueError("rejected")

        with pytest.raises(ValueError):
            await store.edit(1, fail)

        assert store._locks == {}
        assert await store.get(1) == Counter(2)

    @pytest.mark.asyncio
    async def test_edit_lock_is_shared_while_waiters_remain(self, store: SubscriberStore[Counter]) -> None:
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_get(destination: int) -> Counter:
            entered.set()
            await release.wait()
            return Counter(0)

        first_store_get = store.get
        store.get = slow_get  # type: ignore[method-assign]
        first = asyncio.create_task(store.edit(1, lambda c: c))
        await entered.wait()
        store.get = first_store_get  # type: ignore[method-assign]
        second = asyncio.create_task(store.edit(1, lambda c: replace(c, value=c.value + 1), default=Counter))
        await asyncio.sleep(0)

        lock, users = store._locks[1]
        assert lock.locked() and users == 2

        release.set()
        await asyncio.gather(first, second)
        assert store._locks == {}
        assert await store.get(1) == Counter(1)
