"""Reverse index from token to subscribed destinations.

The index is a coarse candidate set derived from the subscriber store.
It never encodes ``enabled`` or filter settings: every candidate is
re-validated against its stored record at match time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Generic, Protocol, TypeVar

from near_fanout.ingestor.models import Token

logger = logging.getLogger(__name__)

R_co = TypeVar("R_co", covariant=True)


class IndexRebuildError(Exception):
    """Raised when the index cannot be rebuilt; the previous index is kept."""


class HasTokens(Protocol):
    @property
    def tokens(self) -> Mapping[Token, object]: ...


class RecordSource(Protocol[R_co]):
    async def iterate_all(self) -> Sequence[tuple[int, R_co]]: ...


class ReadWriteLock:
    """Asyncio readers-writer lock.

    Any number of readers may hold the lock together; a writer holds it
    alone. Waiting writers block new readers so rebuilds cannot starve.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._waiting_writers -= 1
                # Wake readers blocked on this writer if it was cancelled.
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


R = TypeVar("R", bound=HasTokens)


class ReverseIndex(Generic[R]):
    """Token -> destinations map, rebuilt wholesale from the store.

    Args:
        source: Store whose ``iterate_all()`` yields ``(destination, record)``.
        name: Label for log lines (usually the bot id).
    """

    def __init__(self, source: RecordSource[R], *, name: str = "") -> None:
        self._source = source
        self._name = name
        self._lock = ReadWriteLock()
        self._index: dict[Token, list[int]] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        """Number of successful rebuilds so far."""
        return self._generation

    async def rebuild(self) -> None:
        """Replace the index with one freshly read from the store.

        Lookups wait while the rebuild holds the write lock, so they see
        either the old or the new index, never a mix.

        Raises:
            IndexRebuildError: If the store cannot be read. The previous
                index stays in place.
        """
        async with self._lock.write():
            try:
                records = await self._source.iterate_all()
            except Exception as e:
                raise IndexRebuildError(f"Failed to rebuild index {self._name}: {e}") from e

            index: dict[Token, list[int]] = {}
            for destination, record in records:
                for token in record.tokens:
                    index.setdefault(token, []).append(destination)

            self._index = index
            self._generation += 1

        logger.debug(
            "Rebuilt index %s: %d tokens, generation %d",
            self._name,
            len(index),
            self._generation,
        )

    async def lookup(self, token: Token) -> list[int]:
        """Candidate destinations for a token (a copy; empty if unknown)."""
        async with self._lock.read():
            return list(self._index.get(token, ()))

    async def tokens(self) -> list[Token]:
        async with self._lock.read():
            return list(self._index)
