"""Scan-and-dispatch engine shared by the contract log modules.

Subscribers keep a list of filters; there is no index, every
subscriber's filters are scanned for each log event. Every matching
filter produces its own notification, so a chat with two filters that
both match one log is notified twice.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Generic, Protocol, TypeVar

from near_fanout.alerter.dispatcher import NotificationBuilder
from near_fanout.alerter.models import OutgoingNotification
from near_fanout.registry import BotContext
from near_fanout.storage.database import DatabaseManager
from near_fanout.storage.repos import SubscriberStore, SubscriberStoreError

logger = logging.getLogger(__name__)

E = TypeVar("E")
E_contra = TypeVar("E_contra", contravariant=True)


class LogFilter(Protocol[E_contra]):
    def matches(self, event: E_contra) -> bool: ...

    def to_dict(self) -> dict[str, Any]: ...


F = TypeVar("F", bound=LogFilter[Any])


@dataclass(frozen=True)
class FilterList(Generic[F]):
    """One chat's filters, in the order they were added."""

    filters: tuple[F, ...] = field(default_factory=tuple)

    def matching_filters(self, event: Any) -> list[F]:
        return [f for f in self.filters if f.matches(event)]

    def to_dict(self) -> dict[str, Any]:
        return {"filters": [f.to_dict() for f in self.filters]}


S = TypeVar("S", bound=FilterList[Any])


class FilterListService(Generic[S, F]):
    """Filter management for one bot's log subscribers.

    Args:
        store: The bot's subscriber store for this log kind.
        empty: Factory for a chat with no filters yet.
        validate: Called on every filter before it is stored; raises
            ValueError to reject it.
    """

    def __init__(
        self,
        store: SubscriberStore[S],
        *,
        empty: Callable[[], S],
        validate: Callable[[F], None] | None = None,
    ) -> None:
        self._store = store
        self._empty = empty
        self._validate = validate

    async def get(self, destination: int) -> S | None:
        return await self._store.get(destination)

    def _check(self, log_filter: F) -> None:
        if self._validate is not None:
            self._validate(log_filter)

    @staticmethod
    def _check_position(position: int) -> None:
        if position < 0:
            raise IndexError(f"Filter position must not be negative, got {position}")

    async def add_filter(self, destination: int, log_filter: F) -> S:
        self._check(log_filter)
        return await self._store.edit(
            destination,
            lambda record: replace(record, filters=(*record.filters, log_filter)),
            default=self._empty,
        )

    async def remove_filter(self, destination: int, position: int) -> F:
        """Remove the filter at ``position``.

        Raises:
            IndexError: If the destination has no filter at that position.
        """
        self._check_position(position)
        removed: list[F] = []

        def mutate(record: S) -> S:
            filters = list(record.filters)
            removed.append(filters.pop(position))
            return replace(record, filters=tuple(filters))

        await self._store.edit(destination, mutate)
        if not removed:
            raise IndexError(f"Chat {destination} has no log filters")
        return removed[0]

    async def replace_filter(self, destination: int, position: int, log_filter: F) -> S:
        """Overwrite the filter at ``position``.

        Raises:
            IndexError: If the destination has no filter at that position.
        """
        self._check_position(position)
        self._check(log_filter)

        def mutate(record: S) -> S:
            filters = list(record.filters)
            filters[position] = log_filter
            return replace(record, filters=tuple(filters))

        updated = await self._store.edit(destination, mutate)
        if updated is None:
            raise IndexError(f"Chat {destination} has no log filters")
        return updated


@dataclass
class LogModuleStats:
    events: int = 0
    dispatched: int = 0
    store_errors: int = 0


class ContractLogModule(Generic[E, S]):
    """Log notifications of one kind for all bots.

    Args:
        db: Database manager backing the per-bot stores.
        name: Module name used in log lines.
        store_factory: Builds the subscriber store of one bot.
        render: Renders the notification for one destination.
        describe: Short description of an event for log context.
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        name: str,
        store_factory: Callable[[DatabaseManager, int], SubscriberStore[S]],
        render: Callable[[int, E], OutgoingNotification],
        describe: Callable[[E], str],
    ) -> None:
        self.name = name
        self._db = db
        self._store_factory = store_factory
        self._render = render
        self._describe = describe
        self._bots: dict[int, tuple[BotContext, SubscriberStore[S]]] = {}
        self._stats = LogModuleStats()

    @property
    def stats(self) -> LogModuleStats:
        return self._stats

    def store(self, bot_id: int) -> SubscriberStore[S] | None:
        entry = self._bots.get(bot_id)
        return entry[1] if entry else None

    async def add_bot(self, context: BotContext) -> bool:
        self._bots[context.bot_id] = (context, self._store_factory(self._db, context.bot_id))
        return True

    async def handle_event(self, event: E) -> None:
        self._stats.events += 1
        for context, store in list(self._bots.values()):
            try:
                subscribers = await store.iterate_all()
            except SubscriberStoreError as e:
                self._stats.store_errors += 1
                logger.warning("Bot %s: %s subscribers unavailable: %s", context.bot_id, self.name, e)
                continue

            for destination, subscriber in subscribers:
                for _ in subscriber.matching_filters(event):
                    description = self._describe(event)
                    logger.debug("%s matched chat %s", description, destination)
                    context.dispatcher.spawn(
                        destination,
                        self._builder(destination, event),
                        context=description,
                    )
                    self._stats.dispatched += 1

    def _builder(self, destination: int, event: E) -> NotificationBuilder:
        async def build() -> OutgoingNotification:
            return self._render(destination, event)

        return build
