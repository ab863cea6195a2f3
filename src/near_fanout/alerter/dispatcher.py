"""Fire-and-forget notification dispatcher.

Every matched destination gets its own task: rate-limit check, render,
send. The caller never awaits delivery, and one failing or slow
delivery has no effect on its siblings.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from near_fanout.alerter.formatter import escape_markdownv2
from near_fanout.alerter.models import OutgoingNotification
from near_fanout.alerter.rate_limit import LimitExceeded, RateLimitError
from near_fanout.alerter.telegram import TransportError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT_NOTICE_DELAY = 10.0  # seconds

NotificationBuilder = Callable[[], Awaitable[OutgoingNotification | None]]


class ChatTransport(Protocol):
    async def send(self, notification: OutgoingNotification) -> None: ...


class RateLimiter(Protocol):
    async def check(self, destination: int) -> LimitExceeded | None: ...


@dataclass
class DispatchStats:
    spawned: int = 0
    sent: int = 0
    rate_limited: int = 0
    skipped: int = 0
    failed: int = 0
    limit_notices_sent: int = 0


class NotificationDispatcher:
    """Spawns one delivery task per notification for a single bot.

    Args:
        bot_id: Owning bot, used in log context.
        transport: Chat transport used to send.
        rate_limiter: Per-destination limiter consulted before rendering.
        dry_run: Render but do not send.
        limit_notice_delay: Delay before the one-off "limit reached" notice,
            so that it arrives after in-flight notifications.
    """

    def __init__(
        self,
        *,
        bot_id: int,
        transport: ChatTransport,
        rate_limiter: RateLimiter | None = None,
        dry_run: bool = False,
        limit_notice_delay: float = DEFAULT_LIMIT_NOTICE_DELAY,
    ) -> None:
        self.bot_id = bot_id
        self._transport = transport
        self._rate_limiter = rate_limiter
        self._dry_run = dry_run
        self._limit_notice_delay = limit_notice_delay
        self._tasks: set[asyncio.Task[None]] = set()
        self._stats = DispatchStats()

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _track(self, coro: Awaitable[None], name: str) -> None:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def spawn(self, destination: int, build: NotificationBuilder, *, context: str = "") -> None:
        """Schedule delivery of one notification and return immediately.

        Args:
            destination: Chat to deliver to (checked against the limiter).
            build: Renders the notification; returning None skips delivery.
            context: Short description for log lines (token, tx hash).
        """
        self._stats.spawned += 1
        self._track(
            self._deliver(destination, build, context),
            name=f"dispatch-{self.bot_id}-{destination}",
        )

    async def _is_limited(self, destination: int) -> bool:
        if self._rate_limiter is None:
            return False
        try:
            exceeded = await self._rate_limiter.check(destination)
        except RateLimitError as e:
            logger.warning("Rate limiter unavailable, delivering anyway: %s", e)
            return False
        if exceeded is None:
            return False
        if exceeded.notify:
            self._track(
                self._send_limit_notice(destination, exceeded),
                name=f"limit-notice-{self.bot_id}-{destination}",
            )
        return True

    async def _deliver(self, destination: int, build: NotificationBuilder, context: str) -> None:
        if await self._is_limited(destination):
            self._stats.rate_limited += 1
            return

        try:
            notification = await build()
        except Exception as e:
            self._stats.failed += 1
            logger.error(
                "Failed to render notification for bot %s chat %s (%s): %s",
                self.bot_id,
                destination,
                context,
                e,
                exc_info=True,
            )
            return

        if notification is None:
            self._stats.skipped += 1
            return

        if self._dry_run:
            logger.info("[DRY RUN] bot %s chat %s (%s): %s", self.bot_id, destination, context, notification.text)
            self._stats.sent += 1
            return

        try:
            await self._transport.send(notification)
        except TransportError as e:
            self._stats.failed += 1
            logger.warning(
                "Failed to deliver notification for bot %s chat %s (%s): %s",
                self.bot_id,
                destination,
                context,
                e,
            )
            return
        self._stats.sent += 1

    async def _send_limit_notice(self, destination: int, exceeded: LimitExceeded) -> None:
        await asyncio.sleep(self._limit_notice_delay)
        notice = OutgoingNotification(destination=destination, text=escape_markdownv2(exceeded.notice_text()))
        if self._dry_run:
            logger.info("[DRY RUN] limit notice for chat %s: %s", destination, exceeded.notice_text())
            return
        try:
            await self._transport.send(notice)
        except TransportError as e:
            logger.warning("Error sending limit notice to chat %s: %s", destination, e)
            return
        self._stats.limit_notices_sent += 1

    async def wait_idle(self) -> None:
        """Wait until every spawned delivery has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding deliveries."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
