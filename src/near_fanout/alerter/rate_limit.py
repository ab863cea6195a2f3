"""Per-chat notification rate limiting backed by Redis.

Each chat has one fixed-window counter per configured window. Counters are
incremented shortest window first, and the first counter over its limit
blocks the attempt without touching the longer windows. The first
over-limit attempt in a window may claim a one-off notice telling the chat
why notifications stopped.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import RedisError

from near_fanout.config import RateLimitSettings

logger = logging.getLogger(__name__)


class RateLimitError(Exception):
    """Raised when the limiter backend cannot be reached."""


@dataclass(frozen=True)
class RateLimitWindow:
    name: str
    seconds: int
    limit: int

    def describe(self) -> str:
        """Human duration, e.g. ``5 minutes``, ``1 hour``, ``1 day``."""
        for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
            if self.seconds % size == 0:
                count = self.seconds // size
                return f"{count} {unit}" + ("s" if count != 1 else "")
        return f"{self.seconds} seconds"


@dataclass(frozen=True)
class LimitExceeded:
    """Outcome of an over-limit check.

    Attributes:
        window: The first window whose limit was exceeded.
        count: Attempts seen in that window, including this one.
        notify: True for exactly one caller per window: the one that
            should tell the chat about the limit.
    """

    window: RateLimitWindow
    count: int
    notify: bool

    def notice_text(self) -> str:
        return (
            f"You have reached the notification limit of {self.count}/{self.window.limit} "
            f"messages in {self.window.describe()}. Please fix your settings."
        )


def windows_from_settings(settings: RateLimitSettings) -> tuple[RateLimitWindow, ...]:
    return (
        RateLimitWindow(name="5m", seconds=5 * 60, limit=settings.per_5m),
        RateLimitWindow(name="1h", seconds=60 * 60, limit=settings.per_1h),
        RateLimitWindow(name="1d", seconds=24 * 60 * 60, limit=settings.per_1d),
    )


class NotificationRateLimiter:
    """Multi-window fixed-window counter for one bot.

    Keys: ``{prefix}{bot_id}:{chat}:{window}:{bucket}`` hold the attempt
    count; ``...:notice`` marks that the window's notice was claimed.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        bot_id: int,
        windows: tuple[RateLimitWindow, ...],
        key_prefix: str = "near_fanout:ratelimit:",
    ) -> None:
        self._redis = redis
        self._bot_id = bot_id
        self._windows = windows
        self._key_prefix = key_prefix

    def _key(self, destination: int, window: RateLimitWindow, now: float) -> str:
        bucket = int(now) // window.seconds
        return f"{self._key_prefix}{self._bot_id}:{destination}:{window.name}:{bucket}"

    async def check(self, destination: int, *, now: float | None = None) -> LimitExceeded | None:
        """Count one delivery attempt and report whether it is over limit.

        Windows are checked shortest first. The first window over its limit
        rejects the attempt, and longer windows are left uncounted, so a
        blocked burst does not use up the hourly or daily quota.

        Raises:
            RateLimitError: If Redis fails.
        """
        ts = time.time() if now is None else now
        exceeded: LimitExceeded | None = None
        try:
            for window in self._windows:
                key = self._key(destination, window, ts)
                count = int(await self._redis.incr(key))
                if count == 1:
                    await self._redis.expire(key, window.seconds)
                if count > window.limit:
                    claimed = await self._redis.set(f"{key}:notice", "1", nx=True, ex=window.seconds)
                    exceeded = LimitExceeded(window=window, count=count, notify=bool(claimed))
                    break
        except RedisError as e:
            raise RateLimitError(f"Rate limit check failed for chat {destination}: {e}") from e

        if exceeded is not None:
            logger.debug(
                "Chat %s over %s limit (%d/%d)",
                destination,
                exceeded.window.name,
                exceeded.count,
                exceeded.window.limit,
            )
        return exceeded

    async def reached_limit(self, destination: int) -> bool:
        return await self.check(destination) is not None
