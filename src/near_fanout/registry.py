"""Per-bot identity registry.

Each configured bot token becomes one ``BotContext`` holding everything
that is scoped to that bot: its transport, its rate limiter and its
dispatcher. Modules attach their own per-bot state to these contexts.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from redis.asyncio import Redis

from near_fanout.alerter.dispatcher import NotificationDispatcher
from near_fanout.alerter.rate_limit import NotificationRateLimiter, windows_from_settings
from near_fanout.alerter.telegram import TelegramTransport
from near_fanout.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class BotContext:
    """Everything scoped to a single bot identity."""

    bot_id: int
    transport: TelegramTransport
    dispatcher: NotificationDispatcher
    rate_limiter: NotificationRateLimiter | None = None


class BotRegistry:
    """Ordered collection of bot contexts, keyed by bot id."""

    def __init__(self, bots: list[BotContext] | None = None) -> None:
        self._bots: dict[int, BotContext] = {}
        for bot in bots or []:
            self.add(bot)

    def add(self, bot: BotContext) -> None:
        if bot.bot_id in self._bots:
            raise ValueError(f"Bot {bot.bot_id} is already registered")
        self._bots[bot.bot_id] = bot

    def get(self, bot_id: int) -> BotContext | None:
        return self._bots.get(bot_id)

    def __iter__(self) -> Iterator[BotContext]:
        return iter(list(self._bots.values()))

    def __len__(self) -> int:
        return len(self._bots)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        redis: Redis | None,
        dry_run: bool = False,
    ) -> BotRegistry:
        """Build one context per configured bot token.

        A token that cannot be parsed, or that repeats an already
        registered bot, is logged and left out; the other bots still run.
        """
        registry = cls()
        windows = windows_from_settings(settings.rate_limit)

        for token in settings.bots.token_list():
            try:
                transport = TelegramTransport(token, api_url=settings.bots.api_url)
            except ValueError as e:
                logger.error("Skipping bot with malformed token: %s", e)
                continue

            rate_limiter = (
                NotificationRateLimiter(redis, bot_id=transport.bot_id, windows=windows)
                if redis is not None
                else None
            )
            dispatcher = NotificationDispatcher(
                bot_id=transport.bot_id,
                transport=transport,
                rate_limiter=rate_limiter,
                dry_run=dry_run,
            )
            try:
                registry.add(
                    BotContext(
                        bot_id=transport.bot_id,
                        transport=transport,
                        dispatcher=dispatcher,
                        rate_limiter=rate_limiter,
                    )
                )
            except ValueError as e:
                logger.error("Skipping bot: %s", e)
                continue
            logger.info("Registered bot %s", transport.bot_id)

        if not registry:
            logger.warning("No bots configured")
        return registry

    async def aclose(self) -> None:
        """Cancel pending deliveries and close every transport."""
        for bot in self:
            await bot.dispatcher.close()
            await bot.transport.aclose()
