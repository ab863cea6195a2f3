"""Buybot module: per-bot wiring of store, index, service and matcher.

Events are broadcast to every registered bot; each bot decides relevance
through its own reverse index. A failure inside one bot is logged and
does not affect the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import assert_never

from near_fanout.alerter.dispatcher import NotificationBuilder
from near_fanout.alerter.models import OutgoingNotification
from near_fanout.buybot.index import IndexRebuildError, ReverseIndex
from near_fanout.buybot.matcher import BuybotMatcher, TrendingRoutes
from near_fanout.buybot.models import BuybotSubscriber
from near_fanout.buybot.notifier import render_launch_notification
from near_fanout.buybot.service import BuybotService
from near_fanout.ingestor.models import (
    FungibleToken,
    LiquidityPoolEvent,
    PrelaunchDepositEvent,
    PrelaunchFinalizeEvent,
    PrelaunchToken,
    PrelaunchWithdrawEvent,
    TradeSwapEvent,
)
from near_fanout.oracle.prices import PriceOracle
from near_fanout.registry import BotContext
from near_fanout.storage.database import DatabaseManager
from near_fanout.storage.repos import SubscriberStore, SubscriberStoreError

logger = logging.getLogger(__name__)

BUYBOT_COLLECTION = "buybot"

BuybotEvent = (
    TradeSwapEvent
    | LiquidityPoolEvent
    | PrelaunchDepositEvent
    | PrelaunchWithdrawEvent
    | PrelaunchFinalizeEvent
)


def _prebuilt(notification: OutgoingNotification) -> NotificationBuilder:
    async def build() -> OutgoingNotification:
        return notification

    return build


def buybot_store(db: DatabaseManager, bot_id: int) -> SubscriberStore[BuybotSubscriber]:
    return SubscriberStore(
        db,
        collection=BUYBOT_COLLECTION,
        bot_id=bot_id,
        encode=BuybotSubscriber.to_dict,
        decode=BuybotSubscriber.from_dict,
    )


@dataclass
class BuybotBot:
    """Buybot state owned by one bot identity."""

    context: BotContext
    store: SubscriberStore[BuybotSubscriber]
    index: ReverseIndex[BuybotSubscriber]
    service: BuybotService
    matcher: BuybotMatcher


@dataclass
class BuybotModuleStats:
    events: int = 0
    dispatched: int = 0
    launches: int = 0
    bot_errors: int = 0
    skipped_bots: list[int] = field(default_factory=list)


class BuybotModule:
    """Trade, liquidity and pre-launch notifications for all bots.

    Args:
        db: Database manager backing every bot's subscriber store.
        oracle: Shared price and metadata source.
        trending: Aggregate channel routing shared by all bots.
    """

    name = "buybot"

    def __init__(
        self,
        db: DatabaseManager,
        oracle: PriceOracle,
        *,
        trending: TrendingRoutes | None = None,
    ) -> None:
        self._db = db
        self._oracle = oracle
        self._trending = trending or TrendingRoutes()
        self._bots: dict[int, BuybotBot] = {}
        self._stats = BuybotModuleStats()

    @property
    def stats(self) -> BuybotModuleStats:
        return self._stats

    def bot(self, bot_id: int) -> BuybotBot | None:
        return self._bots.get(bot_id)

    def service(self, bot_id: int) -> BuybotService | None:
        """Mutation endpoints for one bot, for the surrounding menu layer."""
        bot = self._bots.get(bot_id)
        return bot.service if bot else None

    async def add_bot(self, context: BotContext) -> bool:
        """Load a bot's subscriptions and start matching for it.

        Returns:
            False if the initial index build failed; the bot is then left
            out of matching.
        """
        store = buybot_store(self._db, context.bot_id)
        index: ReverseIndex[BuybotSubscriber] = ReverseIndex(store, name=f"buybot:{context.bot_id}")
        try:
            await index.rebuild()
        except IndexRebuildError as e:
            logger.error("Buybot disabled for bot %s: %s", context.bot_id, e)
            self._stats.skipped_bots.append(context.bot_id)
            return False

        self._bots[context.bot_id] = BuybotBot(
            context=context,
            store=store,
            index=index,
            service=BuybotService(store, index),
            matcher=BuybotMatcher(
                bot_id=context.bot_id,
                store=store,
                index=index,
                dispatcher=context.dispatcher,
                oracle=self._oracle,
                trending=self._trending,
            ),
        )
        logger.info(
            "Buybot loaded for bot %s: %d tokens followed",
            context.bot_id,
            len(await index.tokens()),
        )
        return True

    async def handle_event(self, event: BuybotEvent) -> None:
        """Fan one event out to every bot."""
        self._stats.events += 1
        if isinstance(event, PrelaunchFinalizeEvent):
            await self.handle_finalize(event)
            return

        for bot in list(self._bots.values()):
            try:
                self._stats.dispatched += await self._match(bot.matcher, event)
            except Exception as e:
                self._stats.bot_errors += 1
                logger.error(
                    "Buybot matching failed for bot %s (tx %s): %s",
                    bot.context.bot_id,
                    event.transaction_id,
                    e,
                )

    @staticmethod
    async def _match(
        matcher: BuybotMatcher,
        event: TradeSwapEvent | LiquidityPoolEvent | PrelaunchDepositEvent | PrelaunchWithdrawEvent,
    ) -> int:
        match event:
            case TradeSwapEvent():
                return await matcher.handle_trade_swap(event)
            case LiquidityPoolEvent():
                return await matcher.handle_liquidity(event)
            case PrelaunchDepositEvent() | PrelaunchWithdrawEvent():
                return await matcher.handle_prelaunch(event)
            case _ as unreachable:
                assert_never(unreachable)

    async def handle_finalize(self, event: PrelaunchFinalizeEvent) -> None:
        """Move pre-launch subscriptions to the launched token and announce it."""
        from_token = PrelaunchToken(event.auction_id)
        to_token = FungibleToken(event.token_account_id)
        self._stats.launches += 1
        logger.info("Pre-launch #%d launched as %s", event.auction_id, event.token_account_id)

        for bot in list(self._bots.values()):
            try:
                migrated = await bot.service.migrate_token(from_token, to_token)
            except (SubscriberStoreError, IndexRebuildError) as e:
                self._stats.bot_errors += 1
                logger.error(
                    "Failed to migrate pre-launch #%d for bot %s: %s",
                    event.auction_id,
                    bot.context.bot_id,
                    e,
                )
                continue

            for destination, enabled in migrated:
                if not enabled:
                    continue
                bot.context.dispatcher.spawn(
                    destination,
                    _prebuilt(render_launch_notification(destination, event.auction_id, event.token_account_id)),
                    context=f"launch {event.token_account_id}",
                )
