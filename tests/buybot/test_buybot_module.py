"""Tests for the buybot module's per-bot fan-out."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from near_fanout.alerter.dispatcher import NotificationDispatcher
from near_fanout.buybot.models import SubscribedToken
from near_fanout.buybot.module import BuybotModule
from near_fanout.ingestor.models import (
    FungibleToken,
    PrelaunchDepositEvent,
    PrelaunchFinalizeEvent,
    PrelaunchToken,
    TradeSwapEvent,
)
from near_fanout.oracle.prices import NEAR_METADATA, TokenMetadata
from near_fanout.registry import BotContext
from near_fanout.storage.repos import SubscriberStore, SubscriberStoreError

SHIT_ID = "shit.0xshitzu.near"
SHIT = FungibleToken(SHIT_ID)


@pytest.fixture
def oracle(oracle_factory):
    return oracle_factory(
        {SHIT_ID: Decimal("0.02"), "near": Decimal("5")},
        {SHIT_ID: TokenMetadata(name="Shitzu", symbol="SHIT", decimals=0), "near": NEAR_METADATA},
    )


@pytest.fixture
def module(db, oracle) -> BuybotModule:
    return BuybotModule(db, oracle)


@pytest.fixture
def make_bot(transport):
    def make(bot_id: int) -> BotContext:
        dispatcher = NotificationDispatcher(bot_id=bot_id, transport=transport, limit_notice_delay=0)
        return BotContext(bot_id=bot_id, transport=transport, dispatcher=dispatcher)

    return make


def _swap(amount: int) -> TradeSwapEvent:
    return TradeSwapEvent(
        trader="alice.near",
        balance_changes={SHIT_ID: amount},
        block_height=1,
        block_timestamp_nanosec=0,
        transaction_id="9xTx",
    )


class TestBuybotModule:
    """Tests for BuybotModule."""

    @pytest.mark.asyncio
    async def test_bots_are_isolated_by_id(self, module: BuybotModule, make_bot, transport) -> None:
        first, second = make_bot(1), make_bot(2)
        await module.add_bot(first)
        await module.add_bot(second)
        service = module.service(1)
        assert service is not None
        await service.add_token(-100, SHIT)

        await module.handle_event(_swap(500))
        await first.dispatcher.wait_idle()
        await second.dispatcher.wait_idle()

        assert first.dispatcher.stats.sent == 1
        assert second.dispatcher.stats.spawned == 0
        assert transport.destinations() == [-100]

    @pytest.mark.asyncio
    async def test_failing_bot_does_not_affect_others(self, module: BuybotModule, make_bot, transport) -> None:
        first, second = make_bot(1), make_bot(2)
        await module.add_bot(first)
        await module.add_bot(second)
        await module.service(2).add_token(-200, SHIT)

        broken = module.bot(1)
        assert broken is not None
        broken.matcher.handle_trade_swap = AsyncMock(side_effect=RuntimeError("boom"))

        await module.handle_event(_swap(500))
        await second.dispatcher.wait_idle()

        assert module.stats.bot_errors == 1
        assert transport.destinations() == [-200]

    @pytest.mark.asyncio
    async def test_add_bot_failure_skips_bot(self, module: BuybotModule, make_bot) -> None:
        with patch.object(SubscriberStore, "iterate_all", side_effect=SubscriberStoreError("db down")):
            assert await module.add_bot(make_bot(1)) is False

        assert module.bot(1) is None
        assert module.stats.skipped_bots == [1]

    @pytest.mark.asyncio
    async def test_prelaunch_deposit(self, module: BuybotModule, make_bot, transport) -> None:
        bot = make_bot(1)
        await module.add_bot(bot)
        await module.service(1).add_token(-100, PrelaunchToken(7))

        await module.handle_event(
            PrelaunchDepositEvent(
                auction_id=7, trader="bob.near", amount=10**24, transaction_id="d", block_timestamp_nanosec=0
            )
        )
        await bot.dispatcher.wait_idle()

        assert transport.destinations() == [-100]

    @pytest.mark.asyncio
    async def test_finalize_migrates_and_announces(self, module: BuybotModule, make_bot, transport) -> None:
        bot = make_bot(1)
        await module.add_bot(bot)
        service = module.service(1)
        config = SubscribedToken(sells=True)
        await service.add_token(-100, PrelaunchToken(7), config)
        await service.add_token(-200, PrelaunchToken(7))
        await service.set_enabled(-200, False)

        await module.handle_event(
            PrelaunchFinalizeEvent(
                auction_id=7,
                token_account_id="meme-7.meme-cooking.near",
                transaction_id="f",
                block_timestamp_nanosec=0,
            )
        )
        await bot.dispatcher.wait_idle()

        assert transport.destinations() == [-100]
        assert "has launched" in transport.sent[0].text
        record = await service.get(-100)
        assert record is not None
        assert record.tokens == {FungibleToken("meme-7.meme-cooking.near"): config}
        assert module.stats.launches == 1

        # Trades of the launched token now reach the migrated subscription.
        launched = TradeSwapEvent(
            trader="alice.near",
            balance_changes={"meme-7.meme-cooking.near": -10},
            block_height=2,
            block_timestamp_nanosec=0,
            transaction_id="t2",
        )
        await module.handle_event(launched)
        await bot.dispatcher.wait_idle()
        assert transport.destinations() == [-100, -100]
