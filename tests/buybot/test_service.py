"""Tests for buybot subscription management."""

from decimal import Decimal

import pytest

from near_fanout.alerter.models import Button, Media, MediaKind
from near_fanout.buybot.index import ReverseIndex
from near_fanout.buybot.models import (
    Attachment,
    AttachmentCurrency,
    BuybotSubscriber,
    Polarity,
    PriceComponent,
    SubscribedToken,
    TokenAmount,
    TraderComponent,
    TxLinkComponent,
    UsdAmount,
)
from near_fanout.buybot.module import buybot_store
from near_fanout.buybot.service import BuybotService, NotSubscribedError
from near_fanout.ingestor.models import FungibleToken, PrelaunchToken

SHIT = FungibleToken("shit.0xshitzu.near")
LAUNCHED = FungibleToken("meme-7.meme-cooking.near")
AUCTION = PrelaunchToken(7)


@pytest.fixture
def index(db, bot_id: int) -> ReverseIndex[BuybotSubscriber]:
    return ReverseIndex(buybot_store(db, bot_id))


@pytest.fixture
def service(db, bot_id: int, index: ReverseIndex[BuybotSubscriber]) -> BuybotService:
    return BuybotService(buybot_store(db, bot_id), index)


class TestStructuralChanges:
    """Changes that rebuild the index."""

    @pytest.mark.asyncio
    async def test_add_token_creates_record_and_indexes(self, service: BuybotService, index) -> None:
        record = await service.add_token(-100, SHIT)

        assert record.enabled is True
        assert record.tokens == {SHIT: SubscribedToken()}
        assert await index.lookup(SHIT) == [-100]

    @pytest.mark.asyncio
    async def test_add_token_keeps_existing_config(self, service: BuybotService) -> None:
        await service.add_token(-100, SHIT, SubscribedToken(sells=True))

        record = await service.add_token(-100, SHIT)

        assert record.tokens[SHIT].sells is True

    @pytest.mark.asyncio
    async def test_remove_token(self, service: BuybotService, index) -> None:
        await service.add_token(-100, SHIT)

        assert await service.remove_token(-100, SHIT) is True
        assert await service.remove_token(-100, SHIT) is False
        assert await index.lookup(SHIT) == []

    @pytest.mark.asyncio
    async def test_unsubscribe(self, service: BuybotService, index) -> None:
        await service.add_token(-100, SHIT)

        removed = await service.unsubscribe(-100)

        assert removed is not None
        assert await service.get(-100) is None
        assert await index.lookup(SHIT) == []


class TestMigration:
    """Tests for moving pre-launch subscriptions to the launched token."""

    @pytest.mark.asyncio
    async def test_migrate_preserves_settings(self, service: BuybotService, index) -> None:
        config = SubscribedToken(sells=True, min_amount=UsdAmount(usd=Decimal("25")))
        await service.add_token(-100, AUCTION, config)
        await service.add_token(-200, SHIT)

        migrated = await service.migrate_token(AUCTION, LAUNCHED)

        assert migrated == [(-100, True)]
        record = await service.get(-100)
        assert record is not None
        assert record.tokens == {LAUNCHED: config}
        assert await index.lookup(AUCTION) == []
        assert await index.lookup(LAUNCHED) == [-100]

    @pytest.mark.asyncio
    async def test_migrate_overwrites_existing_target(self, service: BuybotService) -> None:
        await service.add_token(-100, LAUNCHED, SubscribedToken(buys=False))
        await service.add_token(-100, AUCTION, SubscribedToken(lp_add=True))

        await service.migrate_token(AUCTION, LAUNCHED)

        record = await service.get(-100)
        assert record is not None
        assert record.tokens == {LAUNCHED: SubscribedToken(lp_add=True)}

    @pytest.mark.asyncio
    async def test_migrate_reports_disabled_destinations(self, service: BuybotService) -> None:
        await service.add_token(-100, AUCTION)
        await service.set_enabled(-100, False)

        assert await service.migrate_token(AUCTION, LAUNCHED) == [(-100, False)]


class TestSetters:
    """Non-structural setters."""

    @pytest.mark.asyncio
    async def test_set_enabled_creates_missing_record(self, service: BuybotService) -> None:
        record = await service.set_enabled(-100, False)

        assert record == BuybotSubscriber(enabled=False)
        assert await service.get(-100) == record

    @pytest.mark.asyncio
    async def test_set_polarity(self, service: BuybotService) -> None:
        await service.add_token(-100, SHIT)

        config = await service.set_polarity(-100, SHIT, Polarity.LP_REMOVE, True)

        assert config.lp_remove is True
        assert config.buys is True

    @pytest.mark.asyncio
    async def test_setter_on_unfollowed_token_raises(self, service: BuybotService) -> None:
        await service.add_token(-100, SHIT)

        with pytest.raises(NotSubscribedError):
            await service.set_min_amount(-100, AUCTION, TokenAmount(raw=1))
        with pytest.raises(NotSubscribedError):
            await service.set_min_amount(-999, SHIT, TokenAmount(raw=1))

    @pytest.mark.asyncio
    async def test_set_min_amount(self, service: BuybotService) -> None:
        await service.add_token(-100, SHIT)

        config = await service.set_min_amount(-100, SHIT, TokenAmount(raw=10**18))

        assert config.min_amount == TokenAmount(raw=10**18)
        stored = await service.get(-100)
        assert stored is not None and stored.tokens[SHIT].min_amount == TokenAmount(raw=10**18)

    @pytest.mark.asyncio
    async def test_set_attachments_sorted(self, service: BuybotService) -> None:
        await service.add_token(-100, SHIT)
        big = Attachment(threshold=Decimal("1000"), media=Media(kind=MediaKind.VIDEO, file="big"))
        small = Attachment(threshold=Decimal("10"), media=Media(kind=MediaKind.PHOTO, file="small"))

        config = await service.set_attachments(-100, SHIT, [big, small], AttachmentCurrency.TOKEN)

        assert config.attachments == (small, big)
        assert config.attachment_currency == AttachmentCurrency.TOKEN

    @pytest.mark.asyncio
    async def test_move_component_clamps(self, service: BuybotService) -> None:
        await service.add_token(-100, SHIT)
        await service.set_components(-100, SHIT, [TraderComponent(), PriceComponent(), TxLinkComponent()])

        config = await service.move_component(-100, SHIT, 2, -5)
        assert config.components == (TxLinkComponent(), TraderComponent(), PriceComponent())

        with pytest.raises(IndexError):
            await service.move_component(-100, SHIT, 3, 1)

    @pytest.mark.asyncio
    async def test_links_and_buttons(self, service: BuybotService) -> None:
        await service.add_token(-100, SHIT)
        link = Button(text="Chart", url="https://chart.example")

        await service.set_links(-100, SHIT, [link])
        config = await service.set_buttons(-100, SHIT, [[link, link]])

        assert config.links == (link,)
        assert config.buttons == ((link, link),)
