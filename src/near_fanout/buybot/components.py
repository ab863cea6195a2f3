"""Rendering of display components in trade notifications.

Each component renders independently. A component that fails renders
as ``Error``; a component with nothing to show renders as an empty
string and is left out of the message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import assert_never

from near_fanout.alerter.formatter import (
    escape_markdownv2,
    format_account_link,
    format_token_amount,
    format_tx_link,
    format_usd_amount,
)
from near_fanout.buybot.models import (
    Component,
    ContractAddressComponent,
    EmojiComponent,
    MarketCapComponent,
    Polarity,
    PriceComponent,
    TradeAmountComponent,
    TraderComponent,
    TxLinkComponent,
    WhaleAlertComponent,
)
from near_fanout.ingestor.models import FungibleToken, PrelaunchToken, Token
from near_fanout.oracle.prices import OracleError, PriceOracle, TokenMetadata

logger = logging.getLogger(__name__)

ERROR_PLACEHOLDER = "Error"
PRELAUNCH_URL = "https://meme.cooking/meme/{auction_id}"

_AMOUNT_LABELS: dict[Polarity, str] = {
    Polarity.BUY: "Bought",
    Polarity.SELL: "Sold",
    Polarity.LP_ADD: "Added",
    Polarity.LP_REMOVE: "Removed",
}


@dataclass(frozen=True)
class TradeContext:
    """Everything components may need to know about one matched change.

    ``amount`` is in raw units of ``value_token_id``: the token itself
    for trades and liquidity, NEAR for pre-launch deposits.
    """

    token: Token
    value_token_id: str
    amount: int
    polarity: Polarity
    trader: str
    transaction_id: str
    metadata: TokenMetadata | None = None
    price: Decimal | None = None

    @property
    def usd_value(self) -> Decimal | None:
        if self.price is None or self.metadata is None:
            return None
        return Decimal(abs(self.amount)) / (Decimal(10) ** self.metadata.decimals) * self.price


def _render_emoji(component: EmojiComponent, ctx: TradeContext) -> str:
    usd = ctx.usd_value
    if usd is None or component.usd_per_emoji <= 0:
        return component.emoji
    count = int(usd / component.usd_per_emoji)
    return component.emoji * max(1, min(component.max_emojis, count))


def _render_trade_amount(ctx: TradeContext) -> str:
    if ctx.metadata is None:
        raise OracleError(f"No metadata for {ctx.value_token_id}")
    amount = format_token_amount(abs(ctx.amount), ctx.metadata.decimals, ctx.metadata.symbol)
    text = f"{_AMOUNT_LABELS[ctx.polarity]}: {amount}"
    usd = ctx.usd_value
    if usd is not None and usd > 0:
        text += f" ({format_usd_amount(usd)})"
    return escape_markdownv2(text)


def _render_price(ctx: TradeContext) -> str:
    if isinstance(ctx.token, PrelaunchToken) or ctx.price is None:
        return ""
    return escape_markdownv2(f"Price: {format_usd_amount(ctx.price)}")


async def _render_market_cap(ctx: TradeContext, oracle: PriceOracle) -> str:
    if not isinstance(ctx.token, FungibleToken) or ctx.price is None or ctx.metadata is None:
        return ""
    supply = await oracle.get_total_supply(ctx.value_token_id)
    market_cap = Decimal(supply) / (Decimal(10) ** ctx.metadata.decimals) * ctx.price
    return escape_markdownv2(f"Market Cap: {format_usd_amount(market_cap)}")


def _render_contract_address(ctx: TradeContext) -> str:
    match ctx.token:
        case FungibleToken(account_id=account_id):
            return f"CA: `{escape_markdownv2(account_id)}`"
        case PrelaunchToken(auction_id=auction_id):
            url = PRELAUNCH_URL.format(auction_id=auction_id)
            return f"[Pre\\-launch auction \\#{auction_id}]({url})"
        case _ as unreachable:
            assert_never(unreachable)


def _render_whale_alert(component: WhaleAlertComponent, ctx: TradeContext) -> str:
    usd = ctx.usd_value
    if usd is None or usd < component.threshold_usd:
        return ""
    return escape_markdownv2(f"🐋 Whale alert! {format_usd_amount(usd)}")


async def _render(component: Component, ctx: TradeContext, oracle: PriceOracle) -> str:
    match component:
        case EmojiComponent():
            return _render_emoji(component, ctx)
        case TradeAmountComponent():
            return _render_trade_amount(ctx)
        case TraderComponent():
            return f"Trader: {format_account_link(ctx.trader)}"
        case PriceComponent():
            return _render_price(ctx)
        case MarketCapComponent():
            return await _render_market_cap(ctx, oracle)
        case ContractAddressComponent():
            return _render_contract_address(ctx)
        case WhaleAlertComponent():
            return _render_whale_alert(component, ctx)
        case TxLinkComponent():
            return format_tx_link(ctx.transaction_id)
        case _ as unreachable:
            assert_never(unreachable)


async def render_component(component: Component, ctx: TradeContext, oracle: PriceOracle) -> str:
    """Render one component, degrading to ``Error`` on failure."""
    try:
        return await _render(component, ctx, oracle)
    except Exception as e:
        logger.warning(
            "Component %s failed for %s (tx %s): %s",
            type(component).__name__,
            ctx.token.to_key(),
            ctx.transaction_id,
            e,
        )
        return ERROR_PLACEHOLDER
