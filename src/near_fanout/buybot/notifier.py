"""Composition of trade notifications from a subscription's settings."""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from near_fanout.alerter.formatter import escape_markdownv2
from near_fanout.alerter.models import Media, OutgoingNotification
from near_fanout.buybot.components import TradeContext, render_component
from near_fanout.buybot.models import Attachment, AttachmentCurrency, Polarity, SubscribedToken
from near_fanout.oracle.prices import PriceOracle

_HEADLINES: dict[Polarity, str] = {
    Polarity.BUY: "{symbol} Buy!",
    Polarity.SELL: "{symbol} Sell!",
    Polarity.LP_ADD: "{symbol} Liquidity Added",
    Polarity.LP_REMOVE: "{symbol} Liquidity Removed",
}


def select_attachment(attachments: Sequence[Attachment], magnitude: Decimal) -> Media | None:
    """Pick the last attachment whose threshold does not exceed ``magnitude``.

    Attachments must be sorted ascending by threshold.
    """
    selected: Media | None = None
    for attachment in attachments:
        if attachment.threshold > magnitude:
            break
        selected = attachment.media
    return selected


def attachment_magnitude(config: SubscribedToken, ctx: TradeContext) -> Decimal:
    """Event size in the subscription's attachment currency.

    An unknown USD value counts as zero, so only zero-threshold media apply.
    """
    if config.attachment_currency == AttachmentCurrency.TOKEN:
        return Decimal(abs(ctx.amount))
    return ctx.usd_value or Decimal(0)


def _headline(ctx: TradeContext, symbol: str) -> str:
    return f"*{escape_markdownv2(_HEADLINES[ctx.polarity].format(symbol=symbol))}*"


async def render_trade_notification(
    destination: int,
    config: SubscribedToken,
    ctx: TradeContext,
    oracle: PriceOracle,
    *,
    symbol: str,
) -> OutgoingNotification:
    """Build the message for one matched destination.

    Args:
        destination: Chat to deliver to.
        config: The destination's settings for the matched token.
        ctx: Details of the matched balance change.
        oracle: Used by components that need supply data.
        symbol: Display name of the token in the headline.
    """
    lines = [_headline(ctx, symbol), ""]
    for component in config.components:
        rendered = await render_component(component, ctx, oracle)
        if rendered:
            lines.append(rendered)

    if config.links:
        lines.append("")
        lines.append(
            " \\| ".join(f"[{escape_markdownv2(link.text)}]({link.url})" for link in config.links)
        )

    return OutgoingNotification(
        destination=destination,
        text="\n".join(lines),
        buttons=config.buttons,
        media=select_attachment(config.attachments, attachment_magnitude(config, ctx)),
        context={"token": ctx.token.to_key(), "tx": ctx.transaction_id},
    )


def render_launch_notification(destination: int, auction_id: int, token_account_id: str) -> OutgoingNotification:
    """Tell a subscriber that a pre-launch token it follows went live."""
    text = (
        f"*{escape_markdownv2(f'Pre-launch #{auction_id} has launched!')}*\n\n"
        f"{escape_markdownv2('Your notification settings now follow')} `{escape_markdownv2(token_account_id)}`"
    )
    return OutgoingNotification(
        destination=destination,
        text=text,
        context={"token": token_account_id, "auction": str(auction_id)},
    )
