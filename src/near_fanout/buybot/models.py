"""Subscriber records for trade notifications.

Records are immutable; setters in ``BuybotService`` produce updated
copies which are written back through the subscriber store.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, assert_never

from near_fanout.alerter.models import Button, Media
from near_fanout.ingestor.models import Token, parse_token


@dataclass(frozen=True)
class TokenAmount:
    """Threshold in raw token units."""

    raw: int


@dataclass(frozen=True)
class UsdAmount:
    """Threshold in US dollars."""

    usd: Decimal


MinAmount = TokenAmount | UsdAmount


def min_amount_to_dict(amount: MinAmount) -> dict[str, str]:
    match amount:
        case TokenAmount(raw=raw):
            return {"type": "token", "amount": str(raw)}
        case UsdAmount(usd=usd):
            return {"type": "usd", "amount": str(usd)}
        case _ as unreachable:
            assert_never(unreachable)


def min_amount_from_dict(data: dict[str, Any]) -> MinAmount:
    kind = data.get("type")
    if kind == "token":
        return TokenAmount(raw=int(data["amount"]))
    if kind == "usd":
        return UsdAmount(usd=Decimal(str(data["amount"])))
    raise ValueError(f"Unknown min amount type: {kind!r}")


class Polarity(str, Enum):
    """Direction of a balance change, as configured per subscription."""

    BUY = "buy"
    SELL = "sell"
    LP_ADD = "lp_add"
    LP_REMOVE = "lp_remove"


class AttachmentCurrency(str, Enum):
    """Unit attachment thresholds are measured in."""

    TOKEN = "token"
    USD = "usd"


@dataclass(frozen=True)
class Attachment:
    """Media sent when the event magnitude reaches ``threshold``.

    Token thresholds are raw units, USD thresholds are dollars.
    """

    threshold: Decimal
    media: Media

    def to_dict(self) -> dict[str, Any]:
        return {"threshold": str(self.threshold), "media": self.media.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        return cls(threshold=Decimal(str(data["threshold"])), media=Media.from_dict(data["media"]))


@dataclass(frozen=True)
class EmojiComponent:
    """A row of emojis, one per ``usd_per_emoji`` of value."""

    emoji: str = "🟢"
    usd_per_emoji: Decimal = Decimal("10")
    max_emojis: int = 50


@dataclass(frozen=True)
class TradeAmountComponent:
    pass


@dataclass(frozen=True)
class TraderComponent:
    pass


@dataclass(frozen=True)
class PriceComponent:
    pass


@dataclass(frozen=True)
class MarketCapComponent:
    pass


@dataclass(frozen=True)
class ContractAddressComponent:
    pass


@dataclass(frozen=True)
class WhaleAlertComponent:
    """Shown only when the trade is worth at least ``threshold_usd``."""

    threshold_usd: Decimal = Decimal("1000")


@dataclass(frozen=True)
class TxLinkComponent:
    pass


Component = (
    EmojiComponent
    | TradeAmountComponent
    | TraderComponent
    | PriceComponent
    | MarketCapComponent
    | ContractAddressComponent
    | WhaleAlertComponent
    | TxLinkComponent
)

_SIMPLE_COMPONENTS: dict[str, type] = {
    "trade_amount": TradeAmountComponent,
    "trader": TraderComponent,
    "price": PriceComponent,
    "market_cap": MarketCapComponent,
    "contract_address": ContractAddressComponent,
    "tx_link": TxLinkComponent,
}


def component_to_dict(component: Component) -> dict[str, Any]:
    match component:
        case EmojiComponent(emoji=emoji, usd_per_emoji=usd_per_emoji, max_emojis=max_emojis):
            return {
                "type": "emoji",
                "emoji": emoji,
                "usd_per_emoji": str(usd_per_emoji),
                "max_emojis": max_emojis,
            }
        case WhaleAlertComponent(threshold_usd=threshold_usd):
            return {"type": "whale_alert", "threshold_usd": str(threshold_usd)}
        case TradeAmountComponent():
            return {"type": "trade_amount"}
        case TraderComponent():
            return {"type": "trader"}
        case PriceComponent():
            return {"type": "price"}
        case MarketCapComponent():
            return {"type": "market_cap"}
        case ContractAddressComponent():
            return {"type": "contract_address"}
        case TxLinkComponent():
            return {"type": "tx_link"}
        case _ as unreachable:
            assert_never(unreachable)


def component_from_dict(data: dict[str, Any]) -> Component:
    kind = data.get("type")
    if kind == "emoji":
        return EmojiComponent(
            emoji=str(data["emoji"]),
            usd_per_emoji=Decimal(str(data["usd_per_emoji"])),
            max_emojis=int(data["max_emojis"]),
        )
    if kind == "whale_alert":
        return WhaleAlertComponent(threshold_usd=Decimal(str(data["threshold_usd"])))
    if kind in _SIMPLE_COMPONENTS:
        component: Component = _SIMPLE_COMPONENTS[kind]()
        return component
    raise ValueError(f"Unknown component type: {kind!r}")


DEFAULT_COMPONENTS: tuple[Component, ...] = (
    EmojiComponent(),
    TradeAmountComponent(),
    TraderComponent(),
    PriceComponent(),
    MarketCapComponent(),
    TxLinkComponent(),
)


@dataclass(frozen=True)
class SubscribedToken:
    """Filter and presentation settings for one followed token."""

    buys: bool = True
    sells: bool = False
    lp_add: bool = False
    lp_remove: bool = False
    min_amount: MinAmount = field(default_factory=lambda: UsdAmount(usd=Decimal("0")))
    attachments: tuple[Attachment, ...] = ()
    attachment_currency: AttachmentCurrency = AttachmentCurrency.USD
    components: tuple[Component, ...] = DEFAULT_COMPONENTS
    links: tuple[Button, ...] = ()
    buttons: tuple[tuple[Button, ...], ...] = ()

    def __post_init__(self) -> None:
        # Keep attachments ordered for fall-through selection.
        ordered = tuple(sorted(self.attachments, key=lambda a: a.threshold))
        if ordered != self.attachments:
            object.__setattr__(self, "attachments", ordered)

    def to_dict(self) -> dict[str, Any]:
        return {
            "buys": self.buys,
            "sells": self.sells,
            "lp_add": self.lp_add,
            "lp_remove": self.lp_remove,
            "min_amount": min_amount_to_dict(self.min_amount),
            "attachments": [a.to_dict() for a in self.attachments],
            "attachment_currency": self.attachment_currency.value,
            "components": [component_to_dict(c) for c in self.components],
            "links": [link.to_dict() for link in self.links],
            "buttons": [[b.to_dict() for b in row] for row in self.buttons],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubscribedToken:
        return cls(
            buys=bool(data.get("buys", True)),
            sells=bool(data.get("sells", False)),
            lp_add=bool(data.get("lp_add", False)),
            lp_remove=bool(data.get("lp_remove", False)),
            min_amount=min_amount_from_dict(data["min_amount"])
            if "min_amount" in data
            else UsdAmount(usd=Decimal("0")),
            attachments=tuple(Attachment.from_dict(a) for a in data.get("attachments", [])),
            attachment_currency=AttachmentCurrency(data.get("attachment_currency", "usd")),
            components=tuple(component_from_dict(c) for c in data["components"])
            if "components" in data
            else DEFAULT_COMPONENTS,
            links=tuple(Button.from_dict(link) for link in data.get("links", [])),
            buttons=tuple(
                tuple(Button.from_dict(b) for b in row) for row in data.get("buttons", [])
            ),
        )


@dataclass(frozen=True)
class BuybotSubscriber:
    """One destination's trade-notification configuration for one bot."""

    enabled: bool = True
    tokens: dict[Token, SubscribedToken] = field(default_factory=dict)

    def with_token(self, token: Token, config: SubscribedToken) -> BuybotSubscriber:
        tokens = dict(self.tokens)
        tokens[token] = config
        return replace(self, tokens=tokens)

    def without_token(self, token: Token) -> BuybotSubscriber:
        tokens = {t: c for t, c in self.tokens.items() if t != token}
        return replace(self, tokens=tokens)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "tokens": {token.to_key(): config.to_dict() for token, config in self.tokens.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuybotSubscriber:
        return cls(
            enabled=bool(data.get("enabled", True)),
            tokens={
                parse_token(key): SubscribedToken.from_dict(config)
                for key, config in data.get("tokens", {}).items()
            },
        )
