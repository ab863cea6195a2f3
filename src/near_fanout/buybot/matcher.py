"""Event matching for trade notifications.

For every balance change in an event the matcher looks up candidate
destinations in the reverse index, re-reads each candidate's record,
applies the polarity and minimum-amount gates, and hands passing
destinations to the dispatcher without waiting for delivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import assert_never

from near_fanout.alerter.dispatcher import NotificationDispatcher
from near_fanout.alerter.models import OutgoingNotification
from near_fanout.buybot.components import TradeContext
from near_fanout.buybot.index import ReverseIndex
from near_fanout.buybot.models import (
    BuybotSubscriber,
    MinAmount,
    Polarity,
    SubscribedToken,
    TokenAmount,
    UsdAmount,
)
from near_fanout.buybot.notifier import render_trade_notification
from near_fanout.ingestor.models import (
    NATIVE_NEAR,
    FungibleToken,
    LiquidityPoolEvent,
    PrelaunchDepositEvent,
    PrelaunchToken,
    PrelaunchWithdrawEvent,
    Token,
    TradeSwapEvent,
)
from near_fanout.oracle.prices import OracleError, PriceOracle, TokenMetadata
from near_fanout.storage.repos import SubscriberStore, SubscriberStoreError

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    TRADE = "trade"
    LIQUIDITY = "liquidity"
    PRELAUNCH = "prelaunch"


def polarity_for(kind: ChangeKind, amount: int) -> Polarity | None:
    """Map a signed change to its polarity; zero has none."""
    if amount == 0:
        return None
    match kind:
        case ChangeKind.TRADE | ChangeKind.PRELAUNCH:
            return Polarity.BUY if amount > 0 else Polarity.SELL
        case ChangeKind.LIQUIDITY:
            return Polarity.LP_ADD if amount > 0 else Polarity.LP_REMOVE
        case _ as unreachable:
            assert_never(unreachable)


def wants_polarity(config: SubscribedToken, polarity: Polarity) -> bool:
    match polarity:
        case Polarity.BUY:
            return config.buys
        case Polarity.SELL:
            return config.sells
        case Polarity.LP_ADD:
            return config.lp_add
        case Polarity.LP_REMOVE:
            return config.lp_remove
        case _ as unreachable:
            assert_never(unreachable)


def usd_value(amount: int, price: Decimal | None, decimals: int | None) -> Decimal | None:
    """USD value of a raw amount, or None when price or decimals are unknown."""
    if price is None or decimals is None:
        return None
    return Decimal(abs(amount)) / (Decimal(10) ** decimals) * price


def passes_min_amount(
    min_amount: MinAmount,
    amount: int,
    price: Decimal | None,
    decimals: int | None,
) -> bool:
    """Minimum-amount gate; accepts values at or above the threshold.

    A USD threshold that cannot be evaluated (unknown price or decimals)
    never suppresses a match.
    """
    match min_amount:
        case TokenAmount(raw=raw):
            return abs(amount) >= raw
        case UsdAmount(usd=usd):
            value = usd_value(amount, price, decimals)
            return value is None or value >= usd
        case _ as unreachable:
            assert_never(unreachable)


@dataclass(frozen=True)
class BalanceChange:
    """One token's signed change within an event.

    ``value_token_id`` names the asset ``amount`` is denominated in, used
    for pricing: the token's own contract, or NEAR for pre-launch events.
    """

    token: Token
    value_token_id: str
    amount: int
    kind: ChangeKind
    trader: str
    transaction_id: str
    # Other legs of a multi-token swap, by token id.
    swap_legs: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class TrendingRoutes:
    """Aggregate channels that show the other leg of a swap.

    The trending chat shows what was bought, the dumpers chat shows what
    was sold; tokens in ``excluded`` (base assets, stablecoins) are never
    shown there.
    """

    trending_chat_id: int | None = None
    dumpers_chat_id: int | None = None
    excluded: frozenset[str] = frozenset()

    def is_special(self, destination: int) -> bool:
        return destination in (self.trending_chat_id, self.dumpers_chat_id)

    def pick_leg(self, destination: int, swap_legs: dict[str, int]) -> tuple[str, int] | None:
        """Leg to present to an aggregate channel, or None to skip it.

        Picks the largest-magnitude leg with the channel's sign that is
        not excluded.
        """
        want_positive = destination == self.trending_chat_id
        legs = [
            (token_id, amount)
            for token_id, amount in swap_legs.items()
            if token_id not in self.excluded and amount != 0 and (amount > 0) == want_positive
        ]
        if not legs:
            return None
        return max(legs, key=lambda leg: abs(leg[1]))


@dataclass
class MatcherStats:
    changes_seen: int = 0
    candidates: int = 0
    dispatched: int = 0
    skipped_disabled: int = 0
    skipped_vanished: int = 0
    skipped_polarity: int = 0
    skipped_min_amount: int = 0
    store_errors: int = 0


class BuybotMatcher:
    """Matches balance changes against one bot's subscriptions.

    Args:
        bot_id: Owning bot, for log context.
        store: Authoritative subscriber records.
        index: Candidate pre-filter over ``store``.
        dispatcher: Delivery task spawner.
        oracle: Price and metadata source.
        trending: Optional aggregate channel routing.
    """

    def __init__(
        self,
        *,
        bot_id: int,
        store: SubscriberStore[BuybotSubscriber],
        index: ReverseIndex[BuybotSubscriber],
        dispatcher: NotificationDispatcher,
        oracle: PriceOracle,
        trending: TrendingRoutes | None = None,
    ) -> None:
        self.bot_id = bot_id
        self._store = store
        self._index = index
        self._dispatcher = dispatcher
        self._oracle = oracle
        self._trending = trending or TrendingRoutes()
        self._stats = MatcherStats()

    @property
    def stats(self) -> MatcherStats:
        return self._stats

    async def handle_trade_swap(self, event: TradeSwapEvent) -> int:
        """Match every token of a swap. Returns the number of dispatches."""
        dispatched = 0
        for token_id, amount in event.balance_changes.items():
            change = BalanceChange(
                token=FungibleToken(token_id),
                value_token_id=token_id,
                amount=amount,
                kind=ChangeKind.TRADE,
                trader=event.trader,
                transaction_id=event.transaction_id,
                swap_legs=event.balance_changes,
            )
            dispatched += await self.match_change(change)
        return dispatched

    async def handle_liquidity(self, event: LiquidityPoolEvent) -> int:
        dispatched = 0
        for token_id, amount in event.tokens:
            change = BalanceChange(
                token=FungibleToken(token_id),
                value_token_id=token_id,
                amount=amount,
                kind=ChangeKind.LIQUIDITY,
                trader=event.provider_account_id,
                transaction_id=event.transaction_id,
            )
            dispatched += await self.match_change(change)
        return dispatched

    async def handle_prelaunch(self, event: PrelaunchDepositEvent | PrelaunchWithdrawEvent) -> int:
        amount = event.amount if isinstance(event, PrelaunchDepositEvent) else -event.amount
        change = BalanceChange(
            token=PrelaunchToken(event.auction_id),
            value_token_id=NATIVE_NEAR,
            amount=amount,
            kind=ChangeKind.PRELAUNCH,
            trader=event.trader,
            transaction_id=event.transaction_id,
        )
        return await self.match_change(change)

    async def _decimals(self, token_id: str) -> int | None:
        return await self._oracle.get_decimals(token_id)

    async def match_change(self, change: BalanceChange) -> int:
        """Run the full matching pipeline for one balance change."""
        polarity = polarity_for(change.kind, change.amount)
        if polarity is None:
            return 0
        self._stats.changes_seen += 1

        candidates = await self._index.lookup(change.token)
        if not candidates:
            return 0
        self._stats.candidates += len(candidates)

        price = self._oracle.get_price(change.value_token_id)
        decimals: int | None = None
        decimals_loaded = False

        dispatched = 0
        for destination in candidates:
            try:
                record = await self._store.get(destination)
            except SubscriberStoreError as e:
                self._stats.store_errors += 1
                logger.warning("Bot %s: skipping chat %s, store read failed: %s", self.bot_id, destination, e)
                continue

            if record is None:
                self._stats.skipped_vanished += 1
                continue
            if not record.enabled:
                self._stats.skipped_disabled += 1
                continue
            config = record.tokens.get(change.token)
            if config is None:
                self._stats.skipped_vanished += 1
                continue

            if not wants_polarity(config, polarity):
                self._stats.skipped_polarity += 1
                continue

            if isinstance(config.min_amount, UsdAmount) and not decimals_loaded:
                decimals = await self._decimals(change.value_token_id)
                decimals_loaded = True
            if not passes_min_amount(config.min_amount, change.amount, price, decimals):
                self._stats.skipped_min_amount += 1
                continue

            if self._spawn(destination, config, change, polarity):
                dispatched += 1

        self._stats.dispatched += dispatched
        return dispatched

    def _spawn(self, destination: int, config: SubscribedToken, change: BalanceChange, polarity: Polarity) -> bool:
        token: Token = change.token
        value_token_id = change.value_token_id
        amount = change.amount

        if self._trending.is_special(destination) and change.swap_legs:
            leg = self._trending.pick_leg(destination, change.swap_legs)
            if leg is None:
                return False
            value_token_id, amount = leg
            token = FungibleToken(value_token_id)
            polarity = Polarity.BUY if amount > 0 else Polarity.SELL

        async def build() -> OutgoingNotification:
            metadata = await self._metadata(value_token_id)
            ctx = TradeContext(
                token=token,
                value_token_id=value_token_id,
                amount=amount,
                polarity=polarity,
                trader=change.trader,
                transaction_id=change.transaction_id,
                metadata=metadata,
                price=self._oracle.get_price(value_token_id),
            )
            return await render_trade_notification(
                destination,
                config,
                ctx,
                self._oracle,
                symbol=_display_symbol(token, metadata),
            )

        self._dispatcher.spawn(
            destination,
            build,
            context=f"{token.to_key()} tx {change.transaction_id}",
        )
        return True

    async def _metadata(self, token_id: str) -> TokenMetadata | None:
        try:
            return await self._oracle.get_metadata(token_id)
        except OracleError as e:
            logger.debug("Metadata unavailable for %s: %s", token_id, e)
            return None


def _display_symbol(token: Token, metadata: TokenMetadata | None) -> str:
    match token:
        case PrelaunchToken(auction_id=auction_id):
            return f"Pre-launch #{auction_id}"
        case FungibleToken(account_id=account_id):
            return metadata.symbol if metadata is not None else account_id
        case _ as unreachable:
            assert_never(unreachable)
