"""Data models for the ingestor module."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

WRAP_NEAR = "wrap.near"
NATIVE_NEAR = "near"
PRELAUNCH_CONTRACT_ID = "meme-cooking.near"
PRELAUNCH_EVENT_STANDARD = "meme-cooking"


def normalize_token_id(account_id: str) -> str:
    """Rewrite the wrapped native token id to the canonical native id."""
    return NATIVE_NEAR if account_id == WRAP_NEAR else account_id


@dataclass(frozen=True)
class FungibleToken:
    """A launched fungible token, identified by its contract account."""

    account_id: str

    def to_key(self) -> str:
        return self.account_id


@dataclass(frozen=True)
class PrelaunchToken:
    """A token still in its pre-launch auction, identified by auction id."""

    auction_id: int

    def to_key(self) -> str:
        return f"{PRELAUNCH_CONTRACT_ID}:{self.auction_id}"


Token = FungibleToken | PrelaunchToken


def parse_token(key: str) -> Token:
    """Parse a serialized token key.

    Args:
        key: Either a contract account id or ``meme-cooking.near:<id>``.

    Returns:
        The corresponding token variant.

    Raises:
        ValueError: If the key is empty or the auction id is not numeric.
    """
    if not key:
        raise ValueError("Token key must not be empty")
    prefix = f"{PRELAUNCH_CONTRACT_ID}:"
    if key.startswith(prefix):
        return PrelaunchToken(auction_id=int(key[len(prefix) :]))
    return FungibleToken(account_id=key)


def _nanos_to_datetime(nanos: int) -> datetime:
    return datetime.fromtimestamp(nanos / 1_000_000_000, tz=UTC)


@dataclass(frozen=True)
class TradeSwapEvent:
    """A swap observed on chain, with signed per-token balance deltas.

    Positive deltas are tokens the trader received (bought), negative
    deltas are tokens the trader gave away (sold).
    """

    trader: str
    balance_changes: dict[str, int]
    block_height: int
    block_timestamp_nanosec: int
    transaction_id: str
    referrer: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TradeSwapEvent:
        """Create a TradeSwapEvent from an indexer payload."""
        changes: dict[str, int] = {}
        for account_id, amount in data.get("balance_changes", {}).items():
            token_id = normalize_token_id(str(account_id))
            changes[token_id] = changes.get(token_id, 0) + int(str(amount))
        return cls(
            trader=str(data["trader"]),
            balance_changes=changes,
            block_height=int(data["block_height"]),
            block_timestamp_nanosec=int(str(data["block_timestamp_nanosec"])),
            transaction_id=str(data["transaction_id"]),
            referrer=data.get("referrer"),
        )

    @property
    def timestamp(self) -> datetime:
        return _nanos_to_datetime(self.block_timestamp_nanosec)


@dataclass(frozen=True)
class LiquidityPoolEvent:
    """Liquidity added to or removed from a two-token pool."""

    provider_account_id: str
    pool_id: str
    tokens: tuple[tuple[str, int], tuple[str, int]]
    block_height: int
    block_timestamp_nanosec: int
    transaction_id: str

    def __post_init__(self) -> None:
        if len(self.tokens) != 2:
            raise ValueError(f"Liquidity event must carry exactly two tokens, got {len(self.tokens)}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LiquidityPoolEvent:
        """Create a LiquidityPoolEvent from an indexer payload.

        Raises:
            ValueError: If the payload does not contain exactly two tokens.
        """
        raw_tokens = data.get("tokens", {})
        pairs = tuple(
            (normalize_token_id(str(account_id)), int(str(amount)))
            for account_id, amount in raw_tokens.items()
        )
        if len(pairs) != 2:
            raise ValueError(f"Liquidity event must carry exactly two tokens, got {len(pairs)}")
        return cls(
            provider_account_id=str(data["provider_account_id"]),
            pool_id=str(data["pool_id"]),
            tokens=(pairs[0], pairs[1]),
            block_height=int(data["block_height"]),
            block_timestamp_nanosec=int(str(data["block_timestamp_nanosec"])),
            transaction_id=str(data["transaction_id"]),
        )

    @property
    def timestamp(self) -> datetime:
        return _nanos_to_datetime(self.block_timestamp_nanosec)


@dataclass(frozen=True)
class PrelaunchDepositEvent:
    """A deposit (buy) into a pre-launch auction, denominated in NEAR."""

    auction_id: int
    trader: str
    amount: int
    transaction_id: str
    block_timestamp_nanosec: int
    referrer: str | None = None


@dataclass(frozen=True)
class PrelaunchWithdrawEvent:
    """A withdrawal (sell) from a pre-launch auction, denominated in NEAR."""

    auction_id: int
    trader: str
    amount: int
    transaction_id: str
    block_timestamp_nanosec: int


@dataclass(frozen=True)
class PrelaunchFinalizeEvent:
    """A pre-launch auction that produced its fungible token contract."""

    auction_id: int
    token_account_id: str
    transaction_id: str
    block_timestamp_nanosec: int


PrelaunchEvent = PrelaunchDepositEvent | PrelaunchWithdrawEvent | PrelaunchFinalizeEvent


def parse_prelaunch_event(data: dict[str, Any]) -> PrelaunchEvent | None:
    """Convert a NEP-297 log payload into a pre-launch event.

    Only logs emitted by the auction contract are converted; ``finalize``
    logs carry no token account and are ignored in favour of the
    ``create_token`` log that follows them.

    Returns:
        The parsed event, or None if the log is not a relevant auction event.
    """
    if data.get("account_id") != PRELAUNCH_CONTRACT_ID:
        return None
    if data.get("event_standard") != PRELAUNCH_EVENT_STANDARD:
        return None

    kind = data.get("event_event")
    payload = data.get("event_data") or {}
    transaction_id = str(data.get("transaction_id", ""))
    timestamp = int(str(data.get("block_timestamp_nanosec", 0)))

    if kind == "deposit":
        return PrelaunchDepositEvent(
            auction_id=int(payload["meme_id"]),
            trader=str(payload["account_id"]),
            amount=int(str(payload["amount"])),
            transaction_id=transaction_id,
            block_timestamp_nanosec=timestamp,
            referrer=payload.get("referrer"),
        )
    if kind == "withdraw":
        return PrelaunchWithdrawEvent(
            auction_id=int(payload["meme_id"]),
            trader=str(payload["account_id"]),
            amount=int(str(payload["amount"])),
            transaction_id=transaction_id,
            block_timestamp_nanosec=timestamp,
        )
    if kind == "create_token":
        return PrelaunchFinalizeEvent(
            auction_id=int(payload["meme_id"]),
            token_account_id=str(payload["token_id"]),
            transaction_id=transaction_id,
            block_timestamp_nanosec=timestamp,
        )
    return None


@dataclass(frozen=True)
class LogTextEvent:
    """A plain-text log line emitted by a contract receipt."""

    account_id: str
    predecessor_id: str
    log_text: str
    transaction_id: str
    block_height: int
    block_timestamp_nanosec: int
    is_testnet: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, is_testnet: bool = False) -> LogTextEvent:
        """Create a LogTextEvent from an indexer payload."""
        return cls(
            account_id=str(data["account_id"]),
            predecessor_id=str(data["predecessor_id"]),
            log_text=str(data["log_text"]),
            transaction_id=str(data["transaction_id"]),
            block_height=int(data["block_height"]),
            block_timestamp_nanosec=int(str(data["block_timestamp_nanosec"])),
            is_testnet=is_testnet,
        )

    @property
    def timestamp(self) -> datetime:
        return _nanos_to_datetime(self.block_timestamp_nanosec)



@dataclass(frozen=True)
class LogNep297Event:
    """A structured ``EVENT_JSON:`` log (NEP-297) emitted by a contract receipt."""

    account_id: str
    predecessor_id: str
    event_standard: str
    event_version: str
    event_event: str
    event_data: Any
    transaction_id: str
    block_height: int
    block_timestamp_nanosec: int
    is_testnet: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, is_testnet: bool = False) -> LogNep297Event:
        """Create a LogNep297Event from an indexer payload."""
        return cls(
            account_id=str(data["account_id"]),
            predecessor_id=str(data["predecessor_id"]),
            event_standard=str(data["event_standard"]),
            event_version=str(data["event_version"]),
            event_event=str(data["event_event"]),
            event_data=data.get("event_data"),
            transaction_id=str(data["transaction_id"]),
            block_height=int(data["block_height"]),
            block_timestamp_nanosec=int(str(data["block_timestamp_nanosec"])),
            is_testnet=is_testnet,
        )

    @property
    def timestamp(self) -> datetime:
        return _nanos_to_datetime(self.block_timestamp_nanosec)
