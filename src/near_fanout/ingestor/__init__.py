"""Data ingestion layer - Real-time NEAR indexer event streaming."""

from near_fanout.ingestor.event_stream import (
    ConnectionState,
    EventStreamConnectionError,
    EventStreamError,
    EventStreamHandler,
)
from near_fanout.ingestor.models import (
    FungibleToken,
    LiquidityPoolEvent,
    LogTextEvent,
    PrelaunchDepositEvent,
    PrelaunchFinalizeEvent,
    PrelaunchToken,
    PrelaunchWithdrawEvent,
    Token,
    TradeSwapEvent,
    normalize_token_id,
    parse_prelaunch_event,
    parse_token,
)

__all__ = [
    "ConnectionState",
    "EventStreamConnectionError",
    "EventStreamError",
    "EventStreamHandler",
    "FungibleToken",
    "LiquidityPoolEvent",
    "LogTextEvent",
    "PrelaunchDepositEvent",
    "PrelaunchFinalizeEvent",
    "PrelaunchToken",
    "PrelaunchWithdrawEvent",
    "Token",
    "TradeSwapEvent",
    "normalize_token_id",
    "parse_prelaunch_event",
    "parse_token",
]
