"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from near_fanout.alerter.dispatcher import NotificationDispatcher
from near_fanout.alerter.models import OutgoingNotification
from near_fanout.alerter.telegram import TransportError
from near_fanout.oracle.prices import OracleError, TokenMetadata
from near_fanout.storage.database import DatabaseManager

BOT_ID = 123456


class RecordingTransport:
    """Chat transport that keeps every notification it is asked to send."""

    def __init__(self, fail_for: set[int] | None = None) -> None:
        self.sent: list[OutgoingNotification] = []
        self.fail_for = fail_for or set()

    async def send(self, notification: OutgoingNotification) -> None:
        if notification.destination in self.fail_for:
            raise TransportError("chat not found")
        self.sent.append(notification)

    def destinations(self) -> list[int]:
        return sorted(n.destination for n in self.sent)


def make_oracle(
    prices: dict[str, Decimal] | None = None,
    metadata: dict[str, TokenMetadata] | None = None,
    total_supply: int = 1_000_000,
) -> MagicMock:
    """Price oracle stub backed by plain dicts."""
    prices = prices or {}
    metadata = metadata or {}

    async def get_metadata(token_id: str) -> TokenMetadata:
        if token_id not in metadata:
            raise OracleError(f"No metadata for {token_id}")
        return metadata[token_id]

    async def get_decimals(token_id: str) -> int | None:
        meta = metadata.get(token_id)
        return meta.decimals if meta else None

    oracle = MagicMock()
    oracle.get_price = MagicMock(side_effect=lambda token_id: prices.get(token_id))
    oracle.get_metadata = AsyncMock(side_effect=get_metadata)
    oracle.get_decimals = AsyncMock(side_effect=get_decimals)
    oracle.get_total_supply = AsyncMock(return_value=total_supply)
    return oracle


@pytest.fixture
async def db(tmp_path) -> AsyncIterator[DatabaseManager]:
    """File-backed SQLite database with the schema created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'near_fanout.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def bot_id() -> int:
    return BOT_ID


@pytest.fixture
def oracle_factory():
    """Build a price oracle stub: ``oracle_factory(prices, metadata)``."""
    return make_oracle


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def failing_transport_factory():
    """Build a transport that rejects the given destinations."""
    return lambda fail_for: RecordingTransport(fail_for=set(fail_for))


@pytest.fixture
def dispatcher(transport: RecordingTransport) -> NotificationDispatcher:
    return NotificationDispatcher(bot_id=BOT_ID, transport=transport, limit_notice_delay=0)


@pytest.fixture
def mock_redis() -> MagicMock:
    """Redis client stub with async commands."""
    redis = MagicMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.incr = AsyncMock(return_value=1)
    redis.expire = AsyncMock(return_value=True)
    redis.aclose = AsyncMock()
    return redis
