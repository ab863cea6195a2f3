"""Tests for the indexer event stream handler."""

import json
import time
from unittest.mock import AsyncMock, patch

import pytest

from near_fanout.ingestor.event_stream import (
    SUBSCRIBE_ALL_FILTER,
    ConnectionState,
    EventStreamConnectionError,
    EventStreamHandler,
    build_stream_url,
)


@pytest.fixture
def received() -> list:
    return []


@pytest.fixture
def handler(received: list) -> EventStreamHandler:
    async def on_event(event: dict) -> None:
        received.append(event)

    return EventStreamHandler(
        base_url="wss://ws-events-v3.intear.tech",
        event_id="trade_swap",
        on_event=on_event,
        stale_event_warning=60,
    )


class TestBuildStreamUrl:
    def test_mainnet(self) -> None:
        assert build_stream_url("wss://host/", "log_text") == "wss://host/events/log_text"

    def test_testnet(self) -> None:
        assert build_stream_url("wss://host", "log_text", testnet=True) == "wss://host/events-testnet/log_text"


class TestHandleMessage:
    """Tests for message parsing and callback dispatch."""

    @pytest.mark.asyncio
    async def test_array_of_events(self, handler: EventStreamHandler, received: list) -> None:
        now_ns = int(time.time() * 1_000_000_000)
        events = [
            {"transaction_id": "a", "block_timestamp_nanosec": str(now_ns)},
            {"transaction_id": "b", "block_timestamp_nanosec": str(now_ns)},
        ]

        await handler._handle_message(json.dumps(events))

        assert [e["transaction_id"] for e in received] == ["a", "b"]
        assert handler.stats.messages_received == 1
        assert handler.stats.events_received == 2
        assert handler.stats.stale_events == 0

    @pytest.mark.asyncio
    async def test_invalid_json_is_ignored(self, handler: EventStreamHandler, received: list) -> None:
        await handler._handle_message("{not json")
        assert received == []
        assert handler.stats.messages_received == 0

    @pytest.mark.asyncio
    async def test_non_array_is_ignored(self, handler: EventStreamHandler, received: list) -> None:
        await handler._handle_message(json.dumps({"transaction_id": "a"}))
        assert received == []

    @pytest.mark.asyncio
    async def test_stale_event_is_counted_and_delivered(self, handler: EventStreamHandler, received: list) -> None:
        old_ns = int((time.time() - 600) * 1_000_000_000)

        await handler._handle_message(json.dumps([{"transaction_id": "old", "block_timestamp_nanosec": old_ns}]))

        assert handler.stats.stale_events == 1
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_batch(self) -> None:
        seen: list[str] = []

        async def on_event(event: dict) -> None:
            if event["transaction_id"] == "bad":
                raise RuntimeError("boom")
            seen.append(event["transaction_id"])

        handler = EventStreamHandler(base_url="wss://host", event_id="log_text", on_event=on_event)

        await handler._handle_message(json.dumps([{"transaction_id": "bad"}, {"transaction_id": "good"}]))

        assert seen == ["good"]
        assert handler.stats.callback_errors == 1


class TestConnect:
    """Tests for connection setup."""

    @pytest.mark.asyncio
    async def test_sends_empty_filter(self, handler: EventStreamHandler) -> None:
        ws = AsyncMock()
        with patch("near_fanout.ingestor.event_stream.websockets.connect", new=AsyncMock(return_value=ws)):
            result = await handler._connect()

        assert result is ws
        ws.send.assert_awaited_once_with(json.dumps(SUBSCRIBE_ALL_FILTER))
        assert handler.state == ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_connect_failure_raises(self, handler: EventStreamHandler) -> None:
        with patch(
            "near_fanout.ingestor.event_stream.websockets.connect",
            new=AsyncMock(side_effect=OSError("refused")),
        ):
            with pytest.raises(EventStreamConnectionError, match="refused"):
                await handler._connect()

        assert handler.stats.last_error == "refused"

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, handler: EventStreamHandler) -> None:
        handler._running = True
        with pytest.raises(RuntimeError, match="already running"):
            await handler.start()
