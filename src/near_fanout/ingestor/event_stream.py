"""Indexer event stream WebSocket client.

Each handler follows one event type (``trade_swap``, ``log_text``, ...) on
one network. Messages are JSON arrays of event objects which are handed to
an async callback one by one.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 30  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 30  # seconds
DEFAULT_INITIAL_RECONNECT_DELAY = 1  # seconds
DEFAULT_STALE_EVENT_WARNING = 60  # seconds

# Empty conjunction: receive every event of the stream.
SUBSCRIBE_ALL_FILTER = {"And": []}


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class StreamStats:
    messages_received: int = 0
    events_received: int = 0
    stale_events: int = 0
    callback_errors: int = 0
    reconnect_count: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class EventStreamError(Exception):
    """Base exception for event stream errors."""


class EventStreamConnectionError(EventStreamError):
    """Raised when connection to WebSocket fails."""


EventCallback = Callable[[dict[str, Any]], Awaitable[None]]
StateCallback = Callable[[ConnectionState], Awaitable[None]]


def build_stream_url(base_url: str, event_id: str, *, testnet: bool = False) -> str:
    """Build the stream URL for an event type on a network."""
    network = "events-testnet" if testnet else "events"
    return f"{base_url.rstrip('/')}/{network}/{event_id}"


class EventStreamHandler:
    """WebSocket client for a single indexer event stream.

    Reconnects with exponential backoff whenever the connection drops, and
    logs a warning for events whose block timestamp lags wall-clock time by
    more than ``stale_event_warning`` seconds.

    Example:
        ```python
        async def on_event(event: dict) -> None:
            print(event["transaction_id"])

        handler = EventStreamHandler(
            base_url="wss://ws-events-v3.intear.tech",
            event_id="trade_swap",
            on_event=on_event,
        )
        await handler.start()
        ```
    """

    def __init__(
        self,
        *,
        base_url: str,
        event_id: str,
        on_event: EventCallback,
        testnet: bool = False,
        on_state_change: StateCallback | None = None,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        max_reconnect_delay: int = DEFAULT_MAX_RECONNECT_DELAY,
        initial_reconnect_delay: int = DEFAULT_INITIAL_RECONNECT_DELAY,
        stale_event_warning: int = DEFAULT_STALE_EVENT_WARNING,
    ) -> None:
        self._url = build_stream_url(base_url, event_id, testnet=testnet)
        self._event_id = event_id
        self._testnet = testnet
        self._on_event = on_event
        self._on_state_change = on_state_change
        self._ping_interval = ping_interval
        self._max_reconnect_delay = max_reconnect_delay
        self._initial_reconnect_delay = initial_reconnect_delay
        self._stale_event_warning = stale_event_warning

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()

        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Event stream %s state: %s -> %s", self._url, old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def _connect(self) -> ClientConnection:
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await websockets.connect(
                self._url,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
            )
        except Exception as e:
            self._stats.last_error = str(e)
            raise EventStreamConnectionError(f"Failed to connect to {self._url}: {e}") from e

        await ws.send(json.dumps(SUBSCRIBE_ALL_FILTER))

        await self._set_state(ConnectionState.CONNECTED)
        self._stats.connected_since = time.time()
        logger.info("Connected to event stream: %s", self._url)
        return ws

    def _check_staleness(self, event: dict[str, Any]) -> None:
        raw = event.get("block_timestamp_nanosec")
        if raw is None:
            return
        try:
            age = time.time() - int(str(raw)) / 1_000_000_000
        except ValueError:
            return
        if age > self._stale_event_warning:
            self._stats.stale_events += 1
            logger.warning(
                "Event %s on %s is %.1fs old, stream is lagging",
                event.get("transaction_id"),
                self._event_id,
                age,
            )

    async def _handle_message(self, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON message on event stream %s", self._url)
            return

        if not isinstance(data, list):
            logger.debug("Ignoring non-array message on %s", self._url)
            return

        self._stats.messages_received += 1
        self._stats.last_message_time = time.time()

        for event in data:
            if not isinstance(event, dict):
                continue
            self._stats.events_received += 1
            self._check_staleness(event)
            try:
                await self._on_event(event)
            except Exception as e:
                self._stats.callback_errors += 1
                logger.error("Error handling %s event: %s", self._event_id, e, exc_info=True)

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                except TimeoutError:
                    continue

                if isinstance(message, str):
                    await self._handle_message(message)
                else:
                    logger.debug("Ignoring binary message on %s", self._url)
        except websockets.ConnectionClosed as e:
            logger.warning("Event stream %s connection closed: %s", self._url, e)
            raise

    async def start(self) -> None:
        """Connect and process events until ``stop()`` is called.

        Raises:
            RuntimeError: If the handler is already running.
        """
        if self._running:
            raise RuntimeError("Event stream already running")
        self._running = True
        self._stop_event = asyncio.Event()

        delay = self._initial_reconnect_delay
        while self._running and self._stop_event and not self._stop_event.is_set():
            try:
                self._ws = await self._connect()
                delay = self._initial_reconnect_delay
                await self._listen(self._ws)
            except Exception as e:
                if not self._running:
                    break
                self._stats.reconnect_count += 1
                self._stats.last_error = str(e)
                logger.warning("Reconnecting to event stream %s in %ss", self._url, delay)
                await self._set_state(ConnectionState.RECONNECTING)
                await asyncio.sleep(delay)
                delay = min(self._max_reconnect_delay, delay * 2)
            finally:
                with contextlib.suppress(Exception):
                    if self._ws:
                        await self._ws.close()
                self._ws = None

        await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
