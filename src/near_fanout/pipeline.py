"""Main pipeline orchestrator for near-fanout.

This module provides the Pipeline class that wires together the event
streams, the price oracle, the per-bot registry and the notification
modules, and manages their lifecycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import aiohttp
from redis.asyncio import Redis

from near_fanout.buybot.matcher import TrendingRoutes
from near_fanout.buybot.module import BuybotModule
from near_fanout.config import Settings, get_settings
from near_fanout.contract_logs.nep297 import Nep297LogModule
from near_fanout.contract_logs.text import TextLogModule
from near_fanout.ingestor.event_stream import EventStreamHandler
from near_fanout.ingestor.models import (
    LiquidityPoolEvent,
    LogNep297Event,
    LogTextEvent,
    TradeSwapEvent,
    parse_prelaunch_event,
)
from near_fanout.oracle.prices import OracleError, PriceOracle
from near_fanout.oracle.rpc import NearRpcClient
from near_fanout.registry import BotRegistry
from near_fanout.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

TRADE_SWAP_EVENT = "trade_swap"
LIQUIDITY_POOL_EVENT = "liquidity_pool"
LOG_NEP297_EVENT = "log_nep297"
LOG_TEXT_EVENT = "log_text"


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    events_received: int = 0
    trade_swaps: int = 0
    liquidity_events: int = 0
    prelaunch_events: int = 0
    nep297_logs: int = 0
    text_logs: int = 0
    errors: int = 0
    last_event_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator.

    Pipeline flow:
        Event streams → Modules (buybot, NEP-297 logs, text logs) → per-bot index/match → Dispatcher

    Example:
        ```python
        from near_fanout.config import get_settings
        from near_fanout.pipeline import Pipeline

        async with Pipeline(get_settings()) as pipeline:
            ...
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, match and render but do not send. Overrides
                settings.dry_run.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._http: aiohttp.ClientSession | None = None
        self._rpc: NearRpcClient | None = None
        self._oracle: PriceOracle | None = None
        self._registry: BotRegistry | None = None
        self._buybot: BuybotModule | None = None
        self._nep297_logs: Nep297LogModule | None = None
        self._text_logs: TextLogModule | None = None
        self._streams: list[EventStreamHandler] = []

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._stream_tasks: list[asyncio.Task[None]] = []

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def buybot(self) -> BuybotModule | None:
        return self._buybot

    @property
    def nep297_logs(self) -> Nep297LogModule | None:
        return self._nep297_logs

    @property
    def text_logs(self) -> TextLogModule | None:
        return self._text_logs

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        logger.debug("Initializing Redis connection...")
        self._redis = Redis.from_url(settings.redis.url)

        logger.debug("Initializing database manager...")
        self._db_manager = DatabaseManager(settings.database.url)

        self._http = aiohttp.ClientSession()

        logger.debug("Initializing NEAR RPC client and price oracle...")
        self._rpc = NearRpcClient(
            settings.near.rpc_url,
            redis=self._redis,
            cache_ttl_seconds=settings.near.view_cache_ttl_seconds,
            session=self._http,
        )
        self._oracle = PriceOracle(
            settings.near.prices_url,
            rpc=self._rpc,
            refresh_interval_seconds=settings.near.prices_refresh_interval_seconds,
            session=self._http,
        )
        try:
            count = await self._oracle.refresh()
            logger.info("Loaded prices for %d tokens", count)
        except OracleError as e:
            logger.warning("Initial price load failed, continuing without prices: %s", e)

        self._registry = BotRegistry.from_settings(
            settings,
            redis=self._redis,
            dry_run=self._dry_run,
        )

        self._buybot = BuybotModule(
            self._db_manager,
            self._oracle,
            trending=TrendingRoutes(
                trending_chat_id=settings.trending.trending_chat_id,
                dumpers_chat_id=settings.trending.dumpers_chat_id,
                excluded=settings.trending.excluded(),
            ),
        )
        self._nep297_logs = Nep297LogModule(self._db_manager)
        self._text_logs = TextLogModule(self._db_manager)
        for bot in self._registry:
            await self._buybot.add_bot(bot)
            await self._nep297_logs.add_bot(bot)
            await self._text_logs.add_bot(bot)

        self._streams = self._build_streams()

    def _stream(
        self,
        event_id: str,
        on_event: Callable[[dict[str, Any]], Awaitable[None]],
        *,
        testnet: bool = False,
    ) -> EventStreamHandler:
        events = self._settings.events
        return EventStreamHandler(
            base_url=events.ws_url,
            event_id=event_id,
            on_event=on_event,
            testnet=testnet,
            max_reconnect_delay=events.max_reconnect_delay_seconds,
            stale_event_warning=events.stale_event_warning_seconds,
        )

    def _build_streams(self) -> list[EventStreamHandler]:
        streams = [
            self._stream(TRADE_SWAP_EVENT, self._on_trade_swap),
            self._stream(LIQUIDITY_POOL_EVENT, self._on_liquidity_pool),
            self._stream(LOG_NEP297_EVENT, self._on_log_nep297),
            self._stream(LOG_TEXT_EVENT, self._on_log_text),
        ]
        if self._settings.events.testnet_enabled:
            streams.append(self._stream(LOG_NEP297_EVENT, self._on_testnet_log_nep297, testnet=True))
            streams.append(self._stream(LOG_TEXT_EVENT, self._on_testnet_log_text, testnet=True))
        return streams

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._oracle:
            logger.debug("Starting price refresh loop...")
            await self._oracle.start()

        for stream in self._streams:
            logger.debug("Starting event stream %s...", stream.url)
            self._stream_tasks.append(asyncio.create_task(self._run_stream(stream)))

    async def _run_stream(self, stream: EventStreamHandler) -> None:
        """Run one event stream in a task."""
        try:
            await stream.start()
        except asyncio.CancelledError:
            logger.debug("Event stream task cancelled: %s", stream.url)
        except Exception as e:
            logger.error("Event stream %s error: %s", stream.url, e)
            self._stats.last_error = str(e)
            self._stats.errors += 1

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        for stream in self._streams:
            await stream.stop()

        for task in self._stream_tasks:
            task.cancel()
        for task in self._stream_tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._stream_tasks = []

        if self._oracle:
            logger.debug("Stopping price refresh loop...")
            await self._oracle.stop()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._registry:
            await self._registry.aclose()
            self._registry = None

        if self._rpc:
            await self._rpc.aclose()
            self._rpc = None

        if self._http and not self._http.closed:
            await self._http.close()
        self._http = None

        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    def _record_event(self) -> None:
        self._stats.events_received += 1
        self._stats.last_event_time = datetime.now(UTC)

    def _record_error(self, stream: str, error: Exception) -> None:
        self._stats.errors += 1
        self._stats.last_error = str(error)
        logger.warning("Dropping malformed %s event: %s", stream, error)

    async def _on_trade_swap(self, data: dict[str, Any]) -> None:
        self._record_event()
        try:
            event = TradeSwapEvent.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            self._record_error(TRADE_SWAP_EVENT, e)
            return
        self._stats.trade_swaps += 1
        if self._buybot:
            await self._buybot.handle_event(event)

    async def _on_liquidity_pool(self, data: dict[str, Any]) -> None:
        self._record_event()
        try:
            event = LiquidityPoolEvent.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            self._record_error(LIQUIDITY_POOL_EVENT, e)
            return
        self._stats.liquidity_events += 1
        if self._buybot:
            await self._buybot.handle_event(event)

    async def _handle_log_nep297(self, data: dict[str, Any], *, is_testnet: bool) -> None:
        self._record_event()
        try:
            log = LogNep297Event.from_dict(data, is_testnet=is_testnet)
        except (KeyError, TypeError, ValueError) as e:
            self._record_error(LOG_NEP297_EVENT, e)
            return
        self._stats.nep297_logs += 1
        if self._nep297_logs:
            await self._nep297_logs.handle_event(log)

        # Pre-launch auctions only run on mainnet.
        if is_testnet:
            return
        try:
            event = parse_prelaunch_event(data)
        except (KeyError, TypeError, ValueError) as e:
            self._record_error(LOG_NEP297_EVENT, e)
            return
        if event is None:
            return
        self._stats.prelaunch_events += 1
        if self._buybot:
            await self._buybot.handle_event(event)

    async def _on_log_nep297(self, data: dict[str, Any]) -> None:
        await self._handle_log_nep297(data, is_testnet=False)

    async def _on_testnet_log_nep297(self, data: dict[str, Any]) -> None:
        await self._handle_log_nep297(data, is_testnet=True)

    async def _handle_log_text(self, data: dict[str, Any], *, is_testnet: bool) -> None:
        self._record_event()
        try:
            event = LogTextEvent.from_dict(data, is_testnet=is_testnet)
        except (KeyError, TypeError, ValueError) as e:
            self._record_error(LOG_TEXT_EVENT, e)
            return
        self._stats.text_logs += 1
        if self._text_logs:
            await self._text_logs.handle_event(event)

    async def _on_log_text(self, data: dict[str, Any]) -> None:
        await self._handle_log_text(data, is_testnet=False)

    async def _on_testnet_log_text(self, data: dict[str, Any]) -> None:
        await self._handle_log_text(data, is_testnet=True)

    async def run(self) -> None:
        """Start the pipeline and run until stop() is called or the task is cancelled."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
