"""Tests for the fire-and-forget notification dispatcher."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from near_fanout.alerter.dispatcher import NotificationDispatcher
from near_fanout.alerter.models import OutgoingNotification
from near_fanout.alerter.rate_limit import LimitExceeded, RateLimitError, RateLimitWindow

WINDOW = RateLimitWindow(name="5m", seconds=300, limit=20)


def _builder(destination: int, text: str = "hello"):
    async def build() -> OutgoingNotification:
        return OutgoingNotification(destination=destination, text=text)

    return build


def _limiter(result=None, side_effect=None) -> MagicMock:
    limiter = MagicMock()
    limiter.check = AsyncMock(return_value=result, side_effect=side_effect)
    return limiter


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher.spawn."""

    @pytest.mark.asyncio
    async def test_spawn_delivers(self, dispatcher: NotificationDispatcher, transport) -> None:
        dispatcher.spawn(-100, _builder(-100))
        await dispatcher.wait_idle()

        assert [n.destination for n in transport.sent] == [-100]
        assert dispatcher.stats.spawned == 1
        assert dispatcher.stats.sent == 1
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_spawn_returns_before_delivery(self, transport) -> None:
        release = asyncio.Event()

        async def slow_build() -> OutgoingNotification:
            await release.wait()
            return OutgoingNotification(destination=1, text="late")

        dispatcher = NotificationDispatcher(bot_id=1, transport=transport)
        dispatcher.spawn(1, slow_build)

        assert dispatcher.pending == 1
        assert transport.sent == []

        release.set()
        await dispatcher.wait_idle()
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_builder_returning_none_is_skipped(self, dispatcher: NotificationDispatcher, transport) -> None:
        async def build_nothing() -> None:
            return None

        dispatcher.spawn(1, build_nothing)
        await dispatcher.wait_idle()

        assert transport.sent == []
        assert dispatcher.stats.skipped == 1

    @pytest.mark.asyncio
    async def test_render_failure_is_isolated(self, dispatcher: NotificationDispatcher, transport) -> None:
        async def broken() -> OutgoingNotification:
            raise RuntimeError("template error")

        dispatcher.spawn(1, broken)
        dispatcher.spawn(2, _builder(2))
        await dispatcher.wait_idle()

        assert transport.destinations() == [2]
        assert dispatcher.stats.failed == 1
        assert dispatcher.stats.sent == 1

    @pytest.mark.asyncio
    async def test_transport_failure_is_isolated(self, failing_transport_factory) -> None:
        transport = failing_transport_factory({1})
        dispatcher = NotificationDispatcher(bot_id=1, transport=transport)

        dispatcher.spawn(1, _builder(1))
        dispatcher.spawn(2, _builder(2))
        await dispatcher.wait_idle()

        assert transport.destinations() == [2]
        assert dispatcher.stats.failed == 1

    @pytest.mark.asyncio
    async def test_dry_run_does_not_send(self, transport) -> None:
        dispatcher = NotificationDispatcher(bot_id=1, transport=transport, dry_run=True)

        dispatcher.spawn(1, _builder(1))
        await dispatcher.wait_idle()

        assert transport.sent == []
        assert dispatcher.stats.sent == 1

    @pytest.mark.asyncio
    async def test_rate_limited_skips_render(self, transport) -> None:
        build = AsyncMock()
        limiter = _limiter(LimitExceeded(window=WINDOW, count=21, notify=False))
        dispatcher = NotificationDispatcher(bot_id=1, transport=transport, rate_limiter=limiter)

        dispatcher.spawn(1, build)
        await dispatcher.wait_idle()

        build.assert_not_awaited()
        assert transport.sent == []
        assert dispatcher.stats.rate_limited == 1

    @pytest.mark.asyncio
    async def test_limit_notice_sent_once(self, transport) -> None:
        limiter = _limiter(LimitExceeded(window=WINDOW, count=21, notify=True))
        dispatcher = NotificationDispatcher(
            bot_id=1, transport=transport, rate_limiter=limiter, limit_notice_delay=0
        )

        dispatcher.spawn(1, _builder(1))
        await dispatcher.wait_idle()

        assert len(transport.sent) == 1
        notice = transport.sent[0]
        assert notice.destination == 1
        assert "notification limit of 21/20 messages in 5 minutes" in notice.text
        assert dispatcher.stats.limit_notices_sent == 1

    @pytest.mark.asyncio
    async def test_rate_limiter_failure_delivers_anyway(self, transport) -> None:
        limiter = _limiter(side_effect=RateLimitError("redis down"))
        dispatcher = NotificationDispatcher(bot_id=1, transport=transport, rate_limiter=limiter)

        dispatcher.spawn(1, _builder(1))
        await dispatcher.wait_idle()

        assert transport.destinations() == [1]

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self, transport) -> None:
        async def never() -> OutgoingNotification:
            await asyncio.Event().wait()
            raise AssertionError("unreachable")

        dispatcher = NotificationDispatcher(bot_id=1, transport=transport)
        dispatcher.spawn(1, never)
        await asyncio.sleep(0)

        await dispatcher.close()

        assert dispatcher.pending == 0
        assert transport.sent == []
