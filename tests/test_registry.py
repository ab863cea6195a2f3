"""Tests for the per-bot registry."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from near_fanout.alerter.dispatcher import NotificationDispatcher
from near_fanout.config import RateLimitSettings
from near_fanout.registry import BotContext, BotRegistry


@pytest.fixture
def mock_settings():
    settings = MagicMock()
    settings.bots.api_url = "https://api.telegram.org"
    settings.bots.token_list.return_value = ["111:aaa", "not-a-token", "222:bbb", "111:ccc"]
    settings.rate_limit = RateLimitSettings()
    return settings


class TestBotRegistry:
    """Tests for BotRegistry."""

    def test_from_settings_skips_bad_and_duplicate_tokens(self, mock_settings, mock_redis) -> None:
        registry = BotRegistry.from_settings(mock_settings, redis=mock_redis)

        assert [bot.bot_id for bot in registry] == [111, 222]
        assert len(registry) == 2

    def test_rate_limiter_needs_redis(self, mock_settings, mock_redis) -> None:
        with_redis = BotRegistry.from_settings(mock_settings, redis=mock_redis)
        without_redis = BotRegistry.from_settings(mock_settings, redis=None)

        assert with_redis.get(111).rate_limiter is not None
        assert without_redis.get(111).rate_limiter is None

    def test_dispatchers_are_per_bot(self, mock_settings, mock_redis) -> None:
        registry = BotRegistry.from_settings(mock_settings, redis=mock_redis, dry_run=True)

        first, second = registry.get(111), registry.get(222)

        assert first.dispatcher is not second.dispatcher
        assert first.dispatcher.bot_id == 111

    def test_empty(self, mock_settings) -> None:
        mock_settings.bots.token_list.return_value = []
        assert len(BotRegistry.from_settings(mock_settings, redis=None)) == 0

    def test_add_duplicate_raises(self, transport) -> None:
        bot = BotContext(bot_id=1, transport=transport, dispatcher=NotificationDispatcher(bot_id=1, transport=transport))
        registry = BotRegistry([bot])

        with pytest.raises(ValueError, match="already registered"):
            registry.add(bot)

    @pytest.mark.asyncio
    async def test_aclose(self) -> None:
        transport = MagicMock()
        transport.aclose = AsyncMock()
        dispatcher = MagicMock()
        dispatcher.close = AsyncMock()
        registry = BotRegistry([BotContext(bot_id=1, transport=transport, dispatcher=dispatcher)])

        await registry.aclose()

        dispatcher.close.assert_awaited_once()
        transport.aclose.assert_awaited_once()
