"""Telegram Bot API transport.

Sends rendered notifications with ``send_message``, or with the matching
``send_<media>`` method when an attachment is present.
"""

from __future__ import annotations

import asyncio
import logging

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import TelegramError

from near_fanout.alerter.models import MediaKind, OutgoingNotification

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.telegram.org"

# kind -> (Bot method, file argument)
_MEDIA_METHODS: dict[MediaKind, tuple[str, str]] = {
    MediaKind.PHOTO: ("send_photo", "photo"),
    MediaKind.ANIMATION: ("send_animation", "animation"),
    MediaKind.VIDEO: ("send_video", "video"),
    MediaKind.AUDIO: ("send_audio", "audio"),
}


class TransportError(Exception):
    """Raised when Telegram rejects or fails to deliver a message."""


def parse_bot_id(token: str) -> int:
    """Extract the numeric bot id from a ``<id>:<secret>`` bot token.

    Raises:
        ValueError: If the token does not have a numeric id prefix.
    """
    bot_id, sep, secret = token.partition(":")
    if not sep or not secret or not bot_id.isdigit():
        raise ValueError("Bot token must look like '<numeric id>:<secret>'")
    return int(bot_id)


def build_reply_markup(notification: OutgoingNotification) -> InlineKeyboardMarkup | None:
    if not notification.buttons:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(text=button.text, url=button.url) for button in row] for row in notification.buttons]
    )


class TelegramTransport:
    """Async Bot API client for one bot identity.

    Args:
        token: Bot token as issued by BotFather.
        api_url: Bot API base URL.
        bot: Prebuilt ``telegram.Bot``; one is built from the token otherwise.
    """

    def __init__(
        self,
        token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        bot: Bot | None = None,
    ) -> None:
        self.bot_id = parse_bot_id(token)
        self._bot = bot or Bot(token, base_url=f"{api_url.rstrip('/')}/bot")
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def _ensure_initialized(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            try:
                await self._bot.initialize()
            except TelegramError as e:
                raise TransportError(f"Bot {self.bot_id} failed to initialize: {e}") from e
            self._initialized = True

    async def send(self, notification: OutgoingNotification) -> None:
        """Deliver one notification.

        Raises:
            TransportError: On network failure or an API error.
        """
        await self._ensure_initialized()
        reply_markup = build_reply_markup(notification)
        try:
            if notification.media is None:
                await self._bot.send_message(
                    notification.destination,
                    notification.text,
                    parse_mode=ParseMode.MARKDOWN_V2,
                    reply_markup=reply_markup,
                    link_preview_options=LinkPreviewOptions(is_disabled=True),
                )
            else:
                method, field = _MEDIA_METHODS[notification.media.kind]
                await getattr(self._bot, method)(
                    notification.destination,
                    **{field: notification.media.file},
                    caption=notification.text,
                    parse_mode=ParseMode.MARKDOWN_V2,
                    reply_markup=reply_markup,
                )
        except TelegramError as e:
            raise TransportError(f"Telegram rejected message to {notification.destination}: {e}") from e
        logger.debug(
            "Sent %s to %s",
            notification.media.kind.value if notification.media else "message",
            notification.destination,
        )

    async def aclose(self) -> None:
        if not self._initialized:
            return
        try:
            await self._bot.shutdown()
        except TelegramError as e:
            logger.warning("Bot %s did not shut down cleanly: %s", self.bot_id, e)
        self._initialized = False
