"""Alerting layer - Formatting, rate limiting and Telegram delivery."""

from near_fanout.alerter.dispatcher import DispatchStats, NotificationDispatcher
from near_fanout.alerter.models import Button, Media, MediaKind, OutgoingNotification
from near_fanout.alerter.rate_limit import (
    LimitExceeded,
    NotificationRateLimiter,
    RateLimitError,
    RateLimitWindow,
)
from near_fanout.alerter.telegram import TelegramTransport, TransportError

__all__ = [
    "Button",
    "DispatchStats",
    "LimitExceeded",
    "Media",
    "MediaKind",
    "NotificationDispatcher",
    "NotificationRateLimiter",
    "OutgoingNotification",
    "RateLimitError",
    "RateLimitWindow",
    "TelegramTransport",
    "TransportError",
]
