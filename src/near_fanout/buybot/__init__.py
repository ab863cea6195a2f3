"""Trade notifications - Subscriptions, reverse index, matching and rendering."""

from near_fanout.buybot.index import IndexRebuildError, ReadWriteLock, ReverseIndex
from near_fanout.buybot.matcher import BuybotMatcher, TrendingRoutes, passes_min_amount
from near_fanout.buybot.models import (
    Attachment,
    AttachmentCurrency,
    BuybotSubscriber,
    Polarity,
    SubscribedToken,
    TokenAmount,
    UsdAmount,
)
from near_fanout.buybot.module import BuybotModule
from near_fanout.buybot.service import BuybotService, NotSubscribedError

__all__ = [
    "Attachment",
    "AttachmentCurrency",
    "BuybotMatcher",
    "BuybotModule",
    "BuybotService",
    "BuybotSubscriber",
    "IndexRebuildError",
    "NotSubscribedError",
    "Polarity",
    "ReadWriteLock",
    "ReverseIndex",
    "SubscribedToken",
    "TokenAmount",
    "TrendingRoutes",
    "UsdAmount",
    "passes_min_amount",
]
