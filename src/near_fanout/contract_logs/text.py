"""Plain-text contract log notifications.

A filter is a conjunction of predicates over one contract's logs: the
contract account is required, every other predicate is optional.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from near_fanout.alerter.formatter import (
    escape_markdownv2,
    escape_markdownv2_code,
    format_account_link,
    format_tx_link,
)
from near_fanout.alerter.models import OutgoingNotification
from near_fanout.contract_logs.engine import ContractLogModule, FilterList, FilterListService
from near_fanout.ingestor.models import LogTextEvent
from near_fanout.storage.database import DatabaseManager
from near_fanout.storage.repos import SubscriberStore

logger = logging.getLogger(__name__)

TEXT_LOGS_COLLECTION = "text_logs"


@dataclass(frozen=True)
class TextLogFilter:
    """Conjunction of optional predicates over one contract's logs.

    ``account_id`` is always required; every other field left as None
    imposes no constraint.
    """

    account_id: str
    predecessor_id: str | None = None
    exact_match: str | None = None
    text_starts_with: str | None = None
    text_ends_with: str | None = None
    text_contains: str | None = None
    is_testnet: bool | None = None

    def matches(self, event: LogTextEvent) -> bool:
        if event.account_id != self.account_id:
            return False
        if self.is_testnet is not None and event.is_testnet != self.is_testnet:
            return False
        if self.predecessor_id is not None and event.predecessor_id != self.predecessor_id:
            return False
        if self.exact_match is not None and event.log_text != self.exact_match:
            return False
        if self.text_starts_with is not None and not event.log_text.startswith(self.text_starts_with):
            return False
        if self.text_ends_with is not None and not event.log_text.endswith(self.text_ends_with):
            return False
        if self.text_contains is not None and self.text_contains not in event.log_text:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "predecessor_id": self.predecessor_id,
            "exact_match": self.exact_match,
            "text_starts_with": self.text_starts_with,
            "text_ends_with": self.text_ends_with,
            "text_contains": self.text_contains,
            "is_testnet": self.is_testnet,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TextLogFilter:
        is_testnet = data.get("is_testnet")
        return cls(
            account_id=str(data["account_id"]),
            predecessor_id=data.get("predecessor_id"),
            exact_match=data.get("exact_match"),
            text_starts_with=data.get("text_starts_with"),
            text_ends_with=data.get("text_ends_with"),
            text_contains=data.get("text_contains"),
            is_testnet=bool(is_testnet) if is_testnet is not None else None,
        )


@dataclass(frozen=True)
class TextLogSubscriber(FilterList[TextLogFilter]):
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TextLogSubscriber:
        return cls(filters=tuple(TextLogFilter.from_dict(f) for f in data.get("filters", [])))


def text_log_store(db: DatabaseManager, bot_id: int) -> SubscriberStore[TextLogSubscriber]:
    return SubscriberStore(
        db,
        collection=TEXT_LOGS_COLLECTION,
        bot_id=bot_id,
        encode=TextLogSubscriber.to_dict,
        decode=TextLogSubscriber.from_dict,
    )


def render_text_log_notification(destination: int, event: LogTextEvent) -> OutgoingNotification:
    network = " \\(testnet\\)" if event.is_testnet else ""
    text = (
        f"{escape_markdownv2('Text log from')} {format_account_link(event.account_id)}{network}:\n"
        f"```\n{escape_markdownv2_code(event.log_text)}\n```\n"
        f"{format_tx_link(event.transaction_id)}"
    )
    return OutgoingNotification(
        destination=destination,
        text=text,
        context={"account": event.account_id, "tx": event.transaction_id},
    )


def describe_text_log(event: LogTextEvent) -> str:
    return f"log {event.account_id} tx {event.transaction_id}"


class TextLogService(FilterListService[TextLogSubscriber, TextLogFilter]):
    """Filter management for one bot's text-log subscribers."""

    def __init__(self, store: SubscriberStore[TextLogSubscriber]) -> None:
        super().__init__(store, empty=TextLogSubscriber)


class TextLogModule(ContractLogModule[LogTextEvent, TextLogSubscriber]):
    """Text-log notifications for all bots."""

    def __init__(self, db: DatabaseManager) -> None:
        super().__init__(
            db,
            name="text_logs",
            store_factory=text_log_store,
            render=render_text_log_notification,
            describe=describe_text_log,
        )

    def service(self, bot_id: int) -> TextLogService | None:
        store = self.store(bot_id)
        return TextLogService(store) if store is not None else None
