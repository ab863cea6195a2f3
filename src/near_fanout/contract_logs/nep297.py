"""Structured (NEP-297) contract log notifications.

A filter sets any of: emitting contract, predecessor, event standard,
version requirement, event name and network. A filter that sets none of
the first five matches nothing, and the service refuses to store one.

Version requirements are PEP 440 specifier sets such as
``>=1.0.0,<2``; a bare version like ``1.0.0`` means exactly that
version. Events whose version does not parse never match a filter with
a version requirement.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Any

from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from near_fanout.alerter.formatter import (
    escape_markdownv2,
    escape_markdownv2_code,
    format_account_link,
    format_tx_link,
)
from near_fanout.alerter.models import OutgoingNotification
from near_fanout.contract_logs.engine import ContractLogModule, FilterList, FilterListService
from near_fanout.ingestor.models import LogNep297Event
from near_fanout.storage.database import DatabaseManager
from near_fanout.storage.repos import SubscriberStore

logger = logging.getLogger(__name__)

NEP297_LOGS_COLLECTION = "nep297_logs"

_OPERATOR_CHARS = "<>=!~"


def parse_version_requirement(requirement: str) -> SpecifierSet:
    """Parse a version requirement.

    Raises:
        ValueError: If the requirement is not a valid specifier set.
    """
    text = requirement.strip()
    if not text:
        raise ValueError("Version requirement is empty")
    if text[0] not in _OPERATOR_CHARS:
        text = f"=={text}"
    return SpecifierSet(text)


@dataclass(frozen=True)
class Nep297LogFilter:
    account_id: str | None = None
    predecessor_id: str | None = None
    standard: str | None = None
    version: str | None = None
    event: str | None = None
    is_testnet: bool | None = None

    def __post_init__(self) -> None:
        if self.version is not None:
            parse_version_requirement(self.version)

    @property
    def is_empty(self) -> bool:
        """True when no field other than the network is set."""
        return all(
            value is None
            for value in (self.account_id, self.predecessor_id, self.standard, self.version, self.event)
        )

    @cached_property
    def _version_requirement(self) -> SpecifierSet | None:
        return parse_version_requirement(self.version) if self.version is not None else None

    def _version_matches(self, event_version: str) -> bool:
        requirement = self._version_requirement
        if requirement is None:
            return True
        try:
            return Version(event_version) in requirement
        except InvalidVersion:
            return False

    def matches(self, event: LogNep297Event) -> bool:
        if self.is_empty:
            return False
        if self.is_testnet is not None and event.is_testnet != self.is_testnet:
            return False
        if self.account_id is not None and event.account_id != self.account_id:
            return False
        if self.predecessor_id is not None and event.predecessor_id != self.predecessor_id:
            return False
        if self.standard is not None and event.event_standard != self.standard:
            return False
        if not self._version_matches(event.event_version):
            return False
        if self.event is not None and event.event_event != self.event:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "predecessor_id": self.predecessor_id,
            "standard": self.standard,
            "version": self.version,
            "event": self.event,
            "is_testnet": self.is_testnet,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Nep297LogFilter:
        is_testnet = data.get("is_testnet")
        return cls(
            account_id=data.get("account_id"),
            predecessor_id=data.get("predecessor_id"),
            standard=data.get("standard"),
            version=data.get("version"),
            event=data.get("event"),
            is_testnet=bool(is_testnet) if is_testnet is not None else None,
        )


def reject_empty_filter(log_filter: Nep297LogFilter) -> None:
    if log_filter.is_empty:
        raise ValueError("A NEP-297 log filter needs at least one of account, predecessor, standard, version or event")


@dataclass(frozen=True)
class Nep297LogSubscriber(FilterList[Nep297LogFilter]):
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Nep297LogSubscriber:
        return cls(filters=tuple(Nep297LogFilter.from_dict(f) for f in data.get("filters", [])))


def nep297_log_store(db: DatabaseManager, bot_id: int) -> SubscriberStore[Nep297LogSubscriber]:
    return SubscriberStore(
        db,
        collection=NEP297_LOGS_COLLECTION,
        bot_id=bot_id,
        encode=Nep297LogSubscriber.to_dict,
        decode=Nep297LogSubscriber.from_dict,
    )


def render_nep297_notification(destination: int, event: LogNep297Event) -> OutgoingNotification:
    headline = escape_markdownv2(f"{event.event_standard} {event.event_version} {event.event_event} event from")
    network = " \\(testnet\\)" if event.is_testnet else ""
    payload = json.dumps(event.event_data, indent=2, ensure_ascii=False)
    text = (
        f"{headline} {format_account_link(event.account_id)}{network}:\n"
        f"```\n{escape_markdownv2_code(payload)}\n```\n"
        f"{format_tx_link(event.transaction_id)}"
    )
    return OutgoingNotification(
        destination=destination,
        text=text,
        context={"account": event.account_id, "tx": event.transaction_id},
    )


def describe_nep297_log(event: LogNep297Event) -> str:
    return f"{event.event_standard}/{event.event_event} from {event.account_id} tx {event.transaction_id}"


class Nep297LogService(FilterListService[Nep297LogSubscriber, Nep297LogFilter]):
    """Filter management for one bot's NEP-297 log subscribers.

    Raises ValueError from add_filter and replace_filter for filters that
    would never match.
    """

    def __init__(self, store: SubscriberStore[Nep297LogSubscriber]) -> None:
        super().__init__(store, empty=Nep297LogSubscriber, validate=reject_empty_filter)


class Nep297LogModule(ContractLogModule[LogNep297Event, Nep297LogSubscriber]):
    """NEP-297 log notifications for all bots."""

    def __init__(self, db: DatabaseManager) -> None:
        super().__init__(
            db,
            name="nep297_logs",
            store_factory=nep297_log_store,
            render=render_nep297_notification,
            describe=describe_nep297_log,
        )

    def service(self, bot_id: int) -> Nep297LogService | None:
        store = self.store(bot_id)
        return Nep297LogService(store) if store is not None else None
