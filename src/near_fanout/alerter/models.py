"""Data models for outgoing notifications."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MediaKind(str, Enum):
    """Telegram media types a notification can carry."""

    PHOTO = "photo"
    ANIMATION = "animation"
    VIDEO = "video"
    AUDIO = "audio"


@dataclass(frozen=True)
class Media:
    """A media attachment; ``file`` is a Telegram file_id or a public URL."""

    kind: MediaKind
    file: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "file": self.file}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Media:
        return cls(kind=MediaKind(data["kind"]), file=str(data["file"]))


@dataclass(frozen=True)
class Button:
    """An inline URL button."""

    text: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "url": self.url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Button:
        return cls(text=str(data["text"]), url=str(data["url"]))


@dataclass(frozen=True)
class OutgoingNotification:
    """A fully rendered message ready for the chat transport.

    Attributes:
        destination: Chat id to deliver to.
        text: MarkdownV2 body (used as caption when media is attached).
        buttons: Rows of inline URL buttons.
        media: Optional attachment.
        context: Free-form identifiers for log correlation.
    """

    destination: int
    text: str
    buttons: tuple[tuple[Button, ...], ...] = ()
    media: Media | None = None
    context: dict[str, str] = field(default_factory=dict)
