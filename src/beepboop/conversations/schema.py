"""Data schemas for captured and initiated platform conversations.

Records are stored as JSON with camelCase keys so the listener, the tools and
any external capture process all read the same files.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from beepboop.coordination.schema import format_timestamp, parse_timestamp, utcnow
from beepboop.errors import CorrelationTimeoutError


class Platform(Enum):
    SLACK = "slack"
    DISCORD = "discord"


@dataclass
class AuthoredBy:
    id: str
    username: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.username is not None:
            data["username"] = self.username
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthoredBy:
        return cls(id=str(data.get("id", "")), username=data.get("username"))


@dataclass
class MessageContext:
    """Where a record lives on its platform."""

    channel_id: str
    thread_ts: str | None = None  # Slack thread parent timestamp
    guild_id: str | None = None
    message_id: str | None = None  # Platform-assigned id of this message
    thread_id: str | None = None  # Discord thread created from this message

    _KEYS = (
        ("channel_id", "channelId"),
        ("thread_ts", "threadTs"),
        ("guild_id", "guildId"),
        ("message_id", "messageId"),
        ("thread_id", "threadId"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            wire: getattr(self, attr)
            for attr, wire in self._KEYS
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageContext:
        values = {attr: data.get(wire) for attr, wire in cls._KEYS}
        values["channel_id"] = str(values["channel_id"] or "")
        return cls(**values)


@dataclass
class ConversationRecord:
    """One captured or initiated platform message."""

    platform: Platform
    text: str
    authored_by: AuthoredBy
    context: MessageContext
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    raw: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "platform": self.platform.value,
            "text": self.text,
            "raw": self.raw,
            "authoredBy": self.authored_by.to_dict(),
            "context": self.context.to_dict(),
            "createdAt": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationRecord:
        return cls(
            id=data["id"],
            platform=Platform(data["platform"]),
            text=data.get("text", ""),
            raw=data.get("raw"),
            authored_by=AuthoredBy.from_dict(data.get("authoredBy") or {}),
            context=MessageContext.from_dict(data.get("context") or {}),
            created_at=parse_timestamp(data["createdAt"]),
        )


@dataclass
class ConversationOutcome:
    """Result of waiting for a reply: the reply, or a timeout.

    A timed-out outcome keeps the initiating record id so correlation can be
    resumed later.
    """

    initiating_record: ConversationRecord
    reply: ConversationRecord | None = None
    polls: int = 0
    elapsed_seconds: float = 0.0
    deadline_seconds: float = 0.0

    @property
    def timed_out(self) -> bool:
        return self.reply is None

    @property
    def initiating_record_id(self) -> str:
        return self.initiating_record.id

    def raise_for_timeout(self) -> ConversationRecord:
        """Return the reply or raise CorrelationTimeoutError."""
        if self.reply is None:
            raise CorrelationTimeoutError(self.initiating_record_id, self.deadline_seconds)
        return self.reply
