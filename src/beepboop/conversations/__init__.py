"""Platform conversations: records, the shared inbox and reply correlation."""

from beepboop.conversations.correlator import ReplyCorrelator, is_reply
from beepboop.conversations.inbox import CleanupStats, InboxStore
from beepboop.conversations.platforms import (
    DiscordClient,
    PlatformClient,
    PlatformError,
    SlackClient,
    build_platform_clients,
)
from beepboop.conversations.schema import (
    AuthoredBy,
    ConversationOutcome,
    ConversationRecord,
    MessageContext,
    Platform,
)

__all__ = [
    "ReplyCorrelator",
    "is_reply",
    "InboxStore",
    "CleanupStats",
    "PlatformClient",
    "PlatformError",
    "DiscordClient",
    "SlackClient",
    "build_platform_clients",
    "Platform",
    "AuthoredBy",
    "MessageContext",
    "ConversationRecord",
    "ConversationOutcome",
]
