"""Slack Socket Mode capture.

Channel messages arrive over a Socket Mode WebSocket and are stored in the
inbox as ConversationRecords, where the reply correlator and update_user
find them. Runs inside the listener process when both the bot token and the
app-level token are configured.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler

from beepboop.config.schema import SlackConfig
from beepboop.conversations.inbox import InboxStore
from beepboop.conversations.schema import AuthoredBy, ConversationRecord, MessageContext, Platform
from beepboop.logging import get_logger

log = get_logger("listener.slack")

# Message subtypes that still carry a human-authored message
CAPTURED_SUBTYPES = frozenset({"thread_broadcast", "file_share"})


def record_from_event(event: dict[str, Any]) -> ConversationRecord | None:
    """Convert a Slack ``message`` event into a ConversationRecord.

    Bot posts (our own outbound messages included), edits, deletions, joins
    and events without an author, channel or timestamp are skipped.

    Args:
        event: The ``event`` payload of a Slack Events API envelope.

    Returns:
        The record, or None when the event is not a capturable message.
    """
    if event.get("bot_id") or event.get("subtype") not in (None, *CAPTURED_SUBTYPES):
        return None
    user, channel, ts = event.get("user"), event.get("channel"), event.get("ts")
    if not (user and channel and ts):
        return None
    try:
        created_at = datetime.fromtimestamp(float(ts), tz=timezone.utc)
    except (TypeError, ValueError):
        return None

    return ConversationRecord(
        # Redelivered events overwrite the same record
        id=f"slack-{channel}-{ts}",
        platform=Platform.SLACK,
        text=event.get("text") or "",
        raw=event,
        authored_by=AuthoredBy(str(user), event.get("username")),
        context=MessageContext(
            channel_id=str(channel),
            message_id=str(ts),
            thread_ts=event.get("thread_ts"),
        ),
        created_at=created_at,
    )


class SlackCapture:
    """Writes incoming Slack messages to an InboxStore."""

    def __init__(self, config: SlackConfig, inbox: InboxStore) -> None:
        self.config = config
        self.inbox = inbox
        self._handler: SocketModeHandler | None = None

    @property
    def configured(self) -> bool:
        return bool(self.config.bot_token and self.config.app_token)

    @property
    def running(self) -> bool:
        return self._handler is not None

    def handle_message(self, event: dict[str, Any]) -> ConversationRecord | None:
        """Store `event` if it is a capturable message and return the record."""
        record = record_from_event(event)
        if record is None:
            log.debug("Skipped Slack event %s/%s", event.get("type"), event.get("subtype"))
            return None
        self.inbox.put(record)
        log.info("Captured slack message %s", record.id)
        return record

    def build_app(self) -> App:
        app = App(token=self.config.bot_token)

        @app.event("message")
        def on_message(event: dict[str, Any]) -> None:
            self.handle_message(event)

        return app

    def start(self) -> None:
        """Open the Socket Mode connection without blocking.

        Raises:
            ValueError: the bot or app-level token is missing.
        """
        if self._handler is not None:
            return
        if not self.configured:
            raise ValueError("Slack capture needs both a bot token and an app-level token")
        handler = SocketModeHandler(self.build_app(), self.config.app_token)
        handler.connect()
        self._handler = handler
        log.info("Slack Socket Mode capture connected")

    def close(self) -> None:
        if self._handler is None:
            return
        self._handler.close()
        self._handler = None
        log.info("Slack Socket Mode capture closed")
