"""Start a platform conversation and wait for the first qualifying reply.

The inbox is a passive directory written by other processes, so replies are
found by polling it at a fixed interval until a deadline.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

from beepboop.config.schema import ConversationConfig
from beepboop.conversations.inbox import InboxStore
from beepboop.conversations.platforms import PlatformClient, PlatformError
from beepboop.conversations.schema import (
    AuthoredBy,
    ConversationOutcome,
    ConversationRecord,
    MessageContext,
    Platform,
)
from beepboop.coordination.schema import utcnow
from beepboop.logging import TRACE, get_logger

log = get_logger("correlator")

SYSTEM_AUTHOR = "system"
SYSTEM_USERNAME = "Beep/Boop Agent"


def is_reply(initiator: ConversationRecord, candidate: ConversationRecord) -> bool:
    """Whether `candidate` answers `initiator`.

    The candidate must be on the same platform, in the initiator's thread (or,
    when no thread was created, its channel or Slack thread), written by a
    different author, and strictly newer.
    """
    if candidate.id == initiator.id or candidate.platform is not initiator.platform:
        return False

    ctx, other = initiator.context, candidate.context
    if ctx.thread_id:
        in_context = other.thread_id == ctx.thread_id
    else:
        in_context = other.channel_id == ctx.channel_id or (
            ctx.message_id is not None and other.thread_ts == ctx.message_id
        )

    return (
        in_context
        and candidate.authored_by.id != initiator.authored_by.id
        and candidate.created_at > initiator.created_at
    )


class ReplyCorrelator:
    """Sends the opening message, records it and polls for the answer."""

    def __init__(
        self,
        inbox: InboxStore,
        platforms: dict[Platform, PlatformClient],
        config: ConversationConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.inbox = inbox
        self.platforms = platforms
        self.config = config or ConversationConfig()
        self._clock = clock

    def client_for(self, platform: Platform) -> PlatformClient:
        """Return the configured client for `platform`.

        Raises:
            PlatformError: no client is configured for the platform.
        """
        client = self.platforms.get(platform)
        if client is None:
            raise PlatformError(platform, f"{platform.value.capitalize()} bot token not configured")
        return client

    async def send_initial(
        self,
        platform: Platform,
        text: str,
        channel_id: str | None = None,
        agent_id: str | None = None,
    ) -> ConversationRecord:
        """Post the opening message and persist its record.

        Thread creation is best effort: a failure is logged and the record is
        stored without a thread id.

        Args:
            platform: Platform to post on.
            text: Message body, attributed to `agent_id` when given.
            channel_id: Target channel, defaults to the client's default.
            agent_id: Agent starting the conversation.

        Returns:
            The stored initiating record.

        Raises:
            PlatformError: no client or channel is configured, or the send failed.
        """
        client = self.client_for(platform)
        channel = channel_id or client.default_channel_id
        if not channel:
            raise PlatformError(
                platform,
                f"No channel ID specified and no default channel configured for {platform.value}",
            )

        message_id = await client.send_message(channel, client.attribute(text, agent_id))

        thread_id = None
        if client.supports_threads:
            try:
                thread_id = await client.create_thread(channel, message_id, text)
            except PlatformError as e:
                log.warning("Failed to create %s thread for %s: %s", platform.value, message_id, e)

        record = ConversationRecord(
            platform=platform,
            text=text,
            raw={"initiatedBy": "agent", "agentId": agent_id},
            authored_by=AuthoredBy(agent_id or SYSTEM_AUTHOR, agent_id or SYSTEM_USERNAME),
            context=MessageContext(
                channel_id=channel,
                message_id=message_id,
                thread_id=thread_id,
                thread_ts=message_id if platform is Platform.SLACK else None,
            ),
            created_at=self._clock(),
        )
        await asyncio.to_thread(self.inbox.put, record)
        log.info("Started %s conversation %s in %s", platform.value, record.id, channel)
        return record

    async def initiate(
        self,
        platform: Platform,
        text: str,
        channel_id: str | None = None,
        agent_id: str | None = None,
        deadline_seconds: float | None = None,
        poll_interval_seconds: float | None = None,
    ) -> ConversationOutcome:
        """Send `text` and block until a reply arrives or the deadline passes.

        Args:
            platform: Platform to post on.
            text: Opening message.
            channel_id: Target channel, defaults to the client's default.
            agent_id: Agent starting the conversation.
            deadline_seconds: Override for the configured deadline.
            poll_interval_seconds: Override for the configured poll interval.

        Returns:
            A ConversationOutcome; `timed_out` is set when no reply came.

        Raises:
            PlatformError: the opening message could not be sent.
        """
        record = await self.send_initial(platform, text, channel_id, agent_id)
        return await self.wait_for_reply(record, deadline_seconds, poll_interval_seconds)

    def find_reply(self, initiator: ConversationRecord) -> ConversationRecord | None:
        """First unacknowledged record answering `initiator`, in store order."""
        for candidate in self.inbox.iter_unprocessed():
            if is_reply(initiator, candidate):
                return candidate
        return None

    async def wait_for_reply(
        self,
        initiator: ConversationRecord,
        deadline_seconds: float | None = None,
        poll_interval_seconds: float | None = None,
    ) -> ConversationOutcome:
        """Poll the inbox until a reply shows up or `deadline_seconds` elapse.

        Cancelling the awaiting task stops the wait at the next sleep or
        inbox scan and raises CancelledError in the caller.

        Args:
            initiator: Record of the opening message.
            deadline_seconds: Override for the configured deadline.
            poll_interval_seconds: Override for the configured poll interval.

        Returns:
            A ConversationOutcome carrying the reply, or marked timed out.
        """
        deadline_s = self.config.deadline_seconds if deadline_seconds is None else deadline_seconds
        interval = (
            self.config.poll_interval_seconds
            if poll_interval_seconds is None
            else poll_interval_seconds
        )

        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + deadline_s
        polls = 0

        while True:
            polls += 1
            log.log(TRACE, "Poll %d for replies to %s", polls, initiator.id)
            reply = await asyncio.to_thread(self.find_reply, initiator)
            if reply is not None:
                log.info("Reply %s to conversation %s after %d polls", reply.id, initiator.id, polls)
                return ConversationOutcome(
                    initiating_record=initiator,
                    reply=reply,
                    polls=polls,
                    elapsed_seconds=loop.time() - started,
                    deadline_seconds=deadline_s,
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(interval, remaining))

        log.info("No reply to conversation %s within %.1fs", initiator.id, deadline_s)
        return ConversationOutcome(
            initiating_record=initiator,
            polls=polls,
            elapsed_seconds=loop.time() - started,
            deadline_seconds=deadline_s,
        )
