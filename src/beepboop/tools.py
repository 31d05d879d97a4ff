"""Agent-facing coordination tools.

Each tool returns a ToolResult with readable text instead of raising, so the
MCP server and the listener can hand the text straight back to the agent.
When delegation is enabled, status checks and platform messaging are forwarded
to the shared listener; marker writes always run locally.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from dataclasses import dataclass, field, replace
from typing import Any

import httpx

from beepboop.config.schema import Config
from beepboop.conversations.correlator import ReplyCorrelator
from beepboop.conversations.inbox import InboxStore
from beepboop.conversations.platforms import PlatformClient, PlatformError, build_platform_clients
from beepboop.conversations.schema import ConversationOutcome, ConversationRecord, Platform
from beepboop.coordination.machine import DirectoryCoordinator, describe_age
from beepboop.coordination.schema import DirectoryStatus, WorkState
from beepboop.coordination.validation import agent_id_problems
from beepboop.delegation.client import DelegationClient, DelegationResult
from beepboop.errors import CoordinationError
from beepboop.logging import get_logger

log = get_logger("tools")


@dataclass
class ToolResult:
    """Text returned to the agent, flagged when it reports a failure."""

    text: str
    is_error: bool = False
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"text": self.text}
        if self.meta:
            data["meta"] = self.meta
        return data


def _error(text: str, **meta: Any) -> ToolResult:
    return ToolResult(text=f"Error: {text}", is_error=True, meta=meta)


_NEXT_STEPS = {
    WorkState.RELEASED_AVAILABLE: [
        "You can start new work by using update_boop to claim the directory",
    ],
    WorkState.UNCLAIMED: [
        "Use update_boop to claim directory and start work",
        "Or use create_beep if work is already complete",
    ],
    WorkState.CONFLICT: [
        "Manual cleanup required: both beep and boop files exist",
        "Investigate file contents and remove one of the files",
        "Consider using end_work if current work is finishing",
    ],
}


def next_steps(status: DirectoryStatus, cleanup_performed: bool = False) -> list[str]:
    if cleanup_performed:
        if status.state is WorkState.RELEASED_AVAILABLE or status.state is WorkState.UNCLAIMED:
            return [
                "Stale file was cleaned up and directory is now clear for work",
                "You can start new work by using update_boop to claim the directory",
            ]
        if status.state is WorkState.HELD:
            return [
                "Stale file was cleaned up and directory was claimed by new agent",
                "Proceed with your work as planned",
            ]
        return ["Cleanup was performed, check current status"]

    if status.state is WorkState.HELD:
        return [
            f'If you are agent "{status.holder}", use end_work when complete',
            "If you are a different agent, wait for work to finish",
            "To check for stale files, use check_status with auto_clean_stale=true",
        ]
    return _NEXT_STEPS[status.state]


def render_status(
    status: DirectoryStatus,
    max_age_hours: float,
    default_max_age_hours: float,
    cleanup_message: str = "",
    cleanup_performed: bool = False,
) -> str:
    lines = [
        status.state.label,
        "",
        f"Directory: {status.directory}",
        f"Beep file exists: {str(status.released is not None).lower()}",
        f"Boop file exists: {str(status.held is not None).lower()}",
    ]
    if status.holder:
        lines.append(f"Agent: {status.holder}")
    if status.released:
        ts = status.released.completed_at
        lines.append(f"Beep file: {ts.isoformat()} ({describe_age(ts)})")
    if status.held:
        ts = status.held.started_at
        stale = " STALE" if status.stale else ""
        lines.append(f"Boop file: {ts.isoformat()} ({describe_age(ts)}{stale})")
        lines.append(f"Work: {status.held.work_description}")
    if cleanup_message:
        lines += ["", f"Cleanup action: {cleanup_message}"]
    lines += ["", status.details, "", "Next steps:"]
    lines += [f"- {step}" for step in next_steps(status, cleanup_performed)]
    if max_age_hours != default_max_age_hours:
        lines += ["", f"Stale threshold: {max_age_hours:g} hours"]
    return "\n".join(lines)


def _platform_info(record: ConversationRecord) -> str:
    ctx = record.context
    if record.platform is Platform.DISCORD and ctx.thread_id:
        return f"Discord thread {ctx.thread_id} in channel {ctx.channel_id}"
    return f"{record.platform.value} channel {ctx.channel_id}"


def render_outcome(outcome: ConversationOutcome, agent_id: str | None) -> str:
    record = outcome.initiating_record
    info = _platform_info(record)
    if outcome.reply is None:
        by_agent = f" by agent {agent_id}" if agent_id else ""
        return (
            f"Conversation initiated on {info}{by_agent}, but no user response received "
            f"within {outcome.deadline_seconds / 60:g} minutes.\n\n"
            f"Message ID: {record.id}\n\n"
            "The conversation thread is still active; use update_user to continue "
            "when the user responds."
        )

    reply = outcome.reply
    return (
        "Conversation initiated and user responded.\n\n"
        f"Platform: {info}\n"
        f"Agent: {agent_id or 'system'}\n"
        f"Initial message ID: {record.id}\n\n"
        "User response:\n"
        f"From: {reply.authored_by.username or reply.authored_by.id}\n"
        f"Message: {reply.text}\n"
        f"Response ID: {reply.id}\n\n"
        f"Found after {outcome.polls} polls in {outcome.elapsed_seconds:.0f}s. "
        "You can continue the conversation using update_user with either message ID."
    )


class CoordinationTools:
    """The seven agent tools over one config.

    Example:
        tools = CoordinationTools.from_config(load_config())
        result = await tools.update_boop("/srv/app", "backend-1", "Fix login")
        if result.is_error: ...
    """

    def __init__(
        self,
        config: Config,
        coordinator: DirectoryCoordinator | None = None,
        delegation: DelegationClient | None = None,
        inbox: InboxStore | None = None,
        platforms: dict[Platform, PlatformClient] | None = None,
    ) -> None:
        self.config = config
        self.coordinator = coordinator or DirectoryCoordinator(config.coordination)
        self.delegation = delegation or DelegationClient(config.delegation)
        self.inbox = inbox or InboxStore(config.inbox)
        self.platforms = build_platform_clients(config.platforms) if platforms is None else platforms
        self.correlator = ReplyCorrelator(self.inbox, self.platforms, config.conversation)

    @classmethod
    def from_config(
        cls,
        config: Config,
        delegate: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> CoordinationTools:
        """Build tools; `delegate=False` forces local execution (used by the listener)."""
        if not delegate:
            config = replace(config, delegation=replace(config.delegation, enabled=False))
        return cls(
            config,
            delegation=DelegationClient(config.delegation, transport),
            platforms=build_platform_clients(config.platforms, transport),
        )

    @property
    def delegating(self) -> bool:
        return self.delegation.available

    def _from_listener(self, result: DelegationResult, fallback: str) -> ToolResult:
        if result.ok:
            if result.text is not None:
                meta = result.data.get("meta") if isinstance(result.data, dict) else None
                return ToolResult(result.text, meta=meta or {})
            if result.data is None:
                return ToolResult(fallback)
            return ToolResult(json.dumps(result.data))
        if result.status == 400 and result.error:
            # The listener ran the tool and it reported a failure
            return ToolResult(result.error, is_error=True, meta={"requestId": result.request_id})
        return ToolResult(
            f"Error: Listener error ({result.status}): {result.error or 'unknown error'}",
            is_error=True,
            meta={"requestId": result.request_id, "status": result.status},
        )

    # -- marker tools --------------------------------------------------------

    async def create_beep(self, directory: str, message: str | None = None) -> ToolResult:
        """Mark a directory's work complete without a prior claim.

        Args:
            directory: Unclaimed directory to mark.
            message: Optional completion note.

        Returns:
            A ToolResult; an error result when the directory is held or
            already complete.
        """
        try:
            await asyncio.to_thread(self.coordinator.mark_complete, directory, message)
        except CoordinationError as e:
            return _error(str(e), code=e.code.value)
        return ToolResult(
            f"Beep file created successfully in {directory}. "
            "Work is now marked as complete and cleared for new work."
        )

    async def update_boop(
        self, directory: str, agent_id: str, work_description: str | None = None
    ) -> ToolResult:
        """Claim a directory, or refresh our own claim.

        Args:
            directory: Directory to claim.
            agent_id: Claiming agent.
            work_description: What the agent is doing.

        Returns:
            A ToolResult; an error result when another agent holds it.
        """
        try:
            result = await asyncio.to_thread(
                self.coordinator.claim, directory, agent_id, work_description
            )
        except CoordinationError as e:
            return _error(str(e), code=e.code.value)
        action = "updated" if result.renewed else "created"
        text = (
            f"Boop file {action} successfully in {directory}. "
            f"Work is now claimed by agent {result.hold.agent_id}."
        )
        if work_description:
            text += f" Work: {work_description}"
        return ToolResult(text)

    async def end_work(
        self, directory: str, agent_id: str, message: str | None = None
    ) -> ToolResult:
        """Release our claim and mark the work complete.

        Args:
            directory: Directory held by `agent_id`.
            agent_id: Releasing agent; must be the holder.
            message: Optional completion note.

        Returns:
            A ToolResult; an error result when the directory is not held by
            `agent_id`.
        """
        try:
            await asyncio.to_thread(self.coordinator.release, directory, agent_id, message)
        except CoordinationError as e:
            return _error(str(e), code=e.code.value)
        text = (
            f"Work completed successfully by agent {agent_id} in {directory}. "
            "Boop file removed and beep file created."
        )
        if message:
            text += f" Message: {message}"
        return ToolResult(text)

    async def check_status(
        self,
        directory: str,
        max_age_hours: float | None = None,
        auto_clean_stale: bool = False,
        new_agent_id: str | None = None,
        new_work_description: str | None = None,
    ) -> ToolResult:
        """Report a directory's state, optionally reclaiming a stale hold.

        Forwarded to the listener when delegation is enabled.

        Args:
            directory: Directory to inspect.
            max_age_hours: Staleness threshold, defaults to the configured one.
            auto_clean_stale: Remove a stale hold.
            new_agent_id: Agent to claim for after the cleanup.
            new_work_description: Description for that claim.

        Returns:
            A ToolResult with the rendered report; `meta["status"]` holds the
            DirectoryStatus as a dict.
        """
        default_age = self.config.coordination.default_max_age_hours
        max_age = default_age if max_age_hours is None else max_age_hours

        if self.delegating:
            result = await self.delegation.post(
                "/mcp/check_status",
                {
                    "directory": directory,
                    "maxAgeHours": max_age,
                    "autoCleanStale": auto_clean_stale,
                    "newAgentId": new_agent_id,
                    "newWorkDescription": new_work_description,
                },
            )
            return self._from_listener(result, json.dumps({"ok": True}))

        try:
            status = self.coordinator.status(directory, max_age)
            cleanup_message = ""
            cleanup_performed = False

            if status.state is WorkState.HELD and status.stale and status.held:
                if auto_clean_stale:
                    if new_agent_id:
                        reasons = agent_id_problems(new_agent_id, self.config.coordination)
                        if reasons:
                            return _error(
                                f'Invalid new agent ID "{new_agent_id}": {", ".join(reasons)}',
                                code="INVALID_AGENT_ID",
                            )
                    reclaim = self.coordinator.reclaim_stale(
                        directory,
                        status.holder or "unknown",
                        new_agent_id,
                        new_work_description,
                    )
                    cleanup_performed = True
                    cleanup_message = reclaim.message
                    status = self.coordinator.status(directory, max_age)
                else:
                    cleanup_message = (
                        f"STALE BOOP DETECTED: claimed {describe_age(status.held.started_at)} "
                        f"(threshold: {max_age:g} hours). "
                        "Use auto_clean_stale=true to clean it up automatically."
                    )
        except CoordinationError as e:
            return _error(str(e), code=e.code.value)

        text = render_status(status, max_age, default_age, cleanup_message, cleanup_performed)
        return ToolResult(text, meta={"status": status.to_dict(), "cleanupPerformed": cleanup_performed})

    # -- platform tools ------------------------------------------------------

    async def update_user(self, message_id: str, update_content: str) -> ToolResult:
        """Send a follow-up into the conversation a captured record belongs to.

        Args:
            message_id: Inbox record id of the captured message.
            update_content: Follow-up text.

        Returns:
            A ToolResult; an error result when the record is unknown or the
            platform call fails.
        """
        if self.delegating:
            result = await self.delegation.post(
                "/mcp/update_user",
                {"messageId": message_id, "updateContent": update_content},
            )
            return self._from_listener(result, f"Update sent for message {message_id}")

        await asyncio.to_thread(self.inbox.auto_cleanup)
        record = await asyncio.to_thread(self.inbox.read, message_id)
        if record is None:
            return _error(f"Message {message_id} not found")

        try:
            client = self.correlator.client_for(record.platform)
            if record.platform is Platform.DISCORD:
                await self._discord_follow_up(client, record, update_content)
            else:
                parent = record.context.thread_ts or record.context.message_id
                if parent:
                    await client.reply(record.context.channel_id, update_content, parent)
                else:
                    await client.send_message(record.context.channel_id, update_content)
        except PlatformError as e:
            return _error(f"Failed to send update: {e}")

        return ToolResult(f"Update sent for message {message_id}")

    async def _discord_follow_up(
        self, client: PlatformClient, record: ConversationRecord, content: str
    ) -> None:
        ctx = record.context
        thread_id = ctx.thread_id
        if not thread_id and ctx.message_id:
            try:
                thread_id = await client.create_thread(
                    ctx.channel_id, ctx.message_id, record.text or "Conversation"
                )
            except PlatformError as e:
                log.warning("Could not open thread for %s: %s", record.id, e)
            else:
                await asyncio.to_thread(self.inbox.update_thread_id, record.id, thread_id)

        if thread_id:
            await client.send_message(thread_id, content)
        elif ctx.message_id:
            await client.reply(ctx.channel_id, content, ctx.message_id)
        else:
            await client.send_message(ctx.channel_id, content)

    async def initiate_conversation(
        self,
        platform: str,
        content: str,
        channel_id: str | None = None,
        agent_id: str | None = None,
    ) -> ToolResult:
        """Post a message and wait for the first human reply.

        Args:
            platform: "discord" or "slack".
            content: Opening message.
            channel_id: Target channel, defaults to the platform's default.
            agent_id: Agent starting the conversation.

        Returns:
            A ToolResult describing the reply or the timeout; `meta` carries
            the record ids and `timedOut`.
        """
        if self.delegating:
            conv = self.config.conversation
            result = await self.delegation.post(
                "/mcp/initiate_conversation",
                {
                    "platform": platform,
                    "channelId": channel_id,
                    "content": content,
                    "agentId": agent_id,
                },
                timeout_ms=int(conv.deadline_seconds * 1000) + self.config.delegation.timeout_base_ms,
            )
            return self._from_listener(result, "Conversation initiated via listener")

        try:
            target = Platform(platform)
        except ValueError:
            return _error(f"Unsupported platform: {platform}")

        await asyncio.to_thread(self.inbox.auto_cleanup)
        try:
            record = await self.correlator.send_initial(target, content, channel_id, agent_id)
        except PlatformError as e:
            return _error(f"Failed to initiate conversation: {e}")
        except OSError as e:
            return ToolResult(
                f"Message sent to {platform} channel {channel_id or 'default'}"
                f"{f' by agent {agent_id}' if agent_id else ''}, "
                f"but failed to store for future updates: {e}"
            )

        outcome = await self.correlator.wait_for_reply(record)
        meta = {
            "initiatingRecordId": outcome.initiating_record_id,
            "timedOut": outcome.timed_out,
            "replyId": outcome.reply.id if outcome.reply else None,
        }
        return ToolResult(render_outcome(outcome, agent_id), meta=meta)

    # -- diagnostics ---------------------------------------------------------

    async def check_listener_status(self, include_config: bool = False) -> ToolResult:
        """Describe delegation settings and check the listener when enabled.

        Args:
            include_config: Append listener, inbox and platform settings.

        Returns:
            A ToolResult; an error result when delegation is enabled without
            a base URL.
        """
        deleg = self.config.delegation
        lines = [
            "Listener Status Check",
            "",
            "Configuration:",
            f"- Listener enabled: {'yes' if deleg.enabled else 'no'}",
            f"- Base URL: {deleg.base_url or 'Not configured'}",
            f"- Auth token: {'configured' if deleg.auth_token else 'not configured'}",
            f"- Timeout: {deleg.timeout_base_ms}ms base, {deleg.timeout_max_ms}ms max",
            "",
        ]
        is_error = False

        if not deleg.enabled:
            lines.append(
                "Listener is disabled; tools use the local implementation instead of "
                "HTTP delegation."
            )
        elif not deleg.base_url:
            lines.append("Listener base URL not configured; cannot test connectivity.")
            is_error = True
        else:
            lines.append("Connectivity test:")
            lines += await self._check_listener()

        if include_config:
            platforms = self.config.platforms
            lines += [
                "",
                "Detailed configuration:",
                f"- Listener host: {self.config.listener.host}",
                f"- Listener port: {self.config.listener.port}",
                f"- Max concurrent requests: {deleg.max_concurrent_requests}",
                f"- Inbox directory: {self.config.inbox.directory}",
                f"- Discord default channel: {platforms.discord.default_channel_id or 'Not configured'}",
                f"- Discord bot token: {'configured' if platforms.discord.bot_token else 'not configured'}",
                f"- Slack default channel: {platforms.slack.default_channel_id or 'Not configured'}",
                f"- Slack bot token: {'configured' if platforms.slack.bot_token else 'not configured'}",
                f"- Slack app token: {'configured' if platforms.slack.app_token else 'not configured'}",
            ]

        return ToolResult("\n".join(lines), is_error=is_error)

    async def _check_listener(self) -> list[str]:
        lines: list[str] = []
        started = time.monotonic()
        health = await self.delegation.post("/health", {})
        elapsed_ms = int((time.monotonic() - started) * 1000)
        if health.ok:
            lines.append(f"- Health check passed ({elapsed_ms}ms)")
            if health.data is not None:
                lines.append(f"- Response: {json.dumps(health.data)}")
        elif health.status == 404:
            lines.append("- Health endpoint not found (404)")
        else:
            lines.append(f"- Health check failed ({health.status}): {health.error}")

        check = await self.delegation.post(
            "/mcp/check_status",
            {
                "directory": os.path.expanduser("~"),
                "maxAgeHours": self.config.coordination.default_max_age_hours,
            },
        )
        if check.ok:
            lines.append("- MCP endpoint connectivity confirmed")
        elif check.status in (408, 500, 503) and check.data is None:
            lines.append(f"- MCP endpoint test failed: {check.error}")
            lines.append("- The listener service may not be running")
        else:
            lines.append(f"- MCP endpoint reachable (got {check.status} response)")
        return lines
