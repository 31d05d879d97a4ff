"""Minimal REST clients for the chat platforms.

Only what conversation initiation and follow-ups need: send a message, reply
to one, and (Discord only) open a thread from a message.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from beepboop.config.schema import DiscordConfig, PlatformsConfig, SlackConfig
from beepboop.conversations.schema import Platform
from beepboop.logging import TRACE, get_logger

log = get_logger("platforms")

THREAD_NAME_LIMIT = 80
THREAD_REASON = "Beep/Boop agent initiated conversation"


class PlatformError(Exception):
    """A platform API call failed."""

    def __init__(self, platform: Platform, message: str, status: int | None = None) -> None:
        super().__init__(f"{platform.value}: {message}")
        self.platform = platform
        self.status = status


def thread_name(text: str) -> str:
    if len(text) > THREAD_NAME_LIMIT:
        return text[: THREAD_NAME_LIMIT - 3] + "..."
    return text


class PlatformClient(Protocol):
    """What the correlator and update_user need from a chat platform.

    Every coroutine returns the platform id of what it created and raises
    PlatformError when the platform refuses or cannot be reached.
    """

    platform: Platform
    default_channel_id: str | None
    supports_threads: bool

    def attribute(self, text: str, agent_id: str | None) -> str:
        """Prefix `text` with the agent id in the platform's markup."""
        ...

    async def send_message(self, channel_id: str, text: str) -> str:
        """Post `text` to `channel_id` and return the message id."""
        ...

    async def reply(self, channel_id: str, text: str, parent_id: str) -> str:
        """Post `text` as a reply to `parent_id` and return the reply's id."""
        ...

    async def create_thread(self, channel_id: str, message_id: str, name: str) -> str:
        """Open a thread on `message_id` and return the thread id.

        Args:
            channel_id: Channel holding the message.
            message_id: Message the thread starts from.
            name: Thread title; truncated to the platform limit.
        """
        ...


class DiscordClient:
    """Discord REST v10 with retries and exponential backoff plus jitter."""

    platform = Platform.DISCORD
    supports_threads = True

    def __init__(
        self,
        config: DiscordConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.default_channel_id = config.default_channel_id
        self._transport = transport
        self._sleep = sleep

    def attribute(self, text: str, agent_id: str | None) -> str:
        return f"**[{agent_id}]** {text}" if agent_id else text

    def backoff_seconds(self, attempt: int) -> float:
        """Delay before retry number `attempt + 1` (attempts count from 1)."""
        delay_ms = self.config.retry_base_delay_ms * 2 ** (attempt - 1)
        return (delay_ms + random.random() * 1000) / 1000

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        operation: str,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.config.api_base.rstrip('/')}{path}"
        request_headers = {"Authorization": f"Bot {self.config.bot_token}"}
        request_headers.update(headers or {})
        attempts = max(1, self.config.retry_attempts)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            log.log(TRACE, "%s attempt %d/%d", operation, attempt, attempts)
            try:
                async with httpx.AsyncClient(
                    timeout=self.config.timeout_ms / 1000, transport=self._transport
                ) as client:
                    response = await client.post(url, json=body, headers=request_headers)
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                log.debug("%s failed on attempt %d: %s", operation, attempt, e)
                if attempt == attempts:
                    break
                await self._sleep(self.backoff_seconds(attempt))

        status = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status = last_error.response.status_code
        raise PlatformError(self.platform, f"{operation} failed: {last_error}", status)

    async def send_message(self, channel_id: str, text: str) -> str:
        data = await self._post(
            f"/channels/{channel_id}/messages",
            {"content": text},
            f"Send Discord message to channel {channel_id}",
        )
        return str(data["id"])

    async def reply(self, channel_id: str, text: str, parent_id: str) -> str:
        data = await self._post(
            f"/channels/{channel_id}/messages",
            {"content": text, "message_reference": {"message_id": parent_id}},
            f"Send Discord reply to message {parent_id}",
        )
        return str(data["id"])

    async def create_thread(self, channel_id: str, message_id: str, name: str) -> str:
        data = await self._post(
            f"/channels/{channel_id}/messages/{message_id}/threads",
            {"name": thread_name(name), "auto_archive_duration": 60},
            f'Create Discord thread "{thread_name(name)}"',
            headers={"X-Audit-Log-Reason": THREAD_REASON},
        )
        return str(data["id"])


class SlackClient:
    """Slack Web API `chat.postMessage`; threads are implicit via thread_ts."""

    platform = Platform.SLACK
    supports_threads = False

    def __init__(
        self,
        config: SlackConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.default_channel_id = config.default_channel_id
        self._transport = transport

    def attribute(self, text: str, agent_id: str | None) -> str:
        return f"[{agent_id}] {text}" if agent_id else text

    async def _post_message(self, body: dict[str, Any]) -> str:
        url = f"{self.config.api_base.rstrip('/')}/chat.postMessage"
        headers = {"Authorization": f"Bearer {self.config.bot_token}"}
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_ms / 1000, transport=self._transport
            ) as client:
                response = await client.post(url, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PlatformError(self.platform, f"chat.postMessage failed: {e}") from e

        if not data.get("ok"):
            raise PlatformError(self.platform, f"chat.postMessage failed: {data.get('error')}")
        return str(data.get("ts") or (data.get("message") or {}).get("ts") or "")

    async def send_message(self, channel_id: str, text: str) -> str:
        return await self._post_message({"channel": channel_id, "text": text})

    async def reply(self, channel_id: str, text: str, parent_id: str) -> str:
        return await self._post_message({"channel": channel_id, "text": text, "thread_ts": parent_id})

    async def create_thread(self, channel_id: str, message_id: str, name: str) -> str:
        # Any message can be replied to in a thread with thread_ts=message_id
        return message_id


def build_platform_clients(
    config: PlatformsConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[Platform, PlatformClient]:
    """Clients for every platform that has a bot token configured.

    Args:
        config: Platform credentials and defaults.
        transport: Optional httpx transport shared by all clients (tests).

    Returns:
        Mapping of platform to client; platforms without a token are absent.
    """
    clients: dict[Platform, PlatformClient] = {}
    if config.discord.bot_token:
        clients[Platform.DISCORD] = DiscordClient(config.discord, transport)
    if config.slack.bot_token:
        clients[Platform.SLACK] = SlackClient(config.slack, transport)
    return clients
