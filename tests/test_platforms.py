"""Tests for the Discord and Slack REST clients."""

from __future__ import annotations

import json

import httpx
import pytest

from beepboop.config import DiscordConfig, PlatformsConfig, SlackConfig
from beepboop.conversations import (
    DiscordClient,
    Platform,
    PlatformError,
    SlackClient,
    build_platform_clients,
)
from beepboop.conversations.platforms import thread_name


class Recorder:
    """MockTransport handler that replays canned responses and keeps requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def body(self, index: int = 0) -> dict:
        return json.loads(self.requests[index].content)


async def no_sleep(seconds: float) -> None:
    return None


def discord(recorder: Recorder, **overrides) -> DiscordClient:
    values = {"bot_token": "bot-tok", "default_channel_id": "C1"}
    values.update(overrides)
    return DiscordClient(DiscordConfig(**values), httpx.MockTransport(recorder), sleep=no_sleep)


class TestDiscord:
    """Test Discord REST calls."""

    @pytest.mark.asyncio
    async def test_send_message(self) -> None:
        """Sending returns the platform's message id."""
        recorder = Recorder(httpx.Response(200, json={"id": "111"}))
        client = discord(recorder)

        assert await client.send_message("C1", "hello") == "111"
        request = recorder.requests[0]
        assert str(request.url) == "https://discord.com/api/v10/channels/C1/messages"
        assert request.headers["Authorization"] == "Bot bot-tok"
        assert recorder.body() == {"content": "hello"}

    @pytest.mark.asyncio
    async def test_reply_references_parent(self) -> None:
        """Replies reference the parent message."""
        recorder = Recorder(httpx.Response(200, json={"id": "112"}))
        await discord(recorder).reply("C1", "follow-up", "111")
        assert recorder.body()["message_reference"] == {"message_id": "111"}

    @pytest.mark.asyncio
    async def test_create_thread(self) -> None:
        """Thread names are trimmed and the thread id returned."""
        recorder = Recorder(httpx.Response(201, json={"id": "T5"}))
        thread_id = await discord(recorder).create_thread("C1", "111", "x" * 100)

        assert thread_id == "T5"
        request = recorder.requests[0]
        assert request.url.path == "/api/v10/channels/C1/messages/111/threads"
        assert request.headers["X-Audit-Log-Reason"]
        body = recorder.body()
        assert len(body["name"]) == 80
        assert body["name"].endswith("...")
        assert body["auto_archive_duration"] == 60

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        """Failures are retried with growing, jittered delays."""
        delays: list[float] = []

        async def record_sleep(seconds: float) -> None:
            delays.append(seconds)

        recorder = Recorder(
            httpx.Response(500),
            httpx.Response(429),
            httpx.Response(200, json={"id": "ok"}),
        )
        client = DiscordClient(
            DiscordConfig(bot_token="t", retry_attempts=3, retry_base_delay_ms=1000),
            httpx.MockTransport(recorder),
            sleep=record_sleep,
        )

        assert await client.send_message("C1", "hi") == "ok"
        assert len(recorder.requests) == 3
        assert len(delays) == 2
        assert 1.0 <= delays[0] < 2.0
        assert 2.0 <= delays[1] < 3.0

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self) -> None:
        """The last failure is raised once attempts run out."""
        recorder = Recorder(httpx.Response(403), httpx.Response(403))
        client = discord(recorder, retry_attempts=2)

        with pytest.raises(PlatformError) as exc_info:
            await client.send_message("C1", "hi")
        assert exc_info.value.status == 403
        assert exc_info.value.platform is Platform.DISCORD
        assert len(recorder.requests) == 2

    def test_attribution(self) -> None:
        """Agent attribution prefixes the text."""
        client = discord(Recorder())
        assert client.attribute("hi", "backend-1") == "**[backend-1]** hi"
        assert client.attribute("hi", None) == "hi"


class TestSlack:
    """Test Slack Web API calls."""

    def slack(self, recorder: Recorder) -> SlackClient:
        return SlackClient(
            SlackConfig(bot_token="xoxb", default_channel_id="C2"),
            httpx.MockTransport(recorder),
        )

    @pytest.mark.asyncio
    async def test_send_message(self) -> None:
        """Sending returns the platform's message id."""
        recorder = Recorder(httpx.Response(200, json={"ok": True, "ts": "1700.01"}))
        ts = await self.slack(recorder).send_message("C2", "hello")

        assert ts == "1700.01"
        request = recorder.requests[0]
        assert str(request.url) == "https://slack.com/api/chat.postMessage"
        assert request.headers["Authorization"] == "Bearer xoxb"
        assert recorder.body() == {"channel": "C2", "text": "hello"}

    @pytest.mark.asyncio
    async def test_reply_in_thread(self) -> None:
        """Slack replies post with thread_ts."""
        recorder = Recorder(httpx.Response(200, json={"ok": True, "ts": "1700.02"}))
        await self.slack(recorder).reply("C2", "more", "1700.01")
        assert recorder.body()["thread_ts"] == "1700.01"

    @pytest.mark.asyncio
    async def test_api_error(self) -> None:
        """An ok=false response raises with Slack's error code."""
        recorder = Recorder(httpx.Response(200, json={"ok": False, "error": "channel_not_found"}))
        with pytest.raises(PlatformError, match="channel_not_found"):
            await self.slack(recorder).send_message("nope", "hello")

    @pytest.mark.asyncio
    async def test_threads_are_implicit(self) -> None:
        """Slack threads are the parent message ts."""
        client = self.slack(Recorder())
        assert client.supports_threads is False
        assert await client.create_thread("C2", "1700.01", "topic") == "1700.01"

    def test_attribution(self) -> None:
        """Agent attribution prefixes the text."""
        assert self.slack(Recorder()).attribute("hi", "qa-2") == "[qa-2] hi"


class TestHelpers:
    """Test module helpers."""

    def test_thread_name_short(self) -> None:
        """Short names are kept as-is."""
        assert thread_name("short") == "short"
        assert thread_name("x" * 80) == "x" * 80

    def test_build_clients_only_with_tokens(self) -> None:
        """Only platforms with a token get a client."""
        clients = build_platform_clients(
            PlatformsConfig(discord=DiscordConfig(bot_token="t"), slack=SlackConfig())
        )
        assert set(clients) == {Platform.DISCORD}
        assert isinstance(clients[Platform.DISCORD], DiscordClient)
