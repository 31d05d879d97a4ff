"""Root pytest configuration for all tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from beepboop.config import (
    Config,
    ConversationConfig,
    CoordinationConfig,
    InboxConfig,
    clear_secret_cache,
    reset_config,
)
from beepboop.conversations import (
    AuthoredBy,
    ConversationRecord,
    InboxStore,
    MessageContext,
    Platform,
    PlatformError,
)
from beepboop.coordination import DirectoryCoordinator

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)

T0 = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


class FakeClock:
    """A settable clock for coordinators and correlators."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep real BEEP_BOOP_* settings, user config and .env.secrets out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("BEEP_BOOP_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)
    reset_config()
    clear_secret_cache()
    yield
    reset_config()
    clear_secret_cache()


@pytest.fixture
def work_dir(tmp_path: Path) -> str:
    path = tmp_path / "work"
    path.mkdir()
    return str(path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def coord_config() -> CoordinationConfig:
    return CoordinationConfig(manage_gitignore=False)


@pytest.fixture
def coordinator(coord_config: CoordinationConfig, clock: FakeClock) -> DirectoryCoordinator:
    return DirectoryCoordinator(coord_config, clock=clock)


@pytest.fixture
def inbox_config(tmp_path: Path) -> InboxConfig:
    return InboxConfig(directory=str(tmp_path / "inbox"))


@pytest.fixture
def inbox(inbox_config: InboxConfig) -> InboxStore:
    return InboxStore(inbox_config)


@pytest.fixture
def config(inbox_config: InboxConfig, coord_config: CoordinationConfig) -> Config:
    return Config(
        coordination=coord_config,
        inbox=inbox_config,
        conversation=ConversationConfig(poll_interval_ms=20, deadline_minutes=0.005),
    )


def _make_record(
    platform: Platform = Platform.DISCORD,
    text: str = "hello",
    author: str = "user-1",
    channel_id: str = "C1",
    created_at: datetime = T0,
    **context: str,
) -> ConversationRecord:
    return ConversationRecord(
        platform=platform,
        text=text,
        authored_by=AuthoredBy(author, author),
        context=MessageContext(channel_id=channel_id, **context),
        created_at=created_at,
    )


@pytest.fixture
def make_record():
    return _make_record


class FakePlatform:
    """In-memory PlatformClient."""

    def __init__(
        self,
        platform: Platform = Platform.DISCORD,
        default_channel_id: str | None = "C1",
        thread_error: bool = False,
        send_error: bool = False,
    ) -> None:
        self.platform = platform
        self.default_channel_id = default_channel_id
        self.supports_threads = platform is Platform.DISCORD
        self.thread_error = thread_error
        self.send_error = send_error
        self.sent: list[tuple[str, str]] = []
        self.replies: list[tuple[str, str, str]] = []
        self.threads: list[tuple[str, str, str]] = []

    def attribute(self, text: str, agent_id: str | None) -> str:
        return f"[{agent_id}] {text}" if agent_id else text

    async def send_message(self, channel_id: str, text: str) -> str:
        if self.send_error:
            raise PlatformError(self.platform, "Unknown Channel", 404)
        self.sent.append((channel_id, text))
        return f"msg-{len(self.sent)}"

    async def reply(self, channel_id: str, text: str, parent_id: str) -> str:
        self.replies.append((channel_id, text, parent_id))
        return f"reply-{len(self.replies)}"

    async def create_thread(self, channel_id: str, message_id: str, name: str) -> str:
        if self.thread_error:
            raise PlatformError(self.platform, "Missing Access", 403)
        self.threads.append((channel_id, message_id, name))
        return f"thread-{message_id}"


@pytest.fixture
def fake_platform():
    return FakePlatform
