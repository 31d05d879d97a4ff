"""Configuration schema dataclasses for beepboop.

Defines the structure of configuration at all levels (system, user, project,
environment). Every field has a default so partial configs merge cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_LISTENER_PORT = 7077


@dataclass
class CoordinationConfig:
    """Directory marker and agent-id rules.

    Example config.yaml:
        coordination:
          default_max_age_hours: 12
          require_team_prefix: true
          team_prefixes: ["frontend-", "backend-"]
          blocked_directories: ["/etc", "/var"]
    """

    default_max_age_hours: float = 24.0  # Hold records older than this are stale
    max_agent_id_length: int = 100
    require_team_prefix: bool = False
    team_prefixes: list[str] = field(default_factory=list)
    file_permissions: str = "0644"  # Octal mode applied to marker files
    allowed_directories: list[str] = field(default_factory=list)  # Empty = all allowed
    blocked_directories: list[str] = field(default_factory=list)
    manage_gitignore: bool = True
    release_filename: str = "beep"
    hold_filename: str = "boop"

    @property
    def file_mode(self) -> int:
        return int(self.file_permissions, 8)


@dataclass
class DelegationConfig:
    """Forwarding of tool calls to one shared listener process."""

    enabled: bool = False
    base_url: str | None = f"http://localhost:{DEFAULT_LISTENER_PORT}"
    auth_token: str | None = None
    timeout_base_ms: int = 10_000
    timeout_per_char_ms: int = 5  # Extra time per character of serialized body
    timeout_max_ms: int = 60_000  # Hard cap
    max_concurrent_requests: int = 25


@dataclass
class ConversationConfig:
    """Polling parameters for reply correlation."""

    poll_interval_ms: int = 2_000
    deadline_minutes: float = 5.0

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def deadline_seconds(self) -> float:
        return self.deadline_minutes * 60


@dataclass
class InboxConfig:
    """Shared conversation record store on disk."""

    directory: str = "~/.beep-boop-inbox"
    cleanup_enabled: bool = False
    cleanup_interval_hours: float = 24.0  # 0 = no interval gating
    processed_retention_days: float = 7.0  # 0 = keep forever
    unprocessed_retention_days: float = 30.0
    max_files_per_dir: int = 0  # 0 = no cap


@dataclass
class ListenerConfig:
    """The shared listener HTTP endpoint."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_LISTENER_PORT
    auth_token: str | None = None


@dataclass
class DiscordConfig:
    """Discord REST settings."""

    bot_token: str | None = None
    default_channel_id: str | None = None
    api_base: str = "https://discord.com/api/v10"
    retry_attempts: int = 3
    retry_base_delay_ms: int = 1_000
    timeout_ms: int = 30_000


@dataclass
class SlackConfig:
    """Slack Web API settings."""

    bot_token: str | None = None
    app_token: str | None = None  # xapp- token for Socket Mode capture
    default_channel_id: str | None = None
    api_base: str = "https://slack.com/api"
    timeout_ms: int = 30_000
    capture_enabled: bool = True  # listener captures via Socket Mode when both tokens are set


@dataclass
class PlatformsConfig:
    """Chat platform credentials and defaults."""

    discord: DiscordConfig = field(default_factory=DiscordConfig)
    slack: SlackConfig = field(default_factory=SlackConfig)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # error, warn, info, debug, trace
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    coordination: CoordinationConfig = field(default_factory=CoordinationConfig)
    delegation: DelegationConfig = field(default_factory=DelegationConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    inbox: InboxConfig = field(default_factory=InboxConfig)
    listener: ListenerConfig = field(default_factory=ListenerConfig)
    platforms: PlatformsConfig = field(default_factory=PlatformsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level sections are kept here
    extra: dict[str, Any] = field(default_factory=dict)
