"""Configuration file loading and caching.

Handles:
- YAML file parsing
- BEEP_BOOP_* environment variable overrides
- Token resolution through fetch_secret()
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from beepboop.config.merge import merge_configs
from beepboop.config.paths import get_config_paths
from beepboop.config.schema import (
    Config,
    ConversationConfig,
    CoordinationConfig,
    DelegationConfig,
    DiscordConfig,
    InboxConfig,
    ListenerConfig,
    LoggingConfig,
    PlatformsConfig,
    SlackConfig,
)
from beepboop.config.secrets import fetch_secret

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("beepboop.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []

_TRUE_VALUES = {"1", "true", "yes", "on"}

# (env var, section path, converter)
_ENV_MAP: list[tuple[str, tuple[str, ...], str]] = [
    ("BEEP_BOOP_DEFAULT_MAX_AGE_HOURS", ("coordination", "default_max_age_hours"), "float"),
    ("BEEP_BOOP_MAX_AGENT_ID_LENGTH", ("coordination", "max_agent_id_length"), "int"),
    ("BEEP_BOOP_REQUIRE_TEAM_PREFIX", ("coordination", "require_team_prefix"), "bool"),
    ("BEEP_BOOP_TEAM_PREFIXES", ("coordination", "team_prefixes"), "list"),
    ("BEEP_BOOP_FILE_PERMISSIONS", ("coordination", "file_permissions"), "str"),
    ("BEEP_BOOP_ALLOWED_DIRECTORIES", ("coordination", "allowed_directories"), "list"),
    ("BEEP_BOOP_BLOCKED_DIRECTORIES", ("coordination", "blocked_directories"), "list"),
    ("BEEP_BOOP_MANAGE_GITIGNORE", ("coordination", "manage_gitignore"), "bool"),
    ("BEEP_BOOP_LISTENER_ENABLED", ("delegation", "enabled"), "bool"),
    ("BEEP_BOOP_LISTENER_BASE_URL", ("delegation", "base_url"), "str"),
    ("BEEP_BOOP_LISTENER_TIMEOUT_BASE_MS", ("delegation", "timeout_base_ms"), "int"),
    ("BEEP_BOOP_LISTENER_TIMEOUT_PER_CHAR_MS", ("delegation", "timeout_per_char_ms"), "int"),
    ("BEEP_BOOP_LISTENER_TIMEOUT_MAX_MS", ("delegation", "timeout_max_ms"), "int"),
    (
        "BEEP_BOOP_MAX_CONCURRENT_LISTENER_REQUESTS",
        ("delegation", "max_concurrent_requests"),
        "int",
    ),
    ("BEEP_BOOP_CONVERSATION_POLL_INTERVAL_MS", ("conversation", "poll_interval_ms"), "int"),
    ("BEEP_BOOP_CONVERSATION_TIMEOUT_MINUTES", ("conversation", "deadline_minutes"), "float"),
    ("BEEP_BOOP_INGRESS_INBOX_DIR", ("inbox", "directory"), "str"),
    ("BEEP_BOOP_AUTO_CLEANUP_ENABLED", ("inbox", "cleanup_enabled"), "bool"),
    ("BEEP_BOOP_INGRESS_HTTP_PORT", ("listener", "port"), "int"),
    (
        "BEEP_BOOP_DISCORD_DEFAULT_CHANNEL_ID",
        ("platforms", "discord", "default_channel_id"),
        "str",
    ),
    ("BEEP_BOOP_SLACK_DEFAULT_CHANNEL_ID", ("platforms", "slack", "default_channel_id"), "str"),
    ("BEEP_BOOP_SLACK_CAPTURE_ENABLED", ("platforms", "slack", "capture_enabled"), "bool"),
    ("BEEP_BOOP_LOG_LEVEL", ("logging", "level"), "str"),
    ("BEEP_BOOP_LOG", ("logging", "file"), "str"),
]


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML as dict, or empty dict on error.
    """
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def _convert(raw: str, kind: str) -> Any:
    if kind == "bool":
        return raw.strip().lower() in _TRUE_VALUES
    if kind == "int":
        return int(raw)
    if kind == "float":
        return float(raw)
    if kind == "list":
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


def env_overrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Build config dict from BEEP_BOOP_* environment variables.

    Tokens are NOT loaded here; they go through fetch_secret().
    Unparseable numbers are logged and skipped.

    Returns:
        Config dict with values from environment.
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}

    for name, path, kind in _ENV_MAP:
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = _convert(raw, kind)
        except ValueError:
            _log.warning("Ignoring %s=%r: expected %s", name, raw, kind)
            continue

        node = overrides
        for key in path[:-1]:
            node = node.setdefault(key, {})
        node[path[-1]] = value

    return overrides


def _targets_local_listener(base_url: str | None, port: int) -> bool:
    if not base_url:
        return False
    parsed = urlparse(base_url)
    return parsed.hostname in {"localhost", "127.0.0.1", "::1"} and parsed.port == port


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass.

    Args:
        data: Merged configuration dictionary.

    Returns:
        Typed Config object with tokens resolved.
    """
    coord_data = data.get("coordination", {})
    defaults = CoordinationConfig()
    coordination = CoordinationConfig(
        default_max_age_hours=float(
            coord_data.get("default_max_age_hours", defaults.default_max_age_hours)
        ),
        max_agent_id_length=int(
            coord_data.get("max_agent_id_length", defaults.max_agent_id_length)
        ),
        require_team_prefix=bool(coord_data.get("require_team_prefix", False)),
        team_prefixes=[p for p in coord_data.get("team_prefixes", []) if isinstance(p, str)],
        file_permissions=str(coord_data.get("file_permissions", defaults.file_permissions)),
        allowed_directories=[
            d for d in coord_data.get("allowed_directories", []) if isinstance(d, str)
        ],
        blocked_directories=[
            d for d in coord_data.get("blocked_directories", []) if isinstance(d, str)
        ],
        manage_gitignore=bool(coord_data.get("manage_gitignore", True)),
        release_filename=coord_data.get("release_filename", defaults.release_filename),
        hold_filename=coord_data.get("hold_filename", defaults.hold_filename),
    )

    # Listener (the ingress side)
    listener_data = data.get("listener", {})
    listener = ListenerConfig(
        host=listener_data.get("host", ListenerConfig.host),
        port=int(listener_data.get("port", ListenerConfig.port)),
        auth_token=listener_data.get("auth_token")
        or fetch_secret("BEEP_BOOP_INGRESS_HTTP_AUTH_TOKEN"),
    )

    # Delegation (the client side of the same listener)
    deleg_data = data.get("delegation", {})
    deleg_defaults = DelegationConfig()
    base_url = deleg_data.get("base_url", deleg_defaults.base_url)
    auth_token = deleg_data.get("auth_token") or fetch_secret("BEEP_BOOP_LISTENER_AUTH_TOKEN")
    if not auth_token and _targets_local_listener(base_url, listener.port):
        auth_token = listener.auth_token
    delegation = DelegationConfig(
        enabled=bool(deleg_data.get("enabled", False)),
        base_url=base_url,
        auth_token=auth_token,
        timeout_base_ms=int(deleg_data.get("timeout_base_ms", deleg_defaults.timeout_base_ms)),
        timeout_per_char_ms=int(
            deleg_data.get("timeout_per_char_ms", deleg_defaults.timeout_per_char_ms)
        ),
        timeout_max_ms=int(deleg_data.get("timeout_max_ms", deleg_defaults.timeout_max_ms)),
        max_concurrent_requests=int(
            deleg_data.get("max_concurrent_requests", deleg_defaults.max_concurrent_requests)
        ),
    )

    conv_data = data.get("conversation", {})
    conversation = ConversationConfig(
        poll_interval_ms=int(conv_data.get("poll_interval_ms", ConversationConfig.poll_interval_ms)),
        deadline_minutes=float(
            conv_data.get("deadline_minutes", ConversationConfig.deadline_minutes)
        ),
    )

    inbox_data = data.get("inbox", {})
    inbox_defaults = InboxConfig()
    inbox = InboxConfig(
        directory=inbox_data.get("directory", inbox_defaults.directory),
        cleanup_enabled=bool(inbox_data.get("cleanup_enabled", False)),
        cleanup_interval_hours=float(
            inbox_data.get("cleanup_interval_hours", inbox_defaults.cleanup_interval_hours)
        ),
        processed_retention_days=float(
            inbox_data.get("processed_retention_days", inbox_defaults.processed_retention_days)
        ),
        unprocessed_retention_days=float(
            inbox_data.get(
                "unprocessed_retention_days", inbox_defaults.unprocessed_retention_days
            )
        ),
        max_files_per_dir=int(
            inbox_data.get("max_files_per_dir", inbox_defaults.max_files_per_dir)
        ),
    )

    platforms_data = data.get("platforms", {})
    discord_data = platforms_data.get("discord", {})
    slack_data = platforms_data.get("slack", {})
    discord_defaults = DiscordConfig()
    slack_defaults = SlackConfig()
    platforms = PlatformsConfig(
        discord=DiscordConfig(
            bot_token=fetch_secret("BEEP_BOOP_DISCORD_BOT_TOKEN"),
            default_channel_id=discord_data.get("default_channel_id"),
            api_base=discord_data.get("api_base", discord_defaults.api_base),
            retry_attempts=int(
                discord_data.get("retry_attempts", discord_defaults.retry_attempts)
            ),
            retry_base_delay_ms=int(
                discord_data.get("retry_base_delay_ms", discord_defaults.retry_base_delay_ms)
            ),
            timeout_ms=int(discord_data.get("timeout_ms", discord_defaults.timeout_ms)),
        ),
        slack=SlackConfig(
            bot_token=fetch_secret("BEEP_BOOP_SLACK_BOT_TOKEN"),
            app_token=fetch_secret("BEEP_BOOP_SLACK_APP_TOKEN"),
            default_channel_id=slack_data.get("default_channel_id"),
            api_base=slack_data.get("api_base", slack_defaults.api_base),
            timeout_ms=int(slack_data.get("timeout_ms", slack_defaults.timeout_ms)),
            capture_enabled=bool(
                slack_data.get("capture_enabled", slack_defaults.capture_enabled)
            ),
        ),
    )

    log_data = data.get("logging", {})
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    known_keys = {
        "coordination",
        "delegation",
        "conversation",
        "inbox",
        "listener",
        "platforms",
        "logging",
    }
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(
        coordination=coordination,
        delegation=delegation,
        conversation=conversation,
        inbox=inbox,
        listener=listener,
        platforms=platforms,
        logging=logging_config,
        extra=extra,
    )


def load_config(project_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. BEEP_BOOP_* environment variables
    2. Project config ($project_root/.beepboop/config.yaml)
    3. User config (~/.config/beepboop/config.yaml or %APPDATA%)
    4. System config (/etc/beepboop/ or %PROGRAMDATA%)

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    configs: list[dict[str, Any]] = []

    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    # Cache only global config (no project_root)
    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    global _cached_config
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config.

    Useful for testing or forcing a reload.
    """
    global _cached_config
    _cached_config = None


def reload_config(project_root: str | None = None) -> Config:
    """Reload config from files and notify callbacks.

    Args:
        project_root: Optional project directory.

    Returns:
        The newly loaded Config.
    """
    config = load_config(project_root=project_root, reload=True)

    for callback in _reload_callbacks:
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)

    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a callback to be called when config is reloaded.

    Returns:
        A function to unregister the callback.
    """
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister
