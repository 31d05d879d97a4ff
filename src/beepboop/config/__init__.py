"""Configuration management for beepboop.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/beepboop/ or %PROGRAMDATA%)
- User-level config (~/.config/beepboop/ or %APPDATA%)
- Project-level config ($project_root/.beepboop/)
- BEEP_BOOP_* environment variable overrides (highest priority)

Example usage:
    from beepboop.config import load_config, validate_config

    config = validate_config(load_config(project_root="/path/to/project"))
    print(config.coordination.default_max_age_hours)
"""

from beepboop.config.loader import (
    dict_to_config,
    env_overrides,
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from beepboop.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
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
from beepboop.config.secrets import (
    clear_secret_cache,
    fetch_secret,
)
from beepboop.config.validation import config_problems, validate_config

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    "dict_to_config",
    "env_overrides",
    "validate_config",
    "config_problems",
    # Schema types
    "CoordinationConfig",
    "DelegationConfig",
    "ConversationConfig",
    "InboxConfig",
    "ListenerConfig",
    "PlatformsConfig",
    "DiscordConfig",
    "SlackConfig",
    "LoggingConfig",
    # Secret management
    "fetch_secret",
    "clear_secret_cache",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
