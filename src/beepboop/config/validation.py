"""Sanity checks on a loaded Config."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from beepboop.config.schema import Config
from beepboop.errors import ConfigError
from beepboop.logging import LEVEL_NAMES

_OCTAL_MODE = re.compile(r"^0[0-7]{3}$")

VALID_LOG_LEVELS = set(LEVEL_NAMES)


def config_problems(config: Config) -> list[str]:
    """Return every problem found in `config`, empty when it is usable."""
    problems: list[str] = []
    coord = config.coordination

    if coord.default_max_age_hours < 0:
        problems.append("coordination.default_max_age_hours must be >= 0")
    if not 1 <= coord.max_agent_id_length <= 500:
        problems.append("coordination.max_agent_id_length must be between 1 and 500")
    if not _OCTAL_MODE.match(coord.file_permissions):
        problems.append(
            f"coordination.file_permissions must be an octal mode like 0644, "
            f"got {coord.file_permissions!r}"
        )
    level = config.logging.level
    if level is not None and level.lower() not in VALID_LOG_LEVELS:
        problems.append(f"logging.level must be one of {sorted(VALID_LOG_LEVELS)}, got {level!r}")

    deleg = config.delegation
    if deleg.enabled:
        parsed = urlparse(deleg.base_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            problems.append(
                f"delegation.base_url must be an http(s) URL, got {deleg.base_url!r}"
            )
        if not 1 <= deleg.max_concurrent_requests <= 500:
            problems.append("delegation.max_concurrent_requests must be between 1 and 500")
        if deleg.timeout_base_ms < 1000:
            problems.append("delegation.timeout_base_ms must be >= 1000")
        if deleg.timeout_per_char_ms < 0:
            problems.append("delegation.timeout_per_char_ms must be >= 0")
        if deleg.timeout_max_ms < deleg.timeout_base_ms:
            problems.append("delegation.timeout_max_ms must be >= timeout_base_ms")

    conv = config.conversation
    if conv.poll_interval_ms <= 0:
        problems.append("conversation.poll_interval_ms must be > 0")
    if conv.deadline_minutes <= 0:
        problems.append("conversation.deadline_minutes must be > 0")

    if not 1 <= config.listener.port <= 65535:
        problems.append(f"listener.port must be a TCP port, got {config.listener.port}")

    return problems


def validate_config(config: Config) -> Config:
    """Raise ConfigError listing every problem; return `config` when valid."""
    problems = config_problems(config)
    if problems:
        raise ConfigError("Invalid configuration: " + "; ".join(problems))
    return config
