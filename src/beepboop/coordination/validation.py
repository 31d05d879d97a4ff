"""Agent-id rules and the directory access policy."""

from __future__ import annotations

import re

from beepboop.config.schema import CoordinationConfig
from beepboop.errors import InvalidAgentIdError, PermissionDeniedError

AGENT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")


def agent_id_problems(agent_id: str | None, config: CoordinationConfig) -> list[str]:
    """Return every rule `agent_id` violates; empty means valid.

    Rules: non-empty after trimming, at most `max_agent_id_length` characters,
    one of `team_prefixes` when `require_team_prefix` is on, and only
    alphanumerics, dots, hyphens and underscores.
    """
    trimmed = (agent_id or "").strip()
    if not trimmed:
        return ["cannot be empty"]

    reasons: list[str] = []
    if len(trimmed) > config.max_agent_id_length:
        reasons.append(f"exceeds maximum length of {config.max_agent_id_length}")
    if config.require_team_prefix and config.team_prefixes:
        if not any(trimmed.startswith(prefix) for prefix in config.team_prefixes):
            reasons.append(f"must start with one of: {', '.join(config.team_prefixes)}")
    if not AGENT_ID_PATTERN.match(trimmed):
        reasons.append(
            "contains invalid characters (only alphanumeric, hyphens, underscores, dots allowed)"
        )
    return reasons


def is_valid_agent_id(agent_id: str | None, config: CoordinationConfig) -> bool:
    return not agent_id_problems(agent_id, config)


def check_agent_id(
    agent_id: str | None, config: CoordinationConfig, path: str | None = None
) -> str:
    """Validate `agent_id` and return it trimmed.

    Args:
        agent_id: Candidate id.
        config: Length, prefix and character rules.
        path: Directory named in the error, if any.

    Returns:
        The id without surrounding whitespace.

    Raises:
        InvalidAgentIdError: one or more rules are broken; `reasons` lists them.
    """
    reasons = agent_id_problems(agent_id, config)
    if reasons:
        raise InvalidAgentIdError(agent_id or "", reasons, path)
    return (agent_id or "").strip()


def is_directory_allowed(directory: str, config: CoordinationConfig) -> bool:
    """Blocked prefixes win; an empty allow list allows everything else."""
    if any(directory.startswith(blocked) for blocked in config.blocked_directories):
        return False
    if not config.allowed_directories:
        return True
    return any(directory.startswith(allowed) for allowed in config.allowed_directories)


def check_directory_access(directory: str, config: CoordinationConfig) -> None:
    """Raise PermissionDeniedError if the policy refuses `directory`."""
    if is_directory_allowed(directory, config):
        return

    blocked = next(
        (b for b in config.blocked_directories if directory.startswith(b)),
        None,
    )
    if blocked is not None:
        reason = f"Directory is blocked: {blocked}"
    else:
        reason = f"Directory not in allowed list: {', '.join(config.allowed_directories)}"
    raise PermissionDeniedError(f"Access denied to directory {directory}. {reason}", directory)
