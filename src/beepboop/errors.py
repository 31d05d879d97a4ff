"""Error taxonomy for directory coordination, delegation and correlation.

Every failure carries a machine-readable ErrorCode plus the directory path or
record id it concerns, so callers can branch on the class or on `.code` and
still show a readable reason.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    """Kinds of coordination failure."""

    DIRECTORY_NOT_FOUND = "DIRECTORY_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    IO_FAILURE = "IO_FAILURE"
    INVALID_AGENT_ID = "INVALID_AGENT_ID"
    NOT_HELD = "NOT_HELD"
    AGENT_MISMATCH = "AGENT_MISMATCH"
    CONFLICT_IN_USE = "CONFLICT_IN_USE"
    INVALID_STATE = "INVALID_STATE"
    DELEGATION_UNAVAILABLE = "DELEGATION_UNAVAILABLE"
    DELEGATION_TIMEOUT = "DELEGATION_TIMEOUT"
    DELEGATION_REMOTE_ERROR = "DELEGATION_REMOTE_ERROR"
    CORRELATION_TIMEOUT = "CORRELATION_TIMEOUT"


class CoordinationError(Exception):
    """Base class for all coordination failures."""

    code: ErrorCode = ErrorCode.IO_FAILURE

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        return f"{self.message} ({self.code.value})"


class DirectoryNotFoundError(CoordinationError):
    """The target directory does not exist."""

    code = ErrorCode.DIRECTORY_NOT_FOUND

    def __init__(self, path: str) -> None:
        super().__init__(f"Directory not found: {path}", path)


class PermissionDeniedError(CoordinationError):
    """Filesystem permissions or the directory policy refused access."""

    code = ErrorCode.PERMISSION_DENIED


class IOFailureError(CoordinationError):
    """Any other filesystem failure while touching a marker."""

    code = ErrorCode.IO_FAILURE


class InvalidAgentIdError(CoordinationError):
    """Agent id violates the length, charset or prefix rules."""

    code = ErrorCode.INVALID_AGENT_ID

    def __init__(self, agent_id: str, reasons: list[str], path: str | None = None) -> None:
        self.agent_id = agent_id
        self.reasons = list(reasons)
        detail = ", ".join(self.reasons) or "invalid"
        super().__init__(f'Invalid agent ID "{agent_id}": {detail}', path)


class NotHeldError(CoordinationError):
    """Release attempted on a directory nobody holds."""

    code = ErrorCode.NOT_HELD

    def __init__(self, path: str) -> None:
        super().__init__(f"Cannot end work in {path}: no work is currently in progress", path)


class AgentMismatchError(CoordinationError):
    """Release attempted by an agent that is not the holder."""

    code = ErrorCode.AGENT_MISMATCH

    def __init__(self, path: str, holder: str, agent_id: str) -> None:
        self.holder = holder
        self.agent_id = agent_id
        super().__init__(
            f"Cannot end work in {path}: work is claimed by different agent "
            f"({holder} vs {agent_id})",
            path,
        )


class ConflictInUseError(CoordinationError):
    """The directory is held by another agent."""

    code = ErrorCode.CONFLICT_IN_USE

    def __init__(self, path: str, holder: str, hint: str | None = None) -> None:
        self.holder = holder
        message = f"Directory {path} is already being worked on by agent {holder}"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message, path)


class InvalidStateError(CoordinationError):
    """The markers refuse the transition.

    Without a message this is the both-markers case, which only a human can
    resolve.
    """

    code = ErrorCode.INVALID_STATE

    def __init__(self, path: str, message: str | None = None) -> None:
        super().__init__(
            message
            or f"Invalid state in {path}: both beep and boop files exist. "
            "Manual inspection and cleanup required.",
            path,
        )


class CorrelationTimeoutError(CoordinationError):
    """No qualifying reply arrived before the deadline."""

    code = ErrorCode.CORRELATION_TIMEOUT

    def __init__(self, record_id: str, deadline_seconds: float) -> None:
        self.record_id = record_id
        self.deadline_seconds = deadline_seconds
        super().__init__(
            f"No reply to conversation {record_id} within {deadline_seconds:g}s",
            record_id,
        )


class ConfigError(ValueError):
    """Configuration failed validation."""
