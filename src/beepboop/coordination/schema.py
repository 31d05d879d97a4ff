"""Data schemas for directory work coordination."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_RELEASE_MESSAGE = "Work completed"
DEFAULT_WORK_DESCRIPTION = "Work in progress"
RESTORE_DESCRIPTION = "Work restoration after failure"
RECLAIM_DESCRIPTION = "Claimed after stale cleanup"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a trailing Z."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_or(value: Any, fallback: datetime | None) -> datetime:
    """Parse `value`, or return `fallback` (now if None) when it is missing or bad."""
    if isinstance(value, str):
        try:
            return parse_timestamp(value)
        except ValueError:
            pass
    return fallback or utcnow()


def _text_field(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


class WorkState(Enum):
    """State of a directory derived from which markers exist."""

    UNCLAIMED = "NO_COORDINATION"  # neither marker
    RELEASED_AVAILABLE = "WORK_ALLOWED"  # release marker only
    HELD = "WORK_IN_PROGRESS"  # hold marker only
    CONFLICT = "INVALID_STATE"  # both markers

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


@dataclass
class ReleaseRecord:
    """Contents of the release marker (`beep`)."""

    completed_at: datetime = field(default_factory=utcnow)
    message: str = DEFAULT_RELEASE_MESSAGE
    completed_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "completedAt": format_timestamp(self.completed_at),
            "message": self.message,
        }
        if self.completed_by is not None:
            data["completedBy"] = self.completed_by
        return data

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], modified_at: datetime | None = None
    ) -> ReleaseRecord:
        """Build from marker JSON; a missing or bad `completedAt` uses `modified_at`."""
        return cls(
            completed_at=timestamp_or(data.get("completedAt"), modified_at),
            message=_text_field(data.get("message")) or DEFAULT_RELEASE_MESSAGE,
            completed_by=_text_field(data.get("completedBy")),
        )

    @classmethod
    def from_text(cls, text: str, modified_at: datetime) -> ReleaseRecord:
        """Lenient parse of a plain-text release marker."""
        return cls(completed_at=modified_at, message=text.strip() or DEFAULT_RELEASE_MESSAGE)


@dataclass
class HoldRecord:
    """Contents of the hold marker (`boop`)."""

    agent_id: str
    started_at: datetime = field(default_factory=utcnow)
    work_description: str = DEFAULT_WORK_DESCRIPTION

    def to_dict(self) -> dict[str, Any]:
        return {
            "startedAt": format_timestamp(self.started_at),
            "agentId": self.agent_id,
            "workDescription": self.work_description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], modified_at: datetime | None = None) -> HoldRecord:
        """Build from marker JSON.

        Any JSON object is accepted: the agent id is kept even when
        `startedAt` is missing or unparsable, in which case `modified_at`
        stands in for it.
        """
        return cls(
            agent_id=_text_field(data.get("agentId")) or "unknown",
            started_at=timestamp_or(data.get("startedAt"), modified_at),
            work_description=_text_field(data.get("workDescription"))
            or DEFAULT_WORK_DESCRIPTION,
        )

    @classmethod
    def from_text(cls, text: str, modified_at: datetime) -> HoldRecord:
        """Lenient parse: first line is the agent id, the rest the description."""
        first, _, rest = text.strip().partition("\n")
        return cls(
            agent_id=first.strip() or "unknown",
            started_at=modified_at,
            work_description=rest.strip() or DEFAULT_WORK_DESCRIPTION,
        )


@dataclass
class DirectoryStatus:
    """Snapshot of a directory's coordination markers."""

    directory: str
    state: WorkState
    released: ReleaseRecord | None = None
    held: HoldRecord | None = None
    stale: bool = False
    age_hours: float | None = None  # Age of the hold record

    @property
    def holder(self) -> str | None:
        return self.held.agent_id if self.held else None

    @property
    def details(self) -> str:
        if self.state is WorkState.RELEASED_AVAILABLE:
            return "Work is complete and cleared. New work can begin."
        if self.state is WorkState.HELD:
            if self.holder:
                return f"Work is currently being done by agent: {self.holder}"
            return "Work is currently in progress by unknown agent"
        if self.state is WorkState.UNCLAIMED:
            return "No coordination files found. Directory is unclaimed."
        return "Invalid state: both beep and boop files exist. Manual cleanup required."

    def to_dict(self) -> dict[str, Any]:
        return {
            "directory": self.directory,
            "state": self.state.value,
            "released": self.released.to_dict() if self.released else None,
            "held": self.held.to_dict() if self.held else None,
            "stale": self.stale,
            "ageHours": self.age_hours,
            "details": self.details,
        }


@dataclass
class ClaimResult:
    """Outcome of a claim: the written hold and whether it renewed our own."""

    hold: HoldRecord
    renewed: bool = False


@dataclass
class ReclaimResult:
    """Outcome of a stale-hold cleanup."""

    cleaned_up: bool
    claimed: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"cleanedUp": self.cleaned_up, "claimed": self.claimed, "message": self.message}
