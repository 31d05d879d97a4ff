"""Directory-level work coordination with beep/boop marker files.

Usage:
    from beepboop.coordination import DirectoryCoordinator

    coordinator = DirectoryCoordinator()
    coordinator.claim("/srv/project", "backend-agent-1", "Refactoring auth")
    ...
    coordinator.release("/srv/project", "backend-agent-1", "Auth refactor done")
"""

from beepboop.coordination.machine import (
    DirectoryCoordinator,
    age_hours,
    describe_age,
    is_stale,
)
from beepboop.coordination.schema import (
    ClaimResult,
    DirectoryStatus,
    HoldRecord,
    ReclaimResult,
    ReleaseRecord,
    WorkState,
)
from beepboop.coordination.store import LockStore, Marker
from beepboop.coordination.validation import (
    agent_id_problems,
    check_agent_id,
    check_directory_access,
    is_directory_allowed,
    is_valid_agent_id,
)

__all__ = [
    "DirectoryCoordinator",
    "LockStore",
    "Marker",
    "WorkState",
    "DirectoryStatus",
    "HoldRecord",
    "ReleaseRecord",
    "ClaimResult",
    "ReclaimResult",
    "age_hours",
    "is_stale",
    "describe_age",
    "agent_id_problems",
    "check_agent_id",
    "is_valid_agent_id",
    "check_directory_access",
    "is_directory_allowed",
]
