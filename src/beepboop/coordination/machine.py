"""Directory mutual-exclusion state machine.

State is recomputed from the marker files on every call; nothing is cached.
Check-then-write sequences are not atomic across processes, so two agents
racing for the same unclaimed directory can both believe they won. The last
hold written is the one that sticks.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from datetime import datetime, timedelta

from beepboop.config.schema import CoordinationConfig
from beepboop.coordination.schema import (
    DEFAULT_RELEASE_MESSAGE,
    DEFAULT_WORK_DESCRIPTION,
    RECLAIM_DESCRIPTION,
    RESTORE_DESCRIPTION,
    ClaimResult,
    DirectoryStatus,
    HoldRecord,
    ReclaimResult,
    ReleaseRecord,
    WorkState,
    utcnow,
)
from beepboop.coordination.store import LockStore, Marker
from beepboop.coordination.validation import check_agent_id, check_directory_access
from beepboop.errors import (
    AgentMismatchError,
    ConflictInUseError,
    CoordinationError,
    DirectoryNotFoundError,
    IOFailureError,
    InvalidStateError,
    NotHeldError,
)
from beepboop.logging import get_logger

log = get_logger("coordination")


def age_hours(timestamp: datetime, now: datetime | None = None) -> float:
    """Fractional hours since `timestamp`; negative if it is in the future."""
    now = now or utcnow()
    return (now - timestamp).total_seconds() / 3600


def is_stale(timestamp: datetime, max_age_hours: float, now: datetime | None = None) -> bool:
    """True when the record is older than `max_age_hours`.

    A timestamp in the future (clock moved backward) is never stale.
    """
    age = age_hours(timestamp, now)
    return age >= 0 and age > max_age_hours


def describe_age(timestamp: datetime, now: datetime | None = None) -> str:
    """Human-readable age such as "5 minutes ago" or "2 days ago"."""
    seconds = max((now or utcnow()) - timestamp, timedelta(0)).total_seconds()
    hours = seconds / 3600
    if hours < 1:
        value, unit = int(seconds // 60), "minute"
    elif hours < 24:
        value, unit = int(hours), "hour"
    else:
        value, unit = int(hours // 24), "day"
    return f"{value} {unit}{'' if value == 1 else 's'} ago"


class DirectoryCoordinator:
    """Claim, release and stale-reclaim transitions over a LockStore.

    States:
        UNCLAIMED           neither marker
        RELEASED_AVAILABLE  release marker only
        HELD                hold marker only
        CONFLICT            both markers; needs a human
    """

    def __init__(
        self,
        config: CoordinationConfig | None = None,
        store: LockStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or CoordinationConfig()
        self.store = store or LockStore(self.config)
        self._clock = clock

    def status(self, directory: str, max_age_hours: float | None = None) -> DirectoryStatus:
        """Read both markers and derive the directory's state.

        Staleness is advisory: a stale hold is reported, never removed here.

        Args:
            directory: Directory to inspect.
            max_age_hours: Stale threshold; defaults to the configured one.

        Returns:
            A DirectoryStatus with both records, the state and, when held,
            the hold's age and staleness.

        Raises:
            DirectoryNotFoundError: `directory` does not exist.
        """
        if not os.path.isdir(directory):
            raise DirectoryNotFoundError(directory)

        threshold = self.config.default_max_age_hours if max_age_hours is None else max_age_hours
        released = self.store.read(directory, Marker.RELEASE)
        held = self.store.read(directory, Marker.HOLD)

        if released and held:
            state = WorkState.CONFLICT
        elif held:
            state = WorkState.HELD
        elif released:
            state = WorkState.RELEASED_AVAILABLE
        else:
            state = WorkState.UNCLAIMED

        status = DirectoryStatus(
            directory=directory,
            state=state,
            released=released,  # type: ignore[arg-type]
            held=held,  # type: ignore[arg-type]
        )
        if held is not None:
            now = self._clock()
            status.age_hours = age_hours(held.started_at, now)
            status.stale = is_stale(held.started_at, threshold, now)
        return status

    def claim(
        self, directory: str, agent_id: str, description: str | None = None
    ) -> ClaimResult:
        """Take the hold on `directory` for `agent_id`.

        Re-claiming a directory the same agent already holds rewrites the hold.

        Args:
            directory: Directory to claim.
            agent_id: Claiming agent; surrounding whitespace is stripped.
            description: Work description, defaults to "Work in progress".

        Returns:
            A ClaimResult with the hold written; `renewed` when the agent
            already held it.

        Raises:
            PermissionDeniedError: the directory is outside the access policy.
            InvalidAgentIdError: `agent_id` breaks the id rules.
            ConflictInUseError: another agent holds the directory.
            InvalidStateError: both markers exist.
            IOFailureError: the release marker could not be removed.
        """
        check_directory_access(directory, self.config)
        agent_id = check_agent_id(agent_id, self.config, directory)

        current = self.status(directory)
        if current.state is WorkState.CONFLICT:
            raise InvalidStateError(directory)
        if current.state is WorkState.HELD and current.holder != agent_id:
            raise ConflictInUseError(
                directory,
                current.holder or "unknown",
                "Wait for work to complete or use check_status to monitor progress.",
            )

        # Drop the release marker before writing the hold so both never coexist
        if current.state is WorkState.RELEASED_AVAILABLE:
            try:
                self.store.delete(directory, Marker.RELEASE)
            except CoordinationError as e:
                raise IOFailureError(
                    f"Failed to remove existing beep file during state transition: {e.message}. "
                    "Cannot safely claim directory.",
                    directory,
                ) from e

        hold = HoldRecord(
            agent_id=agent_id,
            started_at=self._clock(),
            work_description=description or DEFAULT_WORK_DESCRIPTION,
        )
        self.store.write(directory, Marker.HOLD, hold)
        renewed = current.state is WorkState.HELD
        log.info("%s %s for %s", "Renewed" if renewed else "Claimed", directory, agent_id)
        return ClaimResult(hold=hold, renewed=renewed)

    def release(
        self, directory: str, agent_id: str, message: str | None = None
    ) -> ReleaseRecord:
        """End work: remove the hold, then write the release record.

        If writing the release fails after the hold is gone, the hold is
        rewritten with a restoration note (best effort) and the original error
        is raised.

        Args:
            directory: Directory to release.
            agent_id: Agent ending the work; must be the holder.
            message: Completion note, defaults to "Work completed".

        Returns:
            The release record written.

        Raises:
            NotHeldError: nobody holds the directory.
            AgentMismatchError: someone else holds it.
            InvalidStateError: both markers exist.
        """
        check_directory_access(directory, self.config)
        agent_id = check_agent_id(agent_id, self.config, directory)

        current = self.status(directory)
        if current.state is WorkState.CONFLICT:
            raise InvalidStateError(directory)
        if current.state is not WorkState.HELD:
            raise NotHeldError(directory)
        if current.holder != agent_id:
            raise AgentMismatchError(directory, current.holder or "unknown", agent_id)

        release = ReleaseRecord(
            completed_at=self._clock(),
            message=message or DEFAULT_RELEASE_MESSAGE,
            completed_by=agent_id,
        )
        self.store.delete(directory, Marker.HOLD)
        try:
            self.store.write(directory, Marker.RELEASE, release)
        except CoordinationError:
            self._restore_hold(directory, agent_id)
            raise

        log.info("Released %s by %s", directory, agent_id)
        return release

    def _restore_hold(self, directory: str, agent_id: str) -> None:
        restore = HoldRecord(
            agent_id=agent_id,
            started_at=self._clock(),
            work_description=RESTORE_DESCRIPTION,
        )
        try:
            self.store.write(directory, Marker.HOLD, restore)
        except CoordinationError as e:
            log.warning("Could not restore hold in %s after failed release: %s", directory, e)
        else:
            log.warning("Restored hold in %s for %s after failed release", directory, agent_id)

    def mark_complete(
        self,
        directory: str,
        message: str | None = None,
        completed_by: str | None = None,
    ) -> ReleaseRecord:
        """Write a release record without a prior hold.

        Only an unclaimed directory can be marked complete; an existing
        release record is never overwritten.

        Args:
            directory: Directory to mark.
            message: Completion note, defaults to "Work completed".
            completed_by: Optional agent id recorded on the release.

        Returns:
            The release record written.

        Raises:
            ConflictInUseError: the directory is held; use release instead.
            InvalidStateError: a release record already exists, or both
                markers exist.
        """
        check_directory_access(directory, self.config)

        current = self.status(directory)
        if current.state is WorkState.HELD:
            raise ConflictInUseError(
                directory,
                current.holder or "unknown",
                "Use end_work instead.",
            )
        if current.state is WorkState.CONFLICT:
            raise InvalidStateError(directory)
        if current.state is WorkState.RELEASED_AVAILABLE:
            raise InvalidStateError(
                directory,
                f"Directory {directory} is already marked complete (beep file exists)",
            )

        release = ReleaseRecord(
            completed_at=self._clock(),
            message=message or DEFAULT_RELEASE_MESSAGE,
            completed_by=completed_by,
        )
        self.store.write(directory, Marker.RELEASE, release)
        log.info("Marked %s complete", directory)
        return release

    def reclaim_stale(
        self,
        directory: str,
        expected_holder: str,
        new_agent_id: str | None = None,
        description: str | None = None,
    ) -> ReclaimResult:
        """Remove a stale hold and optionally claim for `new_agent_id`.

        The hold is deleted whoever owns it at this moment; a holder other
        than `expected_holder` is only logged. The new agent id is validated
        after the deletion, so an invalid id leaves the directory unclaimed.

        Args:
            directory: Directory holding the stale hold.
            expected_holder: Agent the caller believes holds it.
            new_agent_id: Agent to claim for afterwards, if any.
            description: Work description for the new claim.

        Returns:
            A ReclaimResult describing the cleanup and any new claim.

        Raises:
            DirectoryNotFoundError: `directory` does not exist.
            InvalidStateError: both markers exist.
            InvalidAgentIdError: `new_agent_id` breaks the id rules.
        """
        check_directory_access(directory, self.config)
        if not os.path.isdir(directory):
            raise DirectoryNotFoundError(directory)
        if self.store.exists(directory, Marker.RELEASE) and self.store.exists(
            directory, Marker.HOLD
        ):
            raise InvalidStateError(directory)

        current = self.store.read(directory, Marker.HOLD)
        if current is not None and current.agent_id != expected_holder:
            log.warning(
                "Reclaiming %s: hold belongs to %s, expected %s",
                directory,
                current.agent_id,
                expected_holder,
            )

        self.store.delete(directory, Marker.HOLD)
        message = f'Cleaned up stale boop file from agent "{expected_holder}"'
        log.info("Removed stale hold in %s (was %s)", directory, expected_holder)

        if not new_agent_id:
            return ReclaimResult(cleaned_up=True, claimed=False, message=message)

        check_agent_id(new_agent_id, self.config, directory)
        self.claim(directory, new_agent_id, description or RECLAIM_DESCRIPTION)
        message += f' and claimed for agent "{new_agent_id.strip()}"'
        return ReclaimResult(cleaned_up=True, claimed=True, message=message)
