"""Marker file storage for directory coordination.

Each directory carries at most two JSON marker files: the release record
(`beep`) and the hold record (`boop`). Every operation here is a single
filesystem call; composing them safely is the state machine's job.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from beepboop.config.schema import CoordinationConfig
from beepboop.coordination.schema import HoldRecord, ReleaseRecord
from beepboop.errors import (
    CoordinationError,
    DirectoryNotFoundError,
    IOFailureError,
    PermissionDeniedError,
)
from beepboop.logging import get_logger

log = get_logger("coordination.store")

GITIGNORE_HEADER = "# Beep/Boop coordination files"
INBOX_IGNORE_ENTRY = ".beep-boop-inbox/"


class Marker(Enum):
    RELEASE = "release"
    HOLD = "hold"


Record = ReleaseRecord | HoldRecord


def _translate(exc: OSError, directory: str, action: str) -> CoordinationError:
    if isinstance(exc, FileNotFoundError):
        return DirectoryNotFoundError(directory)
    if isinstance(exc, PermissionError):
        return PermissionDeniedError(f"Permission denied: {directory}", directory)
    return IOFailureError(f"Failed to {action} in {directory}: {exc}", directory)


class LockStore:
    """Reads and writes the two marker records of a directory."""

    def __init__(self, config: CoordinationConfig | None = None) -> None:
        self.config = config or CoordinationConfig()

    def filename(self, which: Marker) -> str:
        if which is Marker.RELEASE:
            return self.config.release_filename
        return self.config.hold_filename

    def path(self, directory: str, which: Marker) -> Path:
        return Path(directory) / self.filename(which)

    def exists(self, directory: str, which: Marker) -> bool:
        return self.path(directory, which).is_file()

    def read(self, directory: str, which: Marker) -> Record | None:
        """Return the parsed record, or None when the marker is absent.

        Markers that are not a JSON object (hand-written or from older tools)
        are parsed leniently as text. In both cases the file's mtime stands in
        for a missing or unparsable timestamp.

        Args:
            directory: Directory holding the marker.
            which: Marker to read.

        Returns:
            A ReleaseRecord or HoldRecord, or None if the file does not exist.

        Raises:
            PermissionDeniedError: the marker is not readable.
            IOFailureError: any other OS error.
        """
        path = self.path(directory, which)
        try:
            text = path.read_text(encoding="utf-8")
            modified_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise _translate(e, directory, f"read {path.name}") from e

        cls = ReleaseRecord if which is Marker.RELEASE else HoldRecord
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None

        if isinstance(data, dict):
            return cls.from_dict(data, modified_at)
        log.debug("Reading %s marker in %s as plain text", which.value, directory)
        return cls.from_text(text, modified_at)

    def write(self, directory: str, which: Marker, record: Record) -> None:
        """Replace the marker with `record` atomically.

        The record is written to a temporary file in `directory`, given the
        configured mode and renamed over the marker.

        Raises:
            DirectoryNotFoundError: `directory` does not exist.
            PermissionDeniedError: the filesystem refused the write.
            IOFailureError: any other OS error.
        """
        if not os.path.isdir(directory):
            raise DirectoryNotFoundError(directory)

        target = self.path(directory, which)
        payload = json.dumps(record.to_dict(), indent=2)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{target.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.chmod(tmp_name, self.config.file_mode)
                os.replace(tmp_name, target)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise _translate(e, directory, f"write {target.name}") from e

        log.debug("Wrote %s marker in %s", which.value, directory)
        if self.config.manage_gitignore:
            self.ensure_gitignore(directory)

    def delete(self, directory: str, which: Marker) -> None:
        """Remove the marker. Removing an absent marker succeeds.

        Raises:
            PermissionDeniedError: the filesystem refused the removal.
            IOFailureError: any other OS error.
        """
        path = self.path(directory, which)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise _translate(e, directory, f"remove {path.name}") from e
        log.debug("Removed %s marker in %s", which.value, directory)

    def ensure_gitignore(self, directory: str) -> bool:
        """Append the marker and inbox entries to `.gitignore` if missing.

        Best effort: failures are logged and reported as False.
        """
        gitignore = Path(directory) / ".gitignore"
        wanted = [
            self.config.release_filename,
            self.config.hold_filename,
            INBOX_IGNORE_ENTRY,
        ]
        try:
            content = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
            lines = [line.strip() for line in content.splitlines()]
            missing = [entry for entry in wanted if entry not in lines]
            if not missing:
                return False

            additions: list[str] = []
            if GITIGNORE_HEADER not in lines:
                additions.append(GITIGNORE_HEADER)
            additions.extend(missing)

            prefix = ""
            if content and not content.endswith("\n"):
                prefix = "\n"
            with open(gitignore, "a", encoding="utf-8") as f:
                f.write(prefix + "\n".join(additions) + "\n")
        except OSError as e:
            log.warning("Could not update .gitignore in %s: %s", directory, e)
            return False

        log.debug("Added coordination entries to %s", gitignore)
        return True
