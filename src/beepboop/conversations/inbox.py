"""Shared on-disk store of conversation records.

Layout:
    <inbox>/<id>.json             unprocessed records
    <inbox>/processed/<id>.json   acknowledged records (moved, never deleted on ack)

Several processes read and write the directory without any locking. Writes go
through a temp file and os.replace so a poller never sees half a record.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from beepboop.config.schema import InboxConfig
from beepboop.conversations.schema import ConversationRecord
from beepboop.logging import get_logger

log = get_logger("inbox")

PROCESSED_DIR = "processed"
_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


@dataclass
class CleanupStats:
    processed_deleted: int = 0
    unprocessed_deleted: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def total_deleted(self) -> int:
        return self.processed_deleted + self.unprocessed_deleted

    def to_dict(self) -> dict[str, Any]:
        return {
            "processedDeleted": self.processed_deleted,
            "unprocessedDeleted": self.unprocessed_deleted,
            "totalDeleted": self.total_deleted,
            "errors": self.errors,
            "durationMs": self.duration_ms,
        }


def is_valid_record_id(record_id: str) -> bool:
    return bool(_ID_PATTERN.match(record_id)) and record_id not in (".", "..")


class InboxStore:
    """Put, list, read and acknowledge conversation records."""

    def __init__(self, config: InboxConfig | None = None) -> None:
        self.config = config or InboxConfig()
        self.root = Path(os.path.expanduser(self.config.directory))
        self.processed = self.root / PROCESSED_DIR
        self._last_cleanup: float = 0.0

    def _ensure_dirs(self) -> None:
        self.processed.mkdir(parents=True, exist_ok=True)

    def _record_path(self, record_id: str, processed: bool = False) -> Path | None:
        if not is_valid_record_id(record_id):
            return None
        return (self.processed if processed else self.root) / f"{record_id}.json"

    def _write(self, path: Path, record: ConversationRecord) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def put(self, record: ConversationRecord) -> Path:
        """Store `record` as unprocessed, replacing any record with its id.

        Args:
            record: Record to write.

        Returns:
            Path of the written JSON file.

        Raises:
            ValueError: the record id is not a safe file name.
            OSError: the inbox directory is not writable.
        """
        self._ensure_dirs()
        path = self._record_path(record.id)
        if path is None:
            raise ValueError(f"Invalid record id: {record.id!r}")
        self._write(path, record)
        log.debug("Stored %s record %s", record.platform.value, record.id)
        return path

    def list(self) -> list[str]:
        """Ids of all unprocessed records, in directory order."""
        self._ensure_dirs()
        return [name[: -len(".json")] for name in os.listdir(self.root) if name.endswith(".json")]

    def read(self, record_id: str) -> ConversationRecord | None:
        """Load an unprocessed record.

        Args:
            record_id: Record id, without the .json suffix.

        Returns:
            The record, or None if the id is invalid, the file is absent or it
            does not parse (the latter is logged).
        """
        path = self._record_path(record_id)
        if path is None:
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return ConversationRecord.from_dict(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("Unreadable inbox record %s: %s", record_id, e)
            return None

    def iter_unprocessed(self) -> Iterator[ConversationRecord]:
        """Yield every readable unprocessed record."""
        for record_id in self.list():
            record = self.read(record_id)
            if record is not None:
                yield record

    def ack(self, record_id: str) -> bool:
        """Move a record to the processed partition.

        Returns:
            True if moved; False for an invalid id or a record that is not
            unprocessed (already acknowledged or never stored).
        """
        src = self._record_path(record_id)
        dst = self._record_path(record_id, processed=True)
        if src is None or dst is None:
            return False
        self._ensure_dirs()
        try:
            os.replace(src, dst)
        except FileNotFoundError:
            return False
        log.debug("Acknowledged %s", record_id)
        return True

    def update_thread_id(self, record_id: str, thread_id: str) -> bool:
        """Attach a platform thread id created after the record was stored."""
        record = self.read(record_id)
        path = self._record_path(record_id)
        if record is None or path is None:
            return False
        record.context.thread_id = thread_id
        self._write(path, record)
        return True

    def stats(self) -> dict[str, Any]:
        """Record counts per partition and the last cleanup time (ISO or None)."""
        self._ensure_dirs()
        last = (
            datetime.fromtimestamp(self._last_cleanup, tz=timezone.utc).isoformat()
            if self._last_cleanup
            else None
        )
        return {
            "unprocessed": len(self.list()),
            "processed": len([n for n in os.listdir(self.processed) if n.endswith(".json")]),
            "lastCleanup": last,
        }

    def cleanup(self, force: bool = False) -> CleanupStats:
        """Delete records past their retention, then enforce the per-dir cap.

        Skipped (with a note in `errors`) when cleanup is disabled or the
        interval since the last run has not elapsed, unless `force` is set.

        Args:
            force: Run even when disabled or not yet due.

        Returns:
            Deletion counts, per-file errors and the run duration.
        """
        cfg = self.config
        stats = CleanupStats()
        if not cfg.cleanup_enabled and not force:
            stats.errors.append("Cleanup is disabled")
            return stats

        now = time.time()
        interval = cfg.cleanup_interval_hours * 3600
        if not force and interval > 0 and now - self._last_cleanup < interval:
            minutes = round((now - self._last_cleanup) / 60)
            stats.errors.append(f"Cleanup not due yet (last run {minutes} min ago)")
            return stats

        started = time.monotonic()
        self._ensure_dirs()

        if cfg.processed_retention_days > 0:
            stats.processed_deleted += self._expire(
                self.processed, cfg.processed_retention_days, stats.errors
            )
        if cfg.unprocessed_retention_days > 0:
            stats.unprocessed_deleted += self._expire(
                self.root, cfg.unprocessed_retention_days, stats.errors
            )
        if cfg.max_files_per_dir > 0:
            stats.unprocessed_deleted += self._cap(self.root, stats.errors)
            stats.processed_deleted += self._cap(self.processed, stats.errors)

        self._last_cleanup = now
        stats.duration_ms = int((time.monotonic() - started) * 1000)
        if stats.total_deleted or stats.errors:
            log.info(
                "Inbox cleanup: %d deleted (%d processed, %d unprocessed), %d errors",
                stats.total_deleted,
                stats.processed_deleted,
                stats.unprocessed_deleted,
                len(stats.errors),
            )
        return stats

    def auto_cleanup(self) -> CleanupStats | None:
        """Run an interval-gated cleanup if enabled; errors are only logged."""
        if not self.config.cleanup_enabled or self.config.cleanup_interval_hours == 0:
            return None
        try:
            return self.cleanup(force=False)
        except OSError as e:
            log.warning("Inbox auto-cleanup failed: %s", e)
            return None

    def _json_files(self, directory: Path) -> list[Path]:
        return [p for p in directory.iterdir() if p.is_file() and p.name.endswith(".json")]

    def _expire(self, directory: Path, retention_days: float, errors: list[str]) -> int:
        cutoff = time.time() - retention_days * 86400
        deleted = 0
        for path in self._json_files(directory):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    deleted += 1
            except OSError as e:
                errors.append(f"Failed to delete {path.name}: {e}")
        return deleted

    def _cap(self, directory: Path, errors: list[str]) -> int:
        files = self._json_files(directory)
        excess = len(files) - self.config.max_files_per_dir
        if excess <= 0:
            return 0

        aged: list[tuple[float, Path]] = []
        for path in files:
            try:
                aged.append((path.stat().st_mtime, path))
            except OSError:
                continue
        aged.sort(key=lambda item: item[0])

        deleted = 0
        for _, path in aged[:excess]:
            try:
                path.unlink()
                deleted += 1
            except OSError as e:
                errors.append(f"Failed to delete {path.name}: {e}")
        return deleted
