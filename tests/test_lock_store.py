"""Tests for marker file storage."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest

from beepboop.config import CoordinationConfig
from beepboop.coordination import HoldRecord, LockStore, ReleaseRecord
from beepboop.coordination.store import GITIGNORE_HEADER, Marker
from beepboop.errors import DirectoryNotFoundError


class TestReadWrite:
    """Test marker serialization on disk."""

    def test_absent_marker_reads_none(self, work_dir: str) -> None:
        """A missing marker reads as None."""
        store = LockStore(CoordinationConfig(manage_gitignore=False))
        assert store.read(work_dir, Marker.HOLD) is None
        assert not store.exists(work_dir, Marker.RELEASE)

    def test_hold_written_as_json(self, work_dir: str) -> None:
        """Hold records are stored as camelCase JSON."""
        store = LockStore(CoordinationConfig(manage_gitignore=False))
        store.write(work_dir, Marker.HOLD, HoldRecord("backend-1", work_description="Fix login"))

        data = json.loads((Path(work_dir) / "boop").read_text())
        assert data["agentId"] == "backend-1"
        assert data["workDescription"] == "Fix login"
        assert data["startedAt"].endswith("Z")

        record = store.read(work_dir, Marker.HOLD)
        assert isinstance(record, HoldRecord)
        assert record.agent_id == "backend-1"

    def test_release_without_author(self, work_dir: str) -> None:
        """completedBy is omitted when unset."""
        store = LockStore(CoordinationConfig(manage_gitignore=False))
        store.write(work_dir, Marker.RELEASE, ReleaseRecord(message="Done"))

        data = json.loads((Path(work_dir) / "beep").read_text())
        assert "completedBy" not in data
        assert store.read(work_dir, Marker.RELEASE).message == "Done"

    def test_plain_text_hold_parsed_leniently(self, work_dir: str) -> None:
        """A plain-text hold yields agent id and description."""
        (Path(work_dir) / "boop").write_text("legacy-agent\nold style description\n")
        store = LockStore(CoordinationConfig(manage_gitignore=False))

        record = store.read(work_dir, Marker.HOLD)
        assert record.agent_id == "legacy-agent"
        assert record.work_description == "old style description"

    def test_empty_release_file_still_counts(self, work_dir: str) -> None:
        """An empty release file is still a release."""
        (Path(work_dir) / "beep").write_text("")
        store = LockStore(CoordinationConfig(manage_gitignore=False))
        assert store.read(work_dir, Marker.RELEASE) is not None

    def test_write_to_missing_directory(self, tmp_path: Path) -> None:
        """Writing into a missing directory raises DirectoryNotFoundError."""
        store = LockStore(CoordinationConfig(manage_gitignore=False))
        with pytest.raises(DirectoryNotFoundError):
            store.write(str(tmp_path / "missing"), Marker.HOLD, HoldRecord("a"))

    @pytest.mark.skipif(os.name == "nt", reason="POSIX file modes")
    def test_file_permissions_applied(self, work_dir: str) -> None:
        """Marker files get the configured mode."""
        store = LockStore(CoordinationConfig(manage_gitignore=False, file_permissions="0600"))
        store.write(work_dir, Marker.HOLD, HoldRecord("a"))
        mode = stat.S_IMODE((Path(work_dir) / "boop").stat().st_mode)
        assert mode == 0o600

    def test_no_temp_files_left(self, work_dir: str) -> None:
        """Atomic writes leave no temporary files behind."""
        store = LockStore(CoordinationConfig(manage_gitignore=False))
        store.write(work_dir, Marker.HOLD, HoldRecord("a"))
        store.write(work_dir, Marker.HOLD, HoldRecord("a", work_description="again"))
        assert sorted(os.listdir(work_dir)) == ["boop"]

    def test_delete_is_idempotent(self, work_dir: str) -> None:
        """Deleting an absent marker succeeds."""
        store = LockStore(CoordinationConfig(manage_gitignore=False))
        store.write(work_dir, Marker.RELEASE, ReleaseRecord())
        store.delete(work_dir, Marker.RELEASE)
        store.delete(work_dir, Marker.RELEASE)
        assert not store.exists(work_dir, Marker.RELEASE)

    def test_custom_filenames(self, work_dir: str) -> None:
        """Configured marker names are used."""
        config = CoordinationConfig(
            manage_gitignore=False, release_filename=".done", hold_filename=".busy"
        )
        store = LockStore(config)
        store.write(work_dir, Marker.HOLD, HoldRecord("a"))
        assert (Path(work_dir) / ".busy").is_file()


class TestGitignore:
    """Test .gitignore maintenance."""

    def test_entries_added_on_write(self, work_dir: str) -> None:
        """Writing a marker adds the ignore entries."""
        store = LockStore(CoordinationConfig())
        store.write(work_dir, Marker.HOLD, HoldRecord("a"))

        lines = (Path(work_dir) / ".gitignore").read_text().splitlines()
        assert GITIGNORE_HEADER in lines
        assert "beep" in lines
        assert "boop" in lines
        assert ".beep-boop-inbox/" in lines

    def test_existing_content_kept(self, work_dir: str) -> None:
        """Existing .gitignore lines are preserved."""
        gitignore = Path(work_dir) / ".gitignore"
        gitignore.write_text("node_modules/")
        store = LockStore(CoordinationConfig())

        assert store.ensure_gitignore(work_dir) is True
        lines = gitignore.read_text().splitlines()
        assert lines[0] == "node_modules/"
        assert "boop" in lines

    def test_not_duplicated(self, work_dir: str) -> None:
        """The ignore block is appended only once."""
        store = LockStore(CoordinationConfig())
        store.ensure_gitignore(work_dir)
        assert store.ensure_gitignore(work_dir) is False

        text = (Path(work_dir) / ".gitignore").read_text()
        assert text.count(GITIGNORE_HEADER) == 1

    def test_disabled(self, work_dir: str) -> None:
        """No .gitignore is written when management is off."""
        store = LockStore(CoordinationConfig(manage_gitignore=False))
        store.write(work_dir, Marker.HOLD, HoldRecord("a"))
        assert not (Path(work_dir) / ".gitignore").exists()


class TestRecordFormat:
    """Test the JSON marker schema shared with other beep/boop tools."""

    def test_reads_existing_hold(self, work_dir: str) -> None:
        """Holds written by other tools are read unchanged."""
        (Path(work_dir) / "boop").write_text(
            json.dumps(
                {
                    "startedAt": "2024-01-15T10:30:00.000Z",
                    "agentId": "frontend-7",
                    "workDescription": "Styling",
                }
            )
        )
        record = LockStore(CoordinationConfig()).read(work_dir, Marker.HOLD)
        assert record.agent_id == "frontend-7"
        assert record.started_at.isoformat() == "2024-01-15T10:30:00+00:00"
        assert record.to_dict()["startedAt"] == "2024-01-15T10:30:00.000Z"

    def test_hold_without_timestamp_keeps_agent(self, work_dir: str) -> None:
        """A hold missing startedAt keeps its agent and uses the file mtime."""
        path = Path(work_dir) / "boop"
        path.write_text(json.dumps({"agentId": "a1", "workDescription": "x"}))
        os.utime(path, (1_705_314_600, 1_705_314_600))

        record = LockStore(CoordinationConfig()).read(work_dir, Marker.HOLD)
        assert record.agent_id == "a1"
        assert record.work_description == "x"
        assert record.started_at.isoformat() == "2024-01-15T10:30:00+00:00"

    def test_unparsable_timestamp_uses_mtime(self, work_dir: str) -> None:
        """A bad completedAt falls back to the file mtime."""
        path = Path(work_dir) / "beep"
        path.write_text(json.dumps({"completedAt": "yesterday", "completedBy": "a1"}))
        os.utime(path, (1_705_314_600, 1_705_314_600))

        record = LockStore(CoordinationConfig()).read(work_dir, Marker.RELEASE)
        assert record.completed_by == "a1"
        assert record.message == "Work completed"
        assert record.completed_at.isoformat() == "2024-01-15T10:30:00+00:00"

    def test_json_scalar_read_as_text(self, work_dir: str) -> None:
        """JSON that is not an object is read as plain text."""
        (Path(work_dir) / "boop").write_text("42\n")
        record = LockStore(CoordinationConfig()).read(work_dir, Marker.HOLD)
        assert record.agent_id == "42"

    def test_release_defaults(self) -> None:
        """Missing release fields get their defaults."""
        record = ReleaseRecord.from_dict({"completedAt": "2024-01-15T10:30:00.250Z"})
        assert record.message == "Work completed"
        assert record.completed_by is None
        assert record.to_dict() == {
            "completedAt": "2024-01-15T10:30:00.250Z",
            "message": "Work completed",
        }
