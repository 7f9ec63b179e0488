"""Tests for backup creation, retention and restore."""

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from sheetsync.client.backup import BackupIndex, BackupManager, file_checksum, sanitize_file_name
from sheetsync.client.files import LocalFileGateway
from sheetsync.core.config import SyncTarget
from sheetsync.core.errors import BackupFailedError, ChecksumMismatchError, FileWriteError
from sheetsync.core.snapshot import SheetSnapshot
from sheetsync.core.types import FileEncoding

SNAPSHOT = SheetSnapshot.from_grids("sheet-1", {"Sheet1": [["a", "b"], ["c"]]})


@pytest.fixture
def manager(tmp_path: Path) -> BackupManager:
    manager = BackupManager(tmp_path / "backups", LocalFileGateway())
    yield manager
    manager.close()


@pytest.fixture
def target(tmp_path: Path) -> SyncTarget:
    return SyncTarget(
        remote_sheet_id="sheet-1",
        remote_sheet_name="Q1: Budget",
        local_dir=tmp_path / "local",
        file_encoding=FileEncoding.CSV,
    )


class TestCreate:
    """Tests for BackupManager.create_backup."""

    def test_creates_file_and_record(self, manager: BackupManager, target: SyncTarget) -> None:
        metadata = manager.create_backup(target, SNAPSHOT)

        path = manager.backup_path(metadata)
        assert path.exists()
        assert path.parent == manager.backup_dir / target.id
        assert path.name.startswith("Q1- Budget_")
        assert path.suffix == ".csv"
        assert path.read_text(encoding="utf-8") == "a,b\nc\n"
        assert metadata.file_size_bytes == path.stat().st_size
        assert metadata.checksum == file_checksum(path)
        assert metadata.row_count == 2
        assert metadata.column_count == 2
        assert metadata.tab_names == ("Sheet1",)
        assert manager.list_backups(target.id) == [metadata]

    def test_same_second_names_unique(self, manager: BackupManager, target: SyncTarget) -> None:
        first = manager.create_backup(target, SNAPSHOT)
        second = manager.create_backup(target, SNAPSHOT)

        assert first.file_name != second.file_name
        assert len(manager.list_backups(target.id)) == 2

    def test_write_failure_leaves_no_record(self, tmp_path: Path, target: SyncTarget) -> None:
        gateway = MagicMock()
        gateway.write.side_effect = FileWriteError(tmp_path / "x.csv", "no space")
        manager = BackupManager(tmp_path / "backups", gateway)

        try:
            with pytest.raises(BackupFailedError):
                manager.create_backup(target, SNAPSHOT)
            assert manager.all_backups() == []
        finally:
            manager.close()

    def test_empty_file_rejected(self, tmp_path: Path, target: SyncTarget) -> None:
        gateway = MagicMock()
        gateway.write.side_effect = lambda snapshot, path, encoding: Path(path).write_bytes(b"")
        manager = BackupManager(tmp_path / "backups", gateway)

        try:
            with pytest.raises(BackupFailedError, match="empty"):
                manager.create_backup(target, SNAPSHOT)
            assert manager.all_backups() == []
            assert list((tmp_path / "backups" / target.id).iterdir()) == []
        finally:
            manager.close()

    def test_index_failure_removes_file(self, manager: BackupManager, target: SyncTarget) -> None:
        """A backup that cannot be indexed is reported and leaves no orphan file."""
        error = sqlite3.OperationalError("database is locked")
        with patch.object(manager.index, "add", side_effect=error):
            with pytest.raises(BackupFailedError, match="database is locked"):
                manager.create_backup(target, SNAPSHOT)

        assert manager.all_backups() == []
        assert list((manager.backup_dir / target.id).iterdir()) == []

    def test_prune_failure_keeps_backup(self, manager: BackupManager, target: SyncTarget) -> None:
        with patch.object(manager.index, "total_size", side_effect=sqlite3.OperationalError("disk I/O error")):
            metadata = manager.create_backup(target, SNAPSHOT)

        assert manager.all_backups() == [metadata]
        assert manager.backup_path(metadata).exists()

    def test_backup_file_copies_bytes(self, manager: BackupManager, target: SyncTarget, tmp_path: Path) -> None:
        """Raw copies keep content the codec could not parse."""
        source = tmp_path / "broken.csv"
        source.write_bytes(b"a,b\n\xff\xfe half saved")

        metadata = manager.backup_file(target, source)

        assert manager.backup_path(metadata).read_bytes() == b"a,b\n\xff\xfe half saved"
        assert metadata.checksum == file_checksum(source)
        assert metadata.row_count == 0
        assert metadata.tab_names == ()

    def test_backup_file_missing_source(self, manager: BackupManager, target: SyncTarget, tmp_path: Path) -> None:
        with pytest.raises(BackupFailedError, match="cannot copy"):
            manager.backup_file(target, tmp_path / "gone.csv")

        assert manager.all_backups() == []


class TestRetention:
    """Tests for cache-limit pruning."""

    def test_oldest_pruned_first(self, manager: BackupManager, target: SyncTarget) -> None:
        """Pruning removes the globally oldest backups until under the limit."""
        other = target.copy(id="other", remote_sheet_id="sheet-2")
        first = manager.create_backup(target, SNAPSHOT)
        manager.cache_limit = first.file_size_bytes * 2
        second = manager.create_backup(other, SNAPSHOT)

        third = manager.create_backup(target, SNAPSHOT)

        remaining = [b.id for b in manager.all_backups()]
        assert remaining == [second.id, third.id]
        assert not manager.backup_path(first).exists()

    def test_under_limit_noop(self, manager: BackupManager, target: SyncTarget) -> None:
        manager.create_backup(target, SNAPSHOT)

        assert manager.prune_if_needed() == []


class TestRestoreDelete:
    """Tests for restore and deletion."""

    def test_restore(self, manager: BackupManager, target: SyncTarget, tmp_path: Path) -> None:
        metadata = manager.create_backup(target, SNAPSHOT)
        destination = tmp_path / "restore" / "Budget.csv"

        manager.restore_backup(metadata, destination)

        assert destination.read_text(encoding="utf-8") == "a,b\nc\n"

    def test_restore_overwrites(self, manager: BackupManager, target: SyncTarget, tmp_path: Path) -> None:
        metadata = manager.create_backup(target, SNAPSHOT)
        destination = tmp_path / "Budget.csv"
        destination.write_text("changed\n", encoding="utf-8")

        manager.restore_backup(metadata, destination)

        assert destination.read_text(encoding="utf-8") == "a,b\nc\n"
        assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []

    def test_tampered_backup_rejected(self, manager: BackupManager, target: SyncTarget, tmp_path: Path) -> None:
        """A modified backup file is never restored."""
        metadata = manager.create_backup(target, SNAPSHOT)
        manager.backup_path(metadata).write_text("tampered\n", encoding="utf-8")
        destination = tmp_path / "Budget.csv"

        with pytest.raises(ChecksumMismatchError):
            manager.restore_backup(metadata, destination)

        assert not destination.exists()

    def test_missing_backup_file(self, manager: BackupManager, target: SyncTarget, tmp_path: Path) -> None:
        metadata = manager.create_backup(target, SNAPSHOT)
        manager.backup_path(metadata).unlink()

        with pytest.raises(BackupFailedError):
            manager.restore_backup(metadata, tmp_path / "Budget.csv")

    def test_delete_backup(self, manager: BackupManager, target: SyncTarget) -> None:
        metadata = manager.create_backup(target, SNAPSHOT)

        manager.delete_backup(metadata)

        assert manager.list_backups(target.id) == []
        assert not manager.backup_path(metadata).exists()

    def test_delete_all_for_target(self, manager: BackupManager, target: SyncTarget) -> None:
        other = target.copy(id="other")
        manager.create_backup(target, SNAPSHOT)
        manager.create_backup(target, SNAPSHOT)
        kept = manager.create_backup(other, SNAPSHOT)

        removed = manager.delete_all_backups_for_target(target.id)

        assert removed == 2
        assert manager.all_backups() == [kept]
        assert not (manager.backup_dir / target.id).exists()


class TestQueries:
    """Tests for listing and statistics."""

    def test_stats(self, manager: BackupManager, target: SyncTarget) -> None:
        other = target.copy(id="other", remote_sheet_id="sheet-2")
        first = manager.create_backup(target, SNAPSHOT)
        manager.create_backup(target, SNAPSHOT)
        last = manager.create_backup(other, SNAPSHOT)

        stats = manager.stats()

        assert stats.total_backups == 3
        assert stats.total_size_bytes == 3 * first.file_size_bytes
        assert stats.oldest_backup == first.backup_time
        assert stats.newest_backup == last.backup_time
        assert stats.backups_by_sheet == {"sheet-1": 2, "sheet-2": 1}

    def test_empty_stats(self, manager: BackupManager) -> None:
        stats = manager.stats()

        assert stats.total_backups == 0
        assert stats.oldest_backup is None

    def test_list_for_sheet_across_targets(self, manager: BackupManager, target: SyncTarget) -> None:
        manager.create_backup(target, SNAPSHOT)
        manager.create_backup(target.copy(id="other"), SNAPSHOT)

        assert len(manager.list_backups_for_sheet("sheet-1")) == 2
        assert manager.list_backups_for_sheet("sheet-9") == []

    def test_index_lookup_by_prefix(self, manager: BackupManager, target: SyncTarget) -> None:
        metadata = manager.create_backup(target, SNAPSHOT)

        assert manager.index.get(metadata.id[:8]) == metadata
        assert manager.index.get("zzz") is None

    def test_index_survives_reopen(self, manager: BackupManager, target: SyncTarget) -> None:
        metadata = manager.create_backup(target, SNAPSHOT)

        index = BackupIndex(manager.backup_dir / "backups.db")
        try:
            assert index.all() == [metadata]
        finally:
            index.close()


class TestHelpers:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [("Budget", "Budget"), ("a/b\\c:d", "a-b-c-d"), ('x*?"<>|', "x------"), ("  ", "sheet")],
    )
    def test_sanitize_file_name(self, name: str, expected: str) -> None:
        assert sanitize_file_name(name) == expected
