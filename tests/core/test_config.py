"""Tests for core configuration classes."""

from __future__ import annotations

from pathlib import Path

import pytest

from sheetsync.core.config import (
    MIN_SYNC_INTERVAL,
    BackupPolicy,
    EngineSettings,
    SyncTarget,
    TargetStore,
    get_config_dir,
)
from sheetsync.core.types import FileEncoding


def make_target(tmp_path: Path, **kwargs) -> SyncTarget:  # type: ignore[no-untyped-def]
    """Create a SyncTarget for testing."""
    values = {
        "remote_sheet_id": "sheet-1",
        "remote_sheet_name": "Budget",
        "local_dir": tmp_path,
    }
    values.update(kwargs)
    return SyncTarget(**values)


class TestBackupPolicy:
    """Tests for BackupPolicy.should_backup."""

    def test_never_backed_up(self) -> None:
        """Should back up when no backup was ever taken."""
        assert BackupPolicy().should_backup(now=1000.0) is True

    def test_disabled(self) -> None:
        assert BackupPolicy(enabled=False).should_backup(now=1000.0) is False

    def test_interval_not_elapsed(self) -> None:
        policy = BackupPolicy(interval_hours=5, last_backup_at=0.0)
        assert policy.should_backup(now=4 * 3600) is False

    def test_interval_elapsed(self) -> None:
        policy = BackupPolicy(interval_hours=5, last_backup_at=0.0)
        assert policy.should_backup(now=5 * 3600) is True


class TestSyncTarget:
    """Tests for SyncTarget."""

    def test_defaults(self, tmp_path: Path) -> None:
        """Should default to xlsx, all tabs, enabled."""
        target = make_target(tmp_path)

        assert target.file_encoding == FileEncoding.XLSX
        assert target.enabled is True
        assert target.sync_new_tabs is True
        assert target.id

    def test_interval_clamped(self, tmp_path: Path) -> None:
        """Intervals below the minimum should be raised to it."""
        target = make_target(tmp_path, sync_interval_seconds=1)
        assert target.sync_interval_seconds == MIN_SYNC_INTERVAL

    def test_local_file_from_sheet_name(self, tmp_path: Path) -> None:
        """Slashes in the sheet name should not create directories."""
        target = make_target(tmp_path, remote_sheet_name="Q1/Q2 Plan", file_encoding="csv")

        assert target.file_name == "Q1-Q2 Plan"
        assert target.local_file == tmp_path / "Q1-Q2 Plan.csv"

    def test_custom_file_name(self, tmp_path: Path) -> None:
        target = make_target(tmp_path, custom_file_name="mine", file_encoding=FileEncoding.JSON)
        assert target.local_file == tmp_path / "mine.json"

    def test_includes_tab_all(self, tmp_path: Path) -> None:
        target = make_target(tmp_path)
        assert target.includes_tab("anything") is True

    def test_includes_tab_selected(self, tmp_path: Path) -> None:
        """With sync_new_tabs off only selected tabs are included."""
        target = make_target(tmp_path, selected_tabs={"Expenses"}, sync_new_tabs=False)

        assert target.includes_tab("Expenses") is True
        assert target.includes_tab("Income") is False

    def test_selected_tabs_with_new_tabs(self, tmp_path: Path) -> None:
        """sync_new_tabs includes tabs created after setup."""
        target = make_target(tmp_path, selected_tabs={"Expenses"}, sync_new_tabs=True)
        assert target.includes_tab("Later") is True

    def test_copy_keeps_id(self, tmp_path: Path) -> None:
        target = make_target(tmp_path)
        copy = target.copy(enabled=False)

        assert copy.id == target.id
        assert copy.enabled is False
        assert target.enabled is True

    def test_dict_round_trip(self, tmp_path: Path) -> None:
        """to_dict/from_dict should preserve every field."""
        target = make_target(
            tmp_path,
            file_encoding=FileEncoding.CSV,
            selected_tabs={"A", "B"},
            sync_new_tabs=False,
            custom_file_name="out",
            sync_interval_seconds=120,
            confirm_first_sync=True,
            backup_policy=BackupPolicy(enabled=False, interval_hours=2, last_backup_at=55.0),
        )

        restored = SyncTarget.from_dict(target.to_dict())

        assert restored == target

    def test_from_dict_ignores_unknown_keys(self, tmp_path: Path) -> None:
        data = make_target(tmp_path).to_dict()
        data["obsolete"] = True

        assert SyncTarget.from_dict(data).remote_sheet_id == "sheet-1"


class TestEngineSettings:
    """Tests for EngineSettings."""

    def test_defaults(self) -> None:
        settings = EngineSettings()

        assert settings.backup_cache_limit == 10 * 1024**3
        assert settings.debounce_seconds == 0.5
        assert settings.min_resync_seconds == 3.0
        assert settings.retry_delay_seconds == 10.0
        assert settings.rate_limit_retry_delay_seconds == 60.0
        assert settings.lock_retry_attempts == 3
        assert settings.large_sheet_rows == 50_000
        assert settings.large_sheet_columns == 500

    def test_from_dict(self) -> None:
        settings = EngineSettings.from_dict({"show_notifications": False, "unknown": 1})
        assert settings.show_notifications is False


class TestConfigDir:
    """Tests for get_config_dir."""

    def test_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHEETSYNC_HOME", str(tmp_path / "cfg"))
        assert get_config_dir() == tmp_path / "cfg"

    def test_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SHEETSYNC_HOME", raising=False)
        assert get_config_dir() == Path.home() / ".sheetsync"


class TestTargetStore:
    """Tests for TargetStore persistence."""

    def test_empty(self, tmp_path: Path) -> None:
        store = TargetStore(tmp_path)

        assert store.load_targets() == []
        assert store.load_settings() == EngineSettings()

    def test_save_and_load(self, tmp_path: Path) -> None:
        store = TargetStore(tmp_path)
        target = make_target(tmp_path)

        store.save_target(target)

        assert TargetStore(tmp_path).load_targets() == [target]

    def test_save_replaces(self, tmp_path: Path) -> None:
        """Saving the same id twice should keep one entry."""
        store = TargetStore(tmp_path)
        target = make_target(tmp_path)
        store.save_target(target)
        store.save_target(target.copy(enabled=False))

        targets = store.load_targets()
        assert len(targets) == 1
        assert targets[0].enabled is False

    def test_get_target_by_prefix(self, tmp_path: Path) -> None:
        store = TargetStore(tmp_path)
        target = make_target(tmp_path, id="abcdef-1")
        store.save_target(target)
        store.save_target(make_target(tmp_path, id="abzzzz-2"))

        assert store.get_target("abcdef-1") == target
        assert store.get_target("abc") == target
        assert store.get_target("ab") is None
        assert store.get_target("nope") is None

    def test_remove_target(self, tmp_path: Path) -> None:
        store = TargetStore(tmp_path)
        target = make_target(tmp_path)
        store.save_target(target)

        assert store.remove_target(target.id) is True
        assert store.remove_target(target.id) is False
        assert store.load_targets() == []

    def test_settings_round_trip(self, tmp_path: Path) -> None:
        store = TargetStore(tmp_path)
        store.save_target(make_target(tmp_path))
        store.save_settings(EngineSettings(show_notifications=False))

        assert store.load_settings().show_notifications is False
        assert len(store.load_targets()) == 1
