"""Configuration classes for sheetsync.

This module provides:
- BackupPolicy: per-target backup schedule
- SyncTarget: one pairing of a remote spreadsheet with a local file
- EngineSettings: process-wide tunables for the sync engine
- get_config_dir / TargetStore: JSON persistence of settings and targets
"""

from __future__ import annotations

import json
import os
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from sheetsync.core.types import FileEncoding

MIN_SYNC_INTERVAL = 5.0  # seconds
DEFAULT_SYNC_INTERVAL = 30.0
DEFAULT_BACKUP_CACHE_LIMIT = 10 * 1024 * 1024 * 1024  # 10 GiB


@dataclass
class BackupPolicy:
    """When to take automatic backups of a target.

    Attributes:
        enabled: Whether automatic backups are taken at all.
        interval_hours: Minimum hours between two automatic backups.
        last_backup_at: Epoch seconds of the last automatic backup.
    """

    enabled: bool = True
    interval_hours: float = 5.0
    last_backup_at: float | None = None

    def should_backup(self, now: float | None = None) -> bool:
        """Check whether an automatic backup is due."""
        if not self.enabled:
            return False
        if self.last_backup_at is None:
            return True
        now = time.time() if now is None else now
        return (now - self.last_backup_at) / 3600 >= self.interval_hours


@dataclass
class SyncTarget:
    """A remote spreadsheet (or some of its tabs) paired with a local file.

    Attributes:
        remote_sheet_id: Spreadsheet ID on the remote service.
        remote_sheet_name: Display name of the spreadsheet.
        local_dir: Directory holding the local file.
        file_encoding: Local file encoding.
        selected_tabs: Tabs chosen at setup (empty means all).
        sync_new_tabs: Also sync tabs added on the remote after setup.
        custom_file_name: Overrides the file name derived from the sheet name.
        sync_interval_seconds: Periodic sync interval (clamped to MIN_SYNC_INTERVAL).
        enabled: Disabled targets are never synced.
        confirm_first_sync: Ask the UI collaborator before the first write.
        backup_policy: Automatic backup schedule.
        id: Stable identity.
    """

    remote_sheet_id: str
    remote_sheet_name: str
    local_dir: Path
    file_encoding: FileEncoding = FileEncoding.XLSX
    selected_tabs: frozenset[str] = frozenset()
    sync_new_tabs: bool = True
    custom_file_name: str | None = None
    sync_interval_seconds: float = DEFAULT_SYNC_INTERVAL
    enabled: bool = True
    confirm_first_sync: bool = False
    backup_policy: BackupPolicy = field(default_factory=BackupPolicy)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        """Normalize types and clamp the interval."""
        self.local_dir = Path(self.local_dir).expanduser()
        self.file_encoding = FileEncoding(self.file_encoding)
        self.selected_tabs = frozenset(self.selected_tabs)
        self.sync_interval_seconds = max(float(self.sync_interval_seconds), MIN_SYNC_INTERVAL)

    @property
    def file_name(self) -> str:
        """Base file name without extension."""
        if self.custom_file_name:
            return self.custom_file_name
        return self.remote_sheet_name.replace("/", "-")

    @property
    def local_file(self) -> Path:
        """Full path of the local file."""
        return self.local_dir / f"{self.file_name}.{self.file_encoding.extension}"

    def includes_tab(self, tab_name: str) -> bool:
        """Check whether a remote tab belongs to this target."""
        if self.sync_new_tabs or not self.selected_tabs:
            return True
        return tab_name in self.selected_tabs

    def copy(self, **changes: Any) -> SyncTarget:
        """Return a modified copy (same id unless overridden)."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "id": self.id,
            "remote_sheet_id": self.remote_sheet_id,
            "remote_sheet_name": self.remote_sheet_name,
            "local_dir": str(self.local_dir),
            "file_encoding": self.file_encoding.value,
            "selected_tabs": sorted(self.selected_tabs),
            "sync_new_tabs": self.sync_new_tabs,
            "custom_file_name": self.custom_file_name,
            "sync_interval_seconds": self.sync_interval_seconds,
            "enabled": self.enabled,
            "confirm_first_sync": self.confirm_first_sync,
            "backup_policy": asdict(self.backup_policy),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncTarget:
        """Create from a dict produced by to_dict."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["backup_policy"] = BackupPolicy(**data.get("backup_policy", {}))
        values["selected_tabs"] = frozenset(data.get("selected_tabs", ()))
        return cls(**values)


@dataclass
class EngineSettings:
    """Process-wide tunables for the sync engine.

    Attributes:
        backup_cache_limit: Total bytes allowed across all backups.
        show_notifications: Send desktop notifications.
        debounce_seconds: Delay between a file event and the sync it triggers.
        min_resync_seconds: Cool-down after a sync during which file events are ignored.
        retry_delay_seconds: Delay before retrying a transient failure.
        rate_limit_retry_delay_seconds: Delay before retrying after a rate limit.
        lock_retry_attempts: Writability checks before reporting a locked file.
        lock_retry_delay_seconds: Delay between writability checks.
        request_timeout: Overall timeout of remote requests.
        large_sheet_rows: Row total above which a large-sheet warning is logged.
        large_sheet_columns: Column count above which a large-sheet warning is logged.
    """

    backup_cache_limit: int = DEFAULT_BACKUP_CACHE_LIMIT
    show_notifications: bool = True
    debounce_seconds: float = 0.5
    min_resync_seconds: float = 3.0
    retry_delay_seconds: float = 10.0
    rate_limit_retry_delay_seconds: float = 60.0
    lock_retry_attempts: int = 3
    lock_retry_delay_seconds: float = 2.0
    request_timeout: float = 30.0
    large_sheet_rows: int = 50_000
    large_sheet_columns: int = 500

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineSettings:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def get_config_dir() -> Path:
    """Get the configuration directory for sheetsync.

    Returns:
        $SHEETSYNC_HOME if set, otherwise ~/.sheetsync.
    """
    env = os.environ.get("SHEETSYNC_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".sheetsync"


class TargetStore:
    """Persists engine settings and sync targets to ``config.json``."""

    def __init__(self, config_dir: Path) -> None:
        self._path = Path(config_dir) / "config.json"
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_raw(self) -> dict[str, Any]:
        if self._path.exists():
            return dict(json.loads(self._path.read_text(encoding="utf-8")))
        return {}

    def _save_raw(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(tmp, self._path)

    def load_settings(self) -> EngineSettings:
        with self._lock:
            return EngineSettings.from_dict(self._load_raw().get("settings", {}))

    def save_settings(self, settings: EngineSettings) -> None:
        with self._lock:
            data = self._load_raw()
            data["settings"] = asdict(settings)
            self._save_raw(data)

    def load_targets(self) -> list[SyncTarget]:
        with self._lock:
            return [SyncTarget.from_dict(t) for t in self._load_raw().get("targets", [])]

    def get_target(self, target_id: str) -> SyncTarget | None:
        """Find a target by id or unique id prefix."""
        targets = self.load_targets()
        for target in targets:
            if target.id == target_id:
                return target
        matches = [t for t in targets if t.id.startswith(target_id)]
        return matches[0] if len(matches) == 1 else None

    def save_target(self, target: SyncTarget) -> None:
        """Insert or replace a target."""
        with self._lock:
            data = self._load_raw()
            targets = [t for t in data.get("targets", []) if t.get("id") != target.id]
            targets.append(target.to_dict())
            data["targets"] = targets
            self._save_raw(data)

    def remove_target(self, target_id: str) -> bool:
        with self._lock:
            data = self._load_raw()
            targets = data.get("targets", [])
            remaining = [t for t in targets if t.get("id") != target_id]
            if len(remaining) == len(targets):
                return False
            data["targets"] = remaining
            self._save_raw(data)
            return True
