"""Shared fixtures for client tests: an in-memory remote and engine wiring."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sheetsync.client.api import CellUpdate, SheetMetadata, TabInfo
from sheetsync.client.auth import StaticTokenProvider
from sheetsync.client.backup import BackupManager
from sheetsync.client.files import LocalFileGateway
from sheetsync.client.state import BaselineStore
from sheetsync.client.sync.detector import ChangeDetector
from sheetsync.client.sync.engine import SyncEngine
from sheetsync.core.config import EngineSettings, SyncTarget
from sheetsync.core.types import FileEncoding


class FakeRemote:
    """In-memory spreadsheet implementing the RemoteClient protocol."""

    def __init__(self, tabs: dict[str, list[list[str]]], title: str = "Budget") -> None:
        self.title = title
        self.tabs = {name: [list(row) for row in rows] for name, rows in tabs.items()}
        self.row_counts: dict[str, int] = {}
        self.modified_time: datetime | None = None
        self.pushed: list[list[CellUpdate]] = []
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        error = self.errors.get(operation)
        if error is not None:
            raise error

    def set_cell(self, tab: str, row: int, column: int, value: str) -> None:
        rows = self.tabs.setdefault(tab, [])
        while len(rows) <= row:
            rows.append([])
        while len(rows[row]) <= column:
            rows[row].append("")
        rows[row][column] = value

    def fetch_sheet_metadata(self, sheet_id: str) -> SheetMetadata:
        self._maybe_fail("metadata")
        return SheetMetadata(
            sheet_id=sheet_id,
            title=self.title,
            tabs=[TabInfo(name, self.row_counts.get(name, 1000), 26) for name in self.tabs],
        )

    def fetch_tab_values(self, sheet_id: str, tab_name: str) -> list[list[str]]:
        self._maybe_fail("values")
        return [list(row) for row in self.tabs[tab_name]]

    def push_cell_updates(self, sheet_id: str, updates: Sequence[CellUpdate]) -> int:
        self._maybe_fail("push")
        self.pushed.append(list(updates))
        for update in updates:
            self.set_cell(update.tab_name, update.row, update.column, update.value)
        return len(updates)

    def fetch_last_modified_time(self, sheet_id: str) -> datetime | None:
        self._maybe_fail("modified")
        return self.modified_time


@pytest.fixture
def gateway() -> LocalFileGateway:
    return LocalFileGateway()


@pytest.fixture
def baseline_store(tmp_path: Path) -> Iterator[BaselineStore]:
    store = BaselineStore(tmp_path / "state.db")
    yield store
    store.close()


@pytest.fixture
def backups(tmp_path: Path, gateway: LocalFileGateway) -> Iterator[BackupManager]:
    manager = BackupManager(tmp_path / "backups", gateway)
    yield manager
    manager.close()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote({"Sheet1": [["Name", "Qty"], ["Apple", "3"]]})


@pytest.fixture
def target(tmp_path: Path) -> SyncTarget:
    return SyncTarget(
        remote_sheet_id="sheet-1",
        remote_sheet_name="Budget",
        local_dir=tmp_path / "local",
        file_encoding=FileEncoding.CSV,
    )


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def engine(
    remote: FakeRemote,
    baseline_store: BaselineStore,
    gateway: LocalFileGateway,
    backups: BackupManager,
    notifier: MagicMock,
    target: SyncTarget,
) -> Iterator[SyncEngine]:
    """Engine over the fake remote with the default target registered."""
    engine = SyncEngine(
        remote=remote,
        auth=StaticTokenProvider("token"),
        detector=ChangeDetector(baseline_store),
        gateway=gateway,
        backups=backups,
        settings=EngineSettings(lock_retry_delay_seconds=0.0),
        notifier=notifier,
        sleep=lambda _: None,
    )
    engine.add_target(target)
    yield engine
    engine.stop()
