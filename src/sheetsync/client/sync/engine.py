"""Sync engine orchestrating bidirectional spreadsheet synchronization.

This module provides:
- TargetState: user-visible status of one sync target
- SyncEngine: owns the targets, schedules periodic syncs, reacts to local
  file changes and runs the three-way merge for each attempt

One sync attempt (perform_sync) goes through:
1. Guards: target enabled, no other attempt in flight for the same id
2. Pre-flight: valid credential, local file not locked
3. Fast path: remote unchanged since the last full fetch -> local only
4. First sync: remote is authoritative, nothing is uploaded
5. Otherwise: diff both sides against the baseline, resolve, upload,
   rewrite the local file, persist the new baseline, maybe back up

File change events are handed from the watcher thread to the dispatcher
thread through a queue; periodic syncs run on the scheduler's workers.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sheetsync.client.api import DEFAULT_ROW_COUNT, CellUpdate
from sheetsync.client.files import AccessHandle, is_writable
from sheetsync.client.notifications import (
    notify_backup_failed,
    notify_conflicts,
    notify_error,
    send_notification,
)
from sheetsync.client.sync.resolver import ConflictResolver
from sheetsync.client.sync.retry import retry_with_backoff
from sheetsync.client.sync.scheduler import SyncScheduler
from sheetsync.client.sync.watcher import FileWatcher
from sheetsync.core.config import EngineSettings, SyncTarget
from sheetsync.core.errors import (
    BackupFailedError,
    FileLockedError,
    FileNotFoundSyncError,
    FileWriteError,
    NotAuthenticatedError,
    SheetDeletedError,
    SheetNotFoundError,
    SyncError,
    TokenExpiredError,
    UnknownSyncError,
)
from sheetsync.core.snapshot import SheetSnapshot
from sheetsync.core.types import ChangeSource, ChangeType, FileEncoding, SyncDirection, SyncStatus

if TYPE_CHECKING:
    from sheetsync.client.api import RemoteClient
    from sheetsync.client.auth import AuthProvider
    from sheetsync.client.backup import BackupManager
    from sheetsync.client.files import LocalFileGateway
    from sheetsync.client.notifications import NotificationSink
    from sheetsync.client.sync.detector import ChangeDetector
    from sheetsync.client.sync.resolver import ConflictInfo
    from sheetsync.core.snapshot import CellChange

logger = logging.getLogger(__name__)

StateCallback = Callable[[str, "TargetState"], None]
TargetCallback = Callable[[SyncTarget], None]
ConfirmCallback = Callable[[SyncTarget, SheetSnapshot], bool]


def _relative(seconds: float) -> str:
    seconds = abs(seconds)
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds // 60)} min"
    if seconds < 86400:
        return f"{int(seconds // 3600)} h"
    return f"{int(seconds // 86400)} d"


@dataclass
class TargetState:
    """Current status of one sync target.

    Attributes:
        status: idle, syncing, error, rate_limited or paused.
        last_sync_time: Epoch seconds of the last successful attempt.
        next_sync_time: Epoch seconds of the next periodic attempt.
        last_error: Error of the last failed attempt (cleared on success).
        pending_changes: Local changes not yet uploaded (out-of-bounds cells).
        last_change_direction: What the last successful attempt applied.
    """

    status: SyncStatus = SyncStatus.IDLE
    last_sync_time: float | None = None
    next_sync_time: float | None = None
    last_error: SyncError | None = None
    pending_changes: int = 0
    last_change_direction: SyncDirection | None = None

    def status_description(self, now: float | None = None) -> str:
        """One-line human readable status."""
        now = time.time() if now is None else now

        if self.status == SyncStatus.SYNCING:
            return "Syncing..."
        if self.status == SyncStatus.PAUSED:
            return "Paused"
        if self.status in (SyncStatus.ERROR, SyncStatus.RATE_LIMITED) and self.last_error:
            return self.last_error.user_message

        parts = []
        if self.last_sync_time is None:
            parts.append("Never synced")
        else:
            parts.append(f"Synced {_relative(now - self.last_sync_time)} ago")
        if self.next_sync_time is not None:
            if self.next_sync_time > now:
                parts.append(f"next in {_relative(self.next_sync_time - now)}")
            else:
                parts.append("next sync due")
        if self.pending_changes:
            parts.append(f"{self.pending_changes} pending")
        return " · ".join(parts)


class SyncEngine:
    """Coordinates sync attempts for every configured target.

    Usage:
        engine = SyncEngine(remote, auth, detector, gateway, backups)
        engine.add_target(target)
        engine.start()      # periodic + file-change syncs
        ...
        engine.stop()

    trigger_sync() runs one attempt on the calling thread and can be
    used without start().
    """

    def __init__(
        self,
        remote: RemoteClient,
        auth: AuthProvider,
        detector: ChangeDetector,
        gateway: LocalFileGateway,
        backups: BackupManager,
        settings: EngineSettings | None = None,
        resolver: ConflictResolver | None = None,
        notifier: NotificationSink | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            remote: Remote spreadsheet client.
            auth: Credential provider checked before each attempt.
            detector: Change detector owning the baselines.
            gateway: Local file codec.
            backups: Backup manager.
            settings: Engine tunables.
            resolver: Merge policy.
            notifier: Desktop notification sink.
            clock: Wall clock (epoch seconds).
            sleep: Blocking sleep used between lock checks.
        """
        self._remote = remote
        self._auth = auth
        self._detector = detector
        self._gateway = gateway
        self._backups = backups
        self._settings = settings or EngineSettings()
        self._resolver = resolver or ConflictResolver()
        self._notifier = notifier or send_notification
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.RLock()
        self._targets: dict[str, SyncTarget] = {}
        self._states: dict[str, TargetState] = {}
        self._in_flight: set[str] = set()
        self._last_finished: dict[str, float] = {}
        self._remote_checked_at: dict[str, datetime] = {}

        self._scheduler = SyncScheduler(self._run_scheduled)
        self._watcher = FileWatcher(self._on_file_changed, debounce_s=self._settings.debounce_seconds)
        self._events: queue.Queue[str] = queue.Queue()
        self._stop_event = threading.Event()
        self._dispatcher: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._running = False

        self.on_state_change: StateCallback | None = None
        self.on_target_update: TargetCallback | None = None
        self.confirm_first_sync: ConfirmCallback | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    # === Lifecycle ===

    def start(self, sync_now: bool = False) -> None:
        """Start periodic syncs, file watching and event dispatch.

        Args:
            sync_now: Run every enabled target once right away.
        """
        with self._lock:
            if self._running:
                return
            self._running = True
            self._stop_event.clear()
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="sync")
            self._scheduler.start()
            self._watcher.start()
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                name="SyncDispatcher",
                daemon=True,
            )
            self._dispatcher.start()

            for target in self._targets.values():
                if target.enabled:
                    self._activate(target, run_now=sync_now)

        logger.info("Sync engine started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop scheduling and watching; in-flight attempts finish."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()
            self._scheduler.stop()
            self._watcher.stop_all()
            executor, self._executor = self._executor, None
            dispatcher, self._dispatcher = self._dispatcher, None

        if dispatcher and dispatcher.is_alive():
            dispatcher.join(timeout=timeout)
        if executor:
            executor.shutdown(wait=True)
        logger.info("Sync engine stopped")

    # === Targets ===

    def add_target(self, target: SyncTarget) -> None:
        """Register a target (idle, never synced) and schedule it if running."""
        with self._lock:
            self._targets[target.id] = target
            self._states.setdefault(target.id, TargetState())
            if self._running and target.enabled:
                self._activate(target)
        logger.debug("Added target %s (%s)", target.id, target.remote_sheet_name)

    def update_target(self, target: SyncTarget) -> None:
        """Apply edited settings: reschedule the timer and re-register the watch."""
        with self._lock:
            if target.id not in self._targets:
                raise KeyError(target.id)
            self._targets[target.id] = target
            self._deactivate(target.id)
            if self._running and target.enabled:
                self._activate(target)

    def remove_target(self, target_id: str) -> None:
        """Forget a target.

        Cancels its timer, pending retry and file watch and deletes its
        baseline. The local file and backup history are kept. An attempt
        already in flight runs to completion.
        """
        with self._lock:
            self._targets.pop(target_id, None)
            self._states.pop(target_id, None)
            self._last_finished.pop(target_id, None)
            self._remote_checked_at.pop(target_id, None)
            self._deactivate(target_id)
            # Under the lock so an attempt in flight cannot save it back
            self._detector.delete_snapshot(target_id)
        logger.info("Removed target %s", target_id)

    def get_target(self, target_id: str) -> SyncTarget | None:
        with self._lock:
            return self._targets.get(target_id)

    def targets(self) -> list[SyncTarget]:
        with self._lock:
            return list(self._targets.values())

    def get_state(self, target_id: str) -> TargetState | None:
        """Snapshot of a target's state."""
        with self._lock:
            state = self._states.get(target_id)
            return replace(state) if state else None

    def states(self) -> dict[str, TargetState]:
        with self._lock:
            return {tid: replace(state) for tid, state in self._states.items()}

    def is_syncing(self, target_id: str) -> bool:
        with self._lock:
            return target_id in self._in_flight

    def _activate(self, target: SyncTarget, run_now: bool = False) -> None:
        self._scheduler.schedule(target.id, target.sync_interval_seconds, run_now=run_now)
        try:
            self._watcher.start_watching(target.id, target.local_file)
        except OSError as e:
            logger.warning("Cannot watch %s: %s", target.local_file, e)
        state = self._states.setdefault(target.id, TargetState())
        state.next_sync_time = self._next_sync_time(target)

    def _deactivate(self, target_id: str) -> None:
        self._scheduler.stop_sync(target_id)
        self._watcher.stop_watching(target_id)

    # === Triggers ===

    def trigger_sync(self, target_id: str) -> TargetState | None:
        """Run one attempt now on the calling thread.

        Returns:
            The target's state afterwards, or None for an unknown target.
        """
        self.perform_sync(target_id)
        return self.get_state(target_id)

    def _run_scheduled(self, target_id: str) -> None:
        self.perform_sync(target_id)

    def _on_file_changed(self, target_id: str) -> None:
        """Watcher callback (watcher thread): hand the id to the dispatcher."""
        self._events.put(target_id)

    def _dispatch_loop(self) -> None:
        logger.debug("Dispatcher loop started")
        while not self._stop_event.is_set():
            try:
                target_id = self._events.get(timeout=0.1)
            except queue.Empty:
                continue

            if self._should_skip_file_event(target_id):
                continue

            with self._lock:
                executor = self._executor
            if executor is None:
                break
            logger.debug("Local file changed for %s", target_id)
            executor.submit(self._run_guarded, target_id)
        logger.debug("Dispatcher loop ended")

    def _run_guarded(self, target_id: str) -> None:
        try:
            self.perform_sync(target_id)
        except Exception:
            logger.exception("Unhandled error syncing %s", target_id)

    def _should_skip_file_event(self, target_id: str) -> bool:
        """Suppress events caused by our own writes (in flight or just finished)."""
        with self._lock:
            if target_id not in self._targets:
                return True
            if target_id in self._in_flight:
                logger.debug("Ignoring file change - sync in progress for %s", target_id)
                return True
            finished = self._last_finished.get(target_id)
            if finished is not None and self._clock() - finished < self._settings.min_resync_seconds:
                logger.debug("Ignoring file change - synced too recently for %s", target_id)
                return True
        return False

    # === Sync attempt ===

    def perform_sync(self, target_id: str) -> bool:
        """Run one sync attempt for a target.

        Returns:
            False if the attempt was skipped (unknown, disabled or already
            in flight), True otherwise (whatever its outcome).
        """
        with self._lock:
            target = self._targets.get(target_id)
            if target is None or not target.enabled:
                return False
            if target_id in self._in_flight:
                logger.debug("Sync already in progress for %s, skipping", target.remote_sheet_name)
                return False
            self._in_flight.add(target_id)

        try:
            self._set_state(target_id, status=SyncStatus.SYNCING)
            self._sync(target)
        except SyncError as e:
            self._fail(target, e)
        except Exception as e:
            logger.exception("Unexpected error syncing %s", target.remote_sheet_name)
            self._fail(target, UnknownSyncError(e))
        finally:
            with self._lock:
                self._in_flight.discard(target_id)
                if target_id in self._targets:
                    self._last_finished[target_id] = self._clock()
        return True

    def _sync(self, target: SyncTarget) -> None:
        # Pre-flight: credential
        try:
            self._auth.get_valid_credential()
        except (NotAuthenticatedError, TokenExpiredError) as e:
            logger.error("Credential unavailable for %s: %s", target.remote_sheet_name, e)
            self._set_state(target.id, status=SyncStatus.ERROR, last_error=e)
            return

        with AccessHandle(target.local_dir) as directory:
            path = directory / target.local_file.name
            self._check_lock(path)

            baseline = self._detector.get_snapshot(target.id)
            modified = self._remote_modified_time(target)
            if baseline is not None and self._try_fast_path(target, path, baseline, modified):
                return

            checked_at = modified or datetime.now(UTC)
            remote = self._fetch_remote(target, baseline_exists=baseline is not None)

            if baseline is None:
                if not self._first_sync(target, path, remote):
                    return
                direction = SyncDirection.DOWNLOAD
                pending = 0
            else:
                outcome = self._merge(target, path, baseline, remote)
                if outcome is None:
                    self._mark_checked(target.id, checked_at)
                    self._succeed(target, None, 0)
                    return
                direction, pending = outcome

            self._mark_checked(target.id, checked_at)

        self._succeed(target, direction, pending)
        logger.info("Sync completed for %s", target.remote_sheet_name)

    def _check_lock(self, path: Path) -> None:
        """Re-check a locked local file a few times before giving up."""
        if not path.exists():
            return

        def check() -> None:
            if not is_writable(path):
                raise FileLockedError(path)

        retry_with_backoff(
            check,
            max_retries=max(self._settings.lock_retry_attempts - 1, 0),
            initial_backoff=self._settings.lock_retry_delay_seconds,
            backoff_multiplier=1.0,
            retryable_exceptions=(FileLockedError,),
            sleep=self._sleep,
        )

    def _remote_modified_time(self, target: SyncTarget) -> datetime | None:
        try:
            return self._remote.fetch_last_modified_time(target.remote_sheet_id)
        except SyncError as e:
            if e.is_rate_limit:
                raise
            logger.debug("Modified time unavailable for %s: %s", target.remote_sheet_name, e)
            return None

    def _try_fast_path(
        self,
        target: SyncTarget,
        path: Path,
        baseline: SheetSnapshot,
        modified: datetime | None,
    ) -> bool:
        """Handle the attempt from the local side only if the remote is unchanged.

        Args:
            modified: The remote's last modification time, if known.

        Returns:
            True if the attempt was completed here.
        """
        last_checked = self._remote_checked_at.get(target.id)
        if last_checked is None or modified is None or modified > last_checked:
            return False

        local, _ = self._read_local(target, path, baseline)
        if local is None:
            return False

        changes = [
            c for c in self._detector.detect_changes(local, baseline, ChangeSource.LOCAL)
            if c.change_type != ChangeType.DELETED
        ]
        if not changes:
            logger.debug("No changes for %s - skipping full fetch", target.remote_sheet_name)
            self._succeed(target, None, 0)
            return True

        logger.debug("Local changes detected, uploading %d changes", len(changes))
        uploaded, skipped = self._upload(target, changes)
        self._save_baseline(target.id, self._advance_baseline(baseline, uploaded))
        self._succeed(target, SyncDirection.UPLOAD if uploaded else None, len(skipped))
        logger.info("Sync completed for %s", target.remote_sheet_name)
        return True

    def _fetch_remote(self, target: SyncTarget, baseline_exists: bool) -> SheetSnapshot:
        """Fetch the included tabs of the remote spreadsheet."""
        try:
            metadata = self._remote.fetch_sheet_metadata(target.remote_sheet_id)
        except SheetNotFoundError as e:
            if baseline_exists:
                raise SheetDeletedError(target.remote_sheet_name) from e
            raise

        tabs = [tab for tab in metadata.tabs if target.includes_tab(tab.name)]
        if target.file_encoding == FileEncoding.CSV:
            tabs = tabs[:1]

        total_rows = sum(tab.row_count for tab in tabs)
        max_cols = max((tab.column_count for tab in tabs), default=0)
        if total_rows > self._settings.large_sheet_rows or max_cols > self._settings.large_sheet_columns:
            logger.warning(
                "Large sheet detected: %s (%d rows, %d cols) - sync may be slow",
                target.remote_sheet_name,
                total_rows,
                max_cols,
            )

        grids = [
            (tab.name, self._remote.fetch_tab_values(target.remote_sheet_id, tab.name))
            for tab in tabs
        ]
        return SheetSnapshot.from_grids(target.remote_sheet_id, grids)

    def _read_local(
        self,
        target: SyncTarget,
        path: Path,
        baseline: SheetSnapshot | None,
    ) -> tuple[SheetSnapshot | None, bool]:
        """Read the local file.

        Returns:
            Tuple of (snapshot, or None if the file is missing or
            unreadable; whether the file exists).
        """
        try:
            local = self._gateway.read(path, target.file_encoding, target.remote_sheet_id)
        except FileNotFoundSyncError:
            logger.debug("No local file found for %s", target.remote_sheet_name)
            return None, False
        except SyncError as e:
            logger.warning("Cannot read local file for %s: %s", target.remote_sheet_name, e)
            return None, True

        if target.file_encoding == FileEncoding.CSV and baseline is not None and local.tabs:
            # CSV holds one unnamed tab; it stands for the first synced tab
            names = baseline.ordered_tab_names()
            if names:
                rows = local.ordered_tabs()[0].rows
                local = SheetSnapshot.from_grids(target.remote_sheet_id, [(names[0], rows)])
        return local, True

    def _first_sync(self, target: SyncTarget, path: Path, remote: SheetSnapshot) -> bool:
        """Adopt the remote as both local file and baseline.

        Returns:
            False if the user declined (target paused).
        """
        logger.info("First sync for %s - using remote data as baseline", target.remote_sheet_name)

        if target.confirm_first_sync and self.confirm_first_sync is not None:
            if not self.confirm_first_sync(target, remote):
                logger.info("First sync cancelled by user for %s", target.remote_sheet_name)
                self._set_state(target.id, status=SyncStatus.PAUSED, last_error=None)
                return False

        self._gateway.write(remote, path, target.file_encoding)
        self._save_baseline(target.id, remote)
        return True

    def _merge(
        self,
        target: SyncTarget,
        path: Path,
        baseline: SheetSnapshot,
        remote: SheetSnapshot,
    ) -> tuple[SyncDirection | None, int] | None:
        """Three-way merge of an already-synced target.

        Returns:
            (direction, pending) or None if neither side changed.
        """
        name = target.remote_sheet_name
        local, exists = self._read_local(target, path, baseline)
        unreadable = exists and local is None

        remote_changes = self._detector.detect_changes(remote, baseline, ChangeSource.REMOTE)
        logger.debug("Detected %d remote changes for %s", len(remote_changes), name)

        local_changes: list[CellChange] = []
        if local is not None:
            local_cells = local.non_empty_count()
            baseline_cells = baseline.non_empty_count()
            if local_cells == 0 and baseline_cells > 0:
                logger.warning(
                    "Local file appears empty but baseline has %d cells - "
                    "skipping local changes to prevent data loss",
                    baseline_cells,
                )
            else:
                local_changes = self._detector.detect_changes(local, baseline, ChangeSource.LOCAL)
                logger.debug("Detected %d local changes for %s", len(local_changes), name)

        if not remote_changes and not local_changes and (local is not None or unreadable):
            if unreadable:
                logger.info("Remote unchanged for %s - leaving unreadable local file untouched", name)
            else:
                logger.debug("No changes detected for %s - skipping merge", name)
            return None

        if unreadable:
            self._preserve_unreadable(target, path)

        local_mtime = None
        if local is not None:
            try:
                local_mtime = path.stat().st_mtime
            except OSError:
                pass

        resolution = self._resolver.resolve(
            local_changes,
            remote_changes,
            local,
            remote,
            local_mod_time=local_mtime,
            remote_mod_time=self._clock(),
        )

        if resolution.discards_local_data and local is not None:
            try:
                self._backups.create_backup(target, local)
                logger.info("Created conflict backup for %s", name)
            except SyncError as e:
                logger.warning("Failed to create conflict backup: %s", e)
                self._notify_backup_failed(target, e)

        if resolution.conflicts:
            self._report_conflicts(target, resolution.conflicts)

        uploaded: list[CellChange] = []
        skipped: list[CellChange] = []
        if resolution.changes_to_upload:
            logger.info(
                "Uploading %d changes to the remote for %s",
                len(resolution.changes_to_upload),
                name,
            )
            uploaded, skipped = self._upload(target, resolution.changes_to_upload)
        else:
            logger.debug("No changes to upload for %s", name)

        merged = resolution.merged_snapshot
        if resolution.has_local_updates or local is None:
            logger.info("Writing %d remote changes to local file for %s", len(remote_changes), name)
            self._gateway.write(merged, path, target.file_encoding)
        else:
            logger.debug("Local file already up to date for %s", name)

        # Skipped cells stay in the local file but not in the baseline
        new_baseline = merged
        if skipped:
            new_baseline = merged.with_cells(
                (c.tab_name, c.row, c.column, self._cell(remote, c) or "") for c in skipped
            )
        self._save_baseline(target.id, new_baseline)

        if remote_changes and target.backup_policy.should_backup(self._clock()):
            self._scheduled_backup(target, merged)

        if uploaded and remote_changes:
            direction: SyncDirection | None = SyncDirection.BOTH
        elif uploaded:
            direction = SyncDirection.UPLOAD
        elif remote_changes or local is None:
            direction = SyncDirection.DOWNLOAD
        else:
            direction = None
        return direction, len(skipped)

    def _upload(
        self,
        target: SyncTarget,
        changes: Sequence[CellChange],
    ) -> tuple[list[CellChange], list[CellChange]]:
        """Push cell values in one batch, skipping rows the remote grid lacks.

        Returns:
            Tuple of (uploaded, skipped) changes.
        """
        metadata = self._remote.fetch_sheet_metadata(target.remote_sheet_id)
        row_counts = metadata.row_counts()

        by_tab: dict[str, list[CellChange]] = {}
        for change in changes:
            by_tab.setdefault(change.tab_name, []).append(change)

        uploaded: list[CellChange] = []
        skipped: list[CellChange] = []
        for tab, tab_changes in by_tab.items():
            if tab not in row_counts:
                logger.warning("Skipping %d changes on %s - tab not found on the remote", len(tab_changes), tab)
                skipped.extend(tab_changes)
                continue
            max_row = row_counts.get(tab, DEFAULT_ROW_COUNT)
            for change in tab_changes:
                if change.row + 1 <= max_row:
                    uploaded.append(change)
                else:
                    logger.warning(
                        "Skipping change at %s - row exceeds sheet size. "
                        "Add rows to the remote sheet to sync it.",
                        change.cell_reference,
                    )
                    skipped.append(change)

        if uploaded:
            updates = [CellUpdate(c.tab_name, c.row, c.column, c.new_value or "") for c in uploaded]
            count = self._remote.push_cell_updates(target.remote_sheet_id, updates)
            logger.info("Uploaded %d cells for %s", count, target.remote_sheet_name)
        return uploaded, skipped

    @staticmethod
    def _cell(snapshot: SheetSnapshot, change: CellChange) -> str | None:
        tab = snapshot.tabs.get(change.tab_name)
        return tab.value(change.row, change.column) if tab else None

    @staticmethod
    def _advance_baseline(baseline: SheetSnapshot, uploaded: Sequence[CellChange]) -> SheetSnapshot:
        if not uploaded:
            return baseline
        return baseline.with_cells((c.tab_name, c.row, c.column, c.new_value or "") for c in uploaded)

    def _save_baseline(self, target_id: str, snapshot: SheetSnapshot) -> bool:
        """Persist a new baseline unless the target was removed meanwhile."""
        with self._lock:
            if target_id not in self._targets:
                logger.info("Target %s was removed during sync - baseline not saved", target_id)
                return False
            self._detector.save_snapshot(target_id, snapshot)
        return True

    def _mark_checked(self, target_id: str, checked_at: datetime) -> None:
        with self._lock:
            if target_id in self._targets:
                self._remote_checked_at[target_id] = checked_at

    # === Backups / notifications ===

    def _preserve_unreadable(self, target: SyncTarget, path: Path) -> None:
        """Copy an unparseable local file aside before it is overwritten.

        Raises:
            FileWriteError: If the copy fails; the file is left untouched.
        """
        try:
            self._backups.backup_file(target, path)
        except BackupFailedError as e:
            logger.warning("Backup of unreadable local file failed for %s: %s", target.remote_sheet_name, e)
            self._notify_backup_failed(target, e)
            raise FileWriteError(path, "unreadable and could not be backed up") from e
        logger.info("Backed up unreadable local file for %s before overwriting it", target.remote_sheet_name)

    def _scheduled_backup(self, target: SyncTarget, snapshot: SheetSnapshot) -> None:
        """Take the policy backup; failures never fail the sync."""
        try:
            self._backups.create_backup(target, snapshot)
        except SyncError as e:
            logger.warning("Backup failed for %s: %s", target.remote_sheet_name, e)
            self._notify_backup_failed(target, e)
            return

        policy = replace(target.backup_policy, last_backup_at=self._clock())
        updated = target.copy(backup_policy=policy)
        with self._lock:
            if target.id in self._targets:
                self._targets[target.id] = updated
        if self.on_target_update is not None:
            self.on_target_update(updated)

    def _report_conflicts(self, target: SyncTarget, conflicts: Sequence[ConflictInfo]) -> None:
        details = "\n".join(
            f"{c.cell_reference}: {c.losing_value or 'empty'} → {c.winning_value or 'empty'}"
            for c in conflicts
        )
        logger.info("Conflict details:\n%s", details)
        if self._settings.show_notifications:
            notify_conflicts(
                target.remote_sheet_name,
                len(conflicts),
                self._resolver.winner_rule,
                sink=self._notifier,
            )

    def _notify_backup_failed(self, target: SyncTarget, error: SyncError) -> None:
        if self._settings.show_notifications:
            notify_backup_failed(target.remote_sheet_name, error.user_message, sink=self._notifier)

    # === State ===

    def _next_sync_time(self, target: SyncTarget) -> float:
        scheduled = self._scheduler.next_sync_time(target.id)
        if scheduled is not None:
            return scheduled.timestamp()
        return self._clock() + target.sync_interval_seconds

    def _succeed(self, target: SyncTarget, direction: SyncDirection | None, pending: int) -> None:
        changes: dict[str, object] = {
            "status": SyncStatus.IDLE,
            "last_sync_time": self._clock(),
            "next_sync_time": self._next_sync_time(target),
            "last_error": None,
            "pending_changes": pending,
        }
        if direction is not None:
            changes["last_change_direction"] = direction
        self._set_state(target.id, **changes)

    def _fail(self, target: SyncTarget, error: SyncError) -> None:
        status = SyncStatus.RATE_LIMITED if error.is_rate_limit else SyncStatus.ERROR
        self._set_state(target.id, status=status, last_error=error)
        logger.error("Sync failed for %s: %s", target.remote_sheet_name, error)

        if error.is_transient:
            delay = (
                self._settings.rate_limit_retry_delay_seconds
                if error.is_rate_limit
                else self._settings.retry_delay_seconds
            )
            with self._lock:
                active = self._running and target.id in self._targets
            if active:
                self._scheduler.schedule_retry(target.id, delay)
        elif self._settings.show_notifications:
            notify_error(target.remote_sheet_name, error.user_message, sink=self._notifier)

    def _set_state(self, target_id: str, **changes: object) -> None:
        with self._lock:
            state = self._states.get(target_id)
            if state is None:
                return
            for key, value in changes.items():
                setattr(state, key, value)
            current = replace(state)
        if self.on_state_change is not None:
            self.on_state_change(target_id, current)
