"""Timestamped backups of sync targets.

This module provides:
- BackupMetadata / BackupStats: index records and aggregates
- BackupIndex: SQLite index of backups keyed by target id
- BackupManager: create (from a snapshot or a raw file copy), prune,
  restore and delete backup files

Layout under the backup directory:
    backups.db                      index
    <target id>/<sheet>_<YYYY-mm-dd_HHMMSS>.<ext>

Index rows are the durability boundary: a backup exists once its row is
committed and is gone once its row is removed, whatever happens to the
file afterwards.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import sqlite3
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sheetsync.core.config import DEFAULT_BACKUP_CACHE_LIMIT
from sheetsync.core.errors import BackupFailedError, ChecksumMismatchError, SyncError
from sheetsync.core.types import FileEncoding

if TYPE_CHECKING:
    from sheetsync.client.files import LocalFileGateway
    from sheetsync.core.config import SyncTarget
    from sheetsync.core.snapshot import SheetSnapshot

logger = logging.getLogger(__name__)

INDEX_FILE = "backups.db"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H%M%S"
_INVALID_NAME_CHARS = '/\\:*?"<>|'


def sanitize_file_name(name: str) -> str:
    """Replace characters that are invalid in file names with '-'."""
    return "".join("-" if c in _INVALID_NAME_CHARS else c for c in name).strip() or "sheet"


def file_checksum(path: Path) -> str:
    """SHA-256 hex digest of a file's content."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(block)
    return digest.hexdigest()


@dataclass(frozen=True)
class BackupMetadata:
    """One immutable backup file."""

    target_id: str
    remote_sheet_id: str
    remote_sheet_name: str
    backup_time: float
    file_encoding: FileEncoding
    file_size_bytes: int
    row_count: int
    column_count: int
    tab_names: tuple[str, ...]
    checksum: str
    file_name: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def relative_path(self) -> str:
        return f"{self.target_id}/{self.file_name}"


@dataclass(frozen=True)
class BackupStats:
    """Aggregate view over every backup."""

    total_backups: int
    total_size_bytes: int
    oldest_backup: float | None
    newest_backup: float | None
    backups_by_sheet: dict[str, int]


class BackupIndex:
    """SQLite-based index of BackupMetadata records.

    Append and remove are the only mutations; each is committed before
    the call returns.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize index database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS backups (
                id TEXT PRIMARY KEY,
                target_id TEXT NOT NULL,
                sheet_id TEXT NOT NULL,
                sheet_name TEXT NOT NULL,
                backup_time REAL NOT NULL,
                file_encoding TEXT NOT NULL,
                file_size INTEGER NOT NULL,
                row_count INTEGER NOT NULL,
                column_count INTEGER NOT NULL,
                tab_names TEXT NOT NULL,
                checksum TEXT NOT NULL,
                file_name TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_backups_target ON backups(target_id);
            CREATE INDEX IF NOT EXISTS idx_backups_time ON backups(backup_time);
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def _row_to_metadata(self, row: sqlite3.Row) -> BackupMetadata:
        return BackupMetadata(
            id=row["id"],
            target_id=row["target_id"],
            remote_sheet_id=row["sheet_id"],
            remote_sheet_name=row["sheet_name"],
            backup_time=row["backup_time"],
            file_encoding=FileEncoding(row["file_encoding"]),
            file_size_bytes=row["file_size"],
            row_count=row["row_count"],
            column_count=row["column_count"],
            tab_names=tuple(json.loads(row["tab_names"])),
            checksum=row["checksum"],
            file_name=row["file_name"],
        )

    def _select(self, where: str = "", params: tuple[Any, ...] = ()) -> list[BackupMetadata]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM backups {where} ORDER BY backup_time, rowid",
                params,
            ).fetchall()
        return [self._row_to_metadata(row) for row in rows]

    def add(self, metadata: BackupMetadata) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO backups (
                    id, target_id, sheet_id, sheet_name, backup_time, file_encoding,
                    file_size, row_count, column_count, tab_names, checksum, file_name
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    metadata.id,
                    metadata.target_id,
                    metadata.remote_sheet_id,
                    metadata.remote_sheet_name,
                    metadata.backup_time,
                    metadata.file_encoding.value,
                    metadata.file_size_bytes,
                    metadata.row_count,
                    metadata.column_count,
                    json.dumps(list(metadata.tab_names)),
                    metadata.checksum,
                    metadata.file_name,
                ),
            )

    def remove(self, backup_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM backups WHERE id = ?", (backup_id,))
            return cursor.rowcount > 0

    def remove_target(self, target_id: str) -> int:
        """Remove every record of a target. Returns the number removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM backups WHERE target_id = ?", (target_id,))
            return cursor.rowcount

    def get(self, backup_id: str) -> BackupMetadata | None:
        """Find a backup by id or unique id prefix."""
        matches = self._select("WHERE id LIKE ?", (f"{backup_id}%",))
        exact = [m for m in matches if m.id == backup_id]
        if exact:
            return exact[0]
        return matches[0] if len(matches) == 1 else None

    def for_target(self, target_id: str) -> list[BackupMetadata]:
        return self._select("WHERE target_id = ?", (target_id,))

    def for_sheet(self, sheet_id: str) -> list[BackupMetadata]:
        return self._select("WHERE sheet_id = ?", (sheet_id,))

    def all(self) -> list[BackupMetadata]:
        """Every backup, oldest first."""
        return self._select()

    def total_size(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COALESCE(SUM(file_size), 0) AS total FROM backups").fetchone()
        return int(row["total"])


class BackupManager:
    """Creates and maintains backups for all sync targets.

    Index read-modify-write sequences (create + prune, delete) are
    serialized across targets by a single lock.
    """

    def __init__(
        self,
        backup_dir: Path,
        gateway: LocalFileGateway,
        cache_limit: int = DEFAULT_BACKUP_CACHE_LIMIT,
        index: BackupIndex | None = None,
    ) -> None:
        """Initialize the backup manager.

        Args:
            backup_dir: Root directory for backup files and the index.
            gateway: Codec used to write backup files.
            cache_limit: Total bytes allowed across all backups.
            index: Index to use (defaults to ``backup_dir/backups.db``).
        """
        self._backup_dir = Path(backup_dir)
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        self._gateway = gateway
        self.cache_limit = cache_limit
        self._index = index or BackupIndex(self._backup_dir / INDEX_FILE)
        self._lock = threading.RLock()

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def index(self) -> BackupIndex:
        return self._index

    def close(self) -> None:
        self._index.close()

    def backup_path(self, metadata: BackupMetadata) -> Path:
        """Location of a backup's file."""
        return self._backup_dir / metadata.target_id / metadata.file_name

    # === Create ===

    def create_backup(self, target: SyncTarget, snapshot: SheetSnapshot) -> BackupMetadata:
        """Write a snapshot as a new backup of a target, then prune.

        Raises:
            BackupFailedError: If the file cannot be written, is empty,
                cannot be inspected or cannot be indexed. No index record
                is created then.
        """
        with self._lock:
            now = time.time()
            target_dir = self._target_dir(target)
            path = self._unique_path(target_dir, target.remote_sheet_name, now, target.file_encoding)
            logger.debug("Creating backup at %s", path.name)

            try:
                self._gateway.write(snapshot, path, target.file_encoding)
            except SyncError as e:
                raise BackupFailedError(f"cannot write backup file: {e}") from e

            return self._record(
                target,
                path,
                now,
                row_count=snapshot.row_count,
                column_count=snapshot.column_count,
                tab_names=tuple(snapshot.ordered_tab_names()),
            )

    def backup_file(self, target: SyncTarget, source: Path) -> BackupMetadata:
        """Copy a target's local file byte for byte as a new backup, then prune.

        Keeps files that cannot be parsed. Grid dimensions are unknown and
        recorded as zero.

        Raises:
            BackupFailedError: As for create_backup, or if the source
                cannot be copied.
        """
        with self._lock:
            now = time.time()
            target_dir = self._target_dir(target)
            path = self._unique_path(target_dir, target.remote_sheet_name, now, target.file_encoding)
            logger.debug("Copying %s to backup %s", source.name, path.name)

            try:
                shutil.copyfile(source, path)
            except OSError as e:
                path.unlink(missing_ok=True)
                raise BackupFailedError(f"cannot copy local file: {e}") from e

            return self._record(target, path, now, row_count=0, column_count=0, tab_names=())

    def _target_dir(self, target: SyncTarget) -> Path:
        target_dir = self._backup_dir / target.id
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackupFailedError(f"cannot create backup directory: {e}") from e
        return target_dir

    def _record(
        self,
        target: SyncTarget,
        path: Path,
        now: float,
        row_count: int,
        column_count: int,
        tab_names: tuple[str, ...],
    ) -> BackupMetadata:
        """Checksum and index a freshly written backup file."""
        try:
            size = path.stat().st_size
        except OSError as e:
            raise BackupFailedError(f"cannot read backup file attributes: {e}") from e

        if size == 0:
            path.unlink(missing_ok=True)
            raise BackupFailedError("backup file is empty")

        try:
            checksum = file_checksum(path)
        except OSError as e:
            raise BackupFailedError(f"cannot read backup file for checksum: {e}") from e

        metadata = BackupMetadata(
            target_id=target.id,
            remote_sheet_id=target.remote_sheet_id,
            remote_sheet_name=target.remote_sheet_name,
            backup_time=now,
            file_encoding=target.file_encoding,
            file_size_bytes=size,
            row_count=row_count,
            column_count=column_count,
            tab_names=tab_names,
            checksum=checksum,
            file_name=path.name,
        )
        try:
            self._index.add(metadata)
        except sqlite3.Error as e:
            path.unlink(missing_ok=True)
            raise BackupFailedError(f"cannot record backup in index: {e}") from e

        logger.info(
            "Created backup for %s: %s (%d bytes, %d rows)",
            target.remote_sheet_name,
            path.name,
            size,
            row_count,
        )

        # The backup is committed; a failed prune is retried after the next one
        try:
            self.prune_if_needed()
        except sqlite3.Error as e:
            logger.warning("Backup pruning failed: %s", e)
        return metadata

    def _unique_path(self, directory: Path, sheet_name: str, when: float, encoding: FileEncoding) -> Path:
        stem = f"{sanitize_file_name(sheet_name)}_{datetime.fromtimestamp(when).strftime(TIMESTAMP_FORMAT)}"
        path = directory / f"{stem}.{encoding.extension}"
        counter = 1
        while path.exists():
            path = directory / f"{stem}_{counter}.{encoding.extension}"
            counter += 1
        return path

    # === Retention ===

    def prune_if_needed(self) -> list[BackupMetadata]:
        """Delete the globally oldest backups until under the cache limit.

        Returns:
            The deleted backups, oldest first.
        """
        with self._lock:
            total = self._index.total_size()
            if total <= self.cache_limit:
                return []

            deleted: list[BackupMetadata] = []
            for oldest in self._index.all():
                if total <= self.cache_limit:
                    break
                self.delete_backup(oldest)
                deleted.append(oldest)
                total = self._index.total_size()

            logger.info(
                "Pruned %d backups to fit within cache limit (%d bytes left)",
                len(deleted),
                total,
            )
            return deleted

    # === Restore / delete ===

    def restore_backup(self, metadata: BackupMetadata, destination: Path) -> None:
        """Copy a verified backup over a destination file.

        Raises:
            BackupFailedError: If the backup file is missing or cannot be copied.
            ChecksumMismatchError: If the file no longer matches its checksum.
        """
        source = self.backup_path(metadata)
        if not source.exists():
            logger.error("Backup file not found: %s", source)
            raise BackupFailedError("backup file not found")

        try:
            checksum = file_checksum(source)
        except OSError as e:
            raise BackupFailedError(f"cannot verify backup file: {e}") from e

        if checksum != metadata.checksum:
            logger.error("Backup file checksum mismatch: %s", source)
            raise ChecksumMismatchError(metadata.file_name)

        destination = Path(destination)
        tmp = destination.parent / f".{destination.name}.{uuid.uuid4().hex[:8]}.tmp"
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, tmp)
            os.replace(tmp, destination)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise BackupFailedError(f"cannot copy backup file: {e}") from e

        logger.info("Restored backup %s to %s", metadata.file_name, destination)

    def delete_backup(self, metadata: BackupMetadata) -> None:
        """Remove one backup (index first, then the file)."""
        with self._lock:
            self._index.remove(metadata.id)
            try:
                self.backup_path(metadata).unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not delete backup file %s: %s", metadata.file_name, e)
        logger.info("Deleted backup: %s", metadata.file_name)

    def delete_all_backups_for_target(self, target_id: str) -> int:
        """Remove every backup of a target. Returns the number of records removed."""
        with self._lock:
            removed = self._index.remove_target(target_id)
            shutil.rmtree(self._backup_dir / target_id, ignore_errors=True)
        logger.info("Deleted %d backups of %s", removed, target_id)
        return removed

    # === Queries ===

    def list_backups(self, target_id: str) -> list[BackupMetadata]:
        return self._index.for_target(target_id)

    def list_backups_for_sheet(self, sheet_id: str) -> list[BackupMetadata]:
        """Backups of a spreadsheet across all targets that ever synced it."""
        return self._index.for_sheet(sheet_id)

    def all_backups(self) -> list[BackupMetadata]:
        return self._index.all()

    def stats(self) -> BackupStats:
        backups = self._index.all()
        by_sheet: dict[str, int] = {}
        for backup in backups:
            by_sheet[backup.remote_sheet_id] = by_sheet.get(backup.remote_sheet_id, 0) + 1
        times = [b.backup_time for b in backups]
        return BackupStats(
            total_backups=len(backups),
            total_size_bytes=sum(b.file_size_bytes for b in backups),
            oldest_backup=min(times, default=None),
            newest_backup=max(times, default=None),
            backups_by_sheet=by_sheet,
        )
