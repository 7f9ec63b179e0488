"""Durable baseline snapshot storage.

This module provides:
- BaselineStore: SQLite-backed store of the last reconciled SheetSnapshot
  per sync target (the three-way-merge ancestor)

Every write is committed before the call returns (autocommit mode) and
all access is serialized through a single lock, so targets syncing on
different threads never interleave a read-modify-write.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path

from sheetsync.core.snapshot import SheetSnapshot

logger = logging.getLogger(__name__)


class BaselineStore:
    """SQLite-based store of baseline snapshots keyed by target id.

    Snapshots are loaded lazily and kept in memory after the first read;
    the in-memory copy is only updated after the durable write succeeded.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize baseline database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._cache: dict[str, SheetSnapshot] = {}

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
            CREATE TABLE IF NOT EXISTS baselines (
                target_id TEXT PRIMARY KEY,
                sheet_id TEXT NOT NULL,
                snapshot TEXT NOT NULL,
                saved_at REAL NOT NULL
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def get(self, target_id: str) -> SheetSnapshot | None:
        """Get the baseline for a target.

        Returns:
            The snapshot, or None if the target never completed a first sync.
        """
        with self._lock:
            cached = self._cache.get(target_id)
            if cached is not None:
                return cached

            row = self._conn.execute(
                "SELECT snapshot FROM baselines WHERE target_id = ?",
                (target_id,),
            ).fetchone()
            if row is None:
                return None

            try:
                snapshot = SheetSnapshot.from_dict(json.loads(row["snapshot"]))
            except (ValueError, KeyError, TypeError):
                logger.exception("Corrupted baseline for %s, ignoring it", target_id)
                return None

            self._cache[target_id] = snapshot
            return snapshot

    def save(self, target_id: str, snapshot: SheetSnapshot) -> None:
        """Persist a new baseline, replacing any previous one."""
        payload = json.dumps(snapshot.to_dict(), separators=(",", ":"))
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO baselines (target_id, sheet_id, snapshot, saved_at)
                VALUES (?, ?, ?, ?)
                """,
                (target_id, snapshot.sheet_id, payload, time.time()),
            )
            self._cache[target_id] = snapshot
        logger.debug("Saved baseline for %s (%d tabs)", target_id, len(snapshot.tabs))

    def delete(self, target_id: str) -> None:
        """Forget the baseline of a removed target."""
        with self._lock:
            self._conn.execute("DELETE FROM baselines WHERE target_id = ?", (target_id,))
            self._cache.pop(target_id, None)

    def target_ids(self) -> list[str]:
        """List targets that have a baseline."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT target_id FROM baselines ORDER BY target_id"
            ).fetchall()
        return [row["target_id"] for row in rows]
