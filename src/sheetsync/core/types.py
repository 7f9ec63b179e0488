"""Shared enums for sheetsync.

This module defines the small closed sets of values used across the
data model, the sync engine and the persisted configuration.
"""

from __future__ import annotations

from enum import Enum


class SyncStatus(str, Enum):
    """Current status of a sync target.

    idle -> syncing -> {idle, error, rate_limited, paused}
    """

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"
    PAUSED = "paused"


class FileEncoding(str, Enum):
    """Local file encoding of a sync target."""

    XLSX = "xlsx"
    CSV = "csv"
    JSON = "json"

    @property
    def extension(self) -> str:
        """File extension (without dot)."""
        return self.value


class ChangeType(str, Enum):
    """Kind of cell change relative to a baseline."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class ChangeSource(str, Enum):
    """Side on which a change was detected."""

    LOCAL = "local"
    REMOTE = "remote"


class ConflictWinner(str, Enum):
    """Side whose value was kept for a conflicting cell."""

    LOCAL = "local"
    REMOTE = "remote"


class SyncDirection(str, Enum):
    """Direction of the changes applied by the last sync."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    BOTH = "both"
