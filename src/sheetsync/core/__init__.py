"""Core module - Shared data model, configuration, errors and enums."""

from sheetsync.core.config import (
    DEFAULT_BACKUP_CACHE_LIMIT,
    MIN_SYNC_INTERVAL,
    BackupPolicy,
    EngineSettings,
    SyncTarget,
    TargetStore,
    get_config_dir,
)
from sheetsync.core.errors import SyncError
from sheetsync.core.snapshot import (
    CellChange,
    CellSnapshot,
    SheetSnapshot,
    cell_reference,
    column_to_letter,
    format_cell_value,
    hash_cell,
    letter_to_column,
)
from sheetsync.core.types import (
    ChangeSource,
    ChangeType,
    ConflictWinner,
    FileEncoding,
    SyncDirection,
    SyncStatus,
)

__all__ = [
    # Config
    "DEFAULT_BACKUP_CACHE_LIMIT",
    "MIN_SYNC_INTERVAL",
    "BackupPolicy",
    "EngineSettings",
    "SyncTarget",
    "TargetStore",
    "get_config_dir",
    # Errors
    "SyncError",
    # Snapshots
    "CellChange",
    "CellSnapshot",
    "SheetSnapshot",
    "cell_reference",
    "column_to_letter",
    "format_cell_value",
    "hash_cell",
    "letter_to_column",
    # Types
    "ChangeSource",
    "ChangeType",
    "ConflictWinner",
    "FileEncoding",
    "SyncDirection",
    "SyncStatus",
]
