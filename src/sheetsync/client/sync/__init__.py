"""Bidirectional sync between remote spreadsheets and local files.

Architecture:
    FileWatcher / SyncScheduler → SyncEngine → ChangeDetector + ConflictResolver

Components:
- **ChangeDetector**: Diffs snapshots cell by cell and owns the baselines
- **ConflictResolver**: Three-way merge, remote wins on conflicting cells
- **RateLimiter**: Sliding-window quota and exponential backoff for API calls
- **FileWatcher**: Debounced change events for the local files
- **SyncScheduler**: Periodic and retry jobs per target
- **SyncEngine**: Runs each sync attempt and tracks per-target state
"""

from sheetsync.client.sync.detector import ChangeDetector, all_cells_as_changes, diff_tabs
from sheetsync.client.sync.engine import SyncEngine, TargetState
from sheetsync.client.sync.rate_limiter import RateLimiter
from sheetsync.client.sync.resolver import (
    WINNER_RULE,
    ConflictInfo,
    ConflictResolution,
    ConflictResolver,
)
from sheetsync.client.sync.retry import retry_with_backoff
from sheetsync.client.sync.scheduler import SyncScheduler
from sheetsync.client.sync.watcher import FileWatcher

__all__ = [
    "WINNER_RULE",
    "ChangeDetector",
    "ConflictInfo",
    "ConflictResolution",
    "ConflictResolver",
    "FileWatcher",
    "RateLimiter",
    "SyncEngine",
    "SyncScheduler",
    "TargetState",
    "all_cells_as_changes",
    "diff_tabs",
    "retry_with_backoff",
]
