"""Cell-level change detection against a baseline snapshot.

This module provides:
- ChangeDetector: diffs two SheetSnapshots by precomputed cell hashes and
  owns the per-target baseline (delegating durability to BaselineStore)

Diff rules:
- No baseline: every non-blank cell is ADDED (bootstrap)
- Tab in both: compare hashes over the union of both grids' index space
- Tab only in current: its non-blank cells are ADDED
- Tab only in baseline: its non-blank cells are DELETED
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

from sheetsync.core.snapshot import (
    EMPTY_HASH,
    CellChange,
    CellSnapshot,
    SheetSnapshot,
    derive_change_type,
)
from sheetsync.core.types import ChangeSource, ChangeType

if TYPE_CHECKING:
    from sheetsync.client.state import BaselineStore

logger = logging.getLogger(__name__)


def diff_tabs(
    current: CellSnapshot,
    baseline: CellSnapshot,
    source: ChangeSource,
) -> Iterator[CellChange]:
    """Yield changes between two versions of the same tab.

    Only hashes are compared; values are looked up for cells that differ.
    Missing cells count as blank, so a trailing "" never shows as a change.
    """
    max_rows = max(len(current.hashes), len(baseline.hashes))
    for row in range(max_rows):
        cur_row = current.hashes[row] if row < len(current.hashes) else ()
        base_row = baseline.hashes[row] if row < len(baseline.hashes) else ()
        for col in range(max(len(cur_row), len(base_row))):
            new_hash = cur_row[col] if col < len(cur_row) else EMPTY_HASH
            old_hash = base_row[col] if col < len(base_row) else EMPTY_HASH
            if new_hash == old_hash:
                continue

            old_value = baseline.value(row, col)
            new_value = current.value(row, col)
            change_type = derive_change_type(old_value, new_value)
            if change_type is None:
                continue
            yield CellChange(
                tab_name=current.tab_name,
                row=row,
                column=col,
                old_value=old_value,
                new_value=new_value,
                change_type=change_type,
                source=source,
            )


def all_cells_as_changes(
    tab: CellSnapshot,
    change_type: ChangeType,
    source: ChangeSource,
) -> Iterator[CellChange]:
    """Yield one change per non-blank cell of a tab."""
    for row, col, value in tab.non_empty_cells():
        yield CellChange(
            tab_name=tab.tab_name,
            row=row,
            column=col,
            old_value=value if change_type == ChangeType.DELETED else None,
            new_value=value if change_type == ChangeType.ADDED else None,
            change_type=change_type,
            source=source,
        )


class ChangeDetector:
    """Detects cell changes and keeps the baseline per sync target."""

    def __init__(self, store: BaselineStore) -> None:
        """Initialize the detector.

        Args:
            store: Durable baseline storage.
        """
        self._store = store

    def detect_changes(
        self,
        current: SheetSnapshot,
        baseline: SheetSnapshot | None,
        source: ChangeSource,
    ) -> list[CellChange]:
        """Compute changes of ``current`` relative to ``baseline``.

        Args:
            current: Freshly captured snapshot.
            baseline: Last reconciled snapshot, or None before the first sync.
            source: Side the current snapshot came from.

        Returns:
            Changes ordered by tab order, then row, then column.
        """
        changes: list[CellChange] = []

        if baseline is None:
            for tab in current.ordered_tabs():
                changes.extend(all_cells_as_changes(tab, ChangeType.ADDED, source))
            return changes

        tab_names = current.ordered_tab_names()
        tab_names += [name for name in baseline.ordered_tab_names() if name not in current.tabs]

        for name in tab_names:
            current_tab = current.tabs.get(name)
            baseline_tab = baseline.tabs.get(name)
            if current_tab is not None and baseline_tab is not None:
                changes.extend(diff_tabs(current_tab, baseline_tab, source))
            elif current_tab is not None:
                changes.extend(all_cells_as_changes(current_tab, ChangeType.ADDED, source))
            elif baseline_tab is not None:
                changes.extend(all_cells_as_changes(baseline_tab, ChangeType.DELETED, source))

        return changes

    # === Baseline ===

    def get_snapshot(self, target_id: str) -> SheetSnapshot | None:
        return self._store.get(target_id)

    def save_snapshot(self, target_id: str, snapshot: SheetSnapshot) -> None:
        """Durably replace the baseline of a target."""
        self._store.save(target_id, snapshot)

    def delete_snapshot(self, target_id: str) -> None:
        self._store.delete(target_id)
