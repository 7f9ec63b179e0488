"""Three-way merge of local and remote cell changes.

Implements a "Remote Wins + Audit Trail" strategy:
1. Local deletions are never uploaded; the remote value is restored locally
2. Local additions/modifications on cells the remote did not touch are uploaded
3. A cell changed on both sides is a conflict: the remote value is kept,
   the local value is recorded in a ConflictInfo and nothing is uploaded
4. Every conflict is reported, whichever side won

The winner rule is fixed (remote always wins). Modification times are
accepted for logging only and never influence the outcome.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sheetsync.core.snapshot import SheetSnapshot, cell_reference
from sheetsync.core.types import ChangeType, ConflictWinner

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sheetsync.core.snapshot import CellChange

logger = logging.getLogger(__name__)

WINNER_RULE = "remote-always-wins"


@dataclass(frozen=True)
class ConflictInfo:
    """A cell changed on both sides since the baseline.

    Attributes:
        tab_name: Tab of the conflicting cell.
        row: 0-based row.
        column: 0-based column.
        local_value: Value in the local file.
        remote_value: Value on the remote.
        timestamp: When the conflict was detected.
        winner: Side whose value was kept.
    """

    tab_name: str
    row: int
    column: int
    local_value: str | None
    remote_value: str | None
    timestamp: float = field(default_factory=time.time)
    winner: ConflictWinner = ConflictWinner.REMOTE

    @property
    def cell_reference(self) -> str:
        return cell_reference(self.tab_name, self.row, self.column)

    @property
    def winning_value(self) -> str | None:
        return self.local_value if self.winner == ConflictWinner.LOCAL else self.remote_value

    @property
    def losing_value(self) -> str | None:
        return self.remote_value if self.winner == ConflictWinner.LOCAL else self.local_value

    def marker_row(self) -> list[str]:
        """Row appended to local files to leave an audit trail."""
        stamp = datetime.fromtimestamp(self.timestamp, UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        return [
            f"[CONFLICT - {self.winner.value} wins - {stamp}]",
            self.losing_value or "",
            f"Original cell: {self.cell_reference}",
        ]


@dataclass
class ConflictResolution:
    """Outcome of a merge.

    Attributes:
        changes_to_upload: Local changes to push to the remote.
        conflicts: Every conflicting cell, winner included.
        merged_snapshot: Remote snapshot with uploaded local changes applied.
        has_local_updates: The local file must be rewritten from merged_snapshot.
        skipped_deletions: Local deletions ignored for safety.
        skipped_missing_tab: Local edits dropped because their tab is not on the remote.
    """

    changes_to_upload: list[CellChange]
    conflicts: list[ConflictInfo]
    merged_snapshot: SheetSnapshot
    has_local_updates: bool
    skipped_deletions: int = 0
    skipped_missing_tab: int = 0

    @property
    def discards_local_data(self) -> bool:
        """The local file holds values the merge will overwrite."""
        return bool(self.conflicts) or self.skipped_missing_tab > 0


class ConflictResolver:
    """Deterministic merge policy for one sync attempt."""

    winner_rule = WINNER_RULE

    def resolve(
        self,
        local_changes: Sequence[CellChange],
        remote_changes: Sequence[CellChange],
        local_snapshot: SheetSnapshot | None,
        remote_snapshot: SheetSnapshot,
        local_mod_time: float | None = None,
        remote_mod_time: float | None = None,
    ) -> ConflictResolution:
        """Merge local changes into the fetched remote snapshot.

        Args:
            local_changes: Local file vs baseline.
            remote_changes: Remote vs baseline.
            local_snapshot: Current local content (None if unreadable).
            remote_snapshot: Freshly fetched remote content.
            local_mod_time: Local file mtime, logged with conflicts.
            remote_mod_time: Remote modification time, logged with conflicts.

        Returns:
            The merge decision set.
        """
        remote_by_address = {change.address: change for change in remote_changes}

        changes_to_upload: list[CellChange] = []
        conflicts: list[ConflictInfo] = []
        skipped_deletions = 0
        skipped_missing_tab = 0

        for local in local_changes:
            if local.change_type == ChangeType.DELETED:
                skipped_deletions += 1
                continue

            if local.tab_name not in remote_snapshot.tabs:
                # Tabs cannot be created remotely; the local edit is dropped.
                skipped_missing_tab += 1
                continue

            remote = remote_by_address.get(local.address)
            if remote is None:
                changes_to_upload.append(local)
                continue

            conflict = ConflictInfo(
                tab_name=local.tab_name,
                row=local.row,
                column=local.column,
                local_value=local.new_value,
                remote_value=remote.new_value,
                winner=ConflictWinner.REMOTE,
            )
            conflicts.append(conflict)
            logger.info(
                "Conflict at %s: local %r vs remote %r (local mtime=%s, remote mtime=%s) - remote wins",
                conflict.cell_reference,
                conflict.local_value or "",
                conflict.remote_value or "",
                local_mod_time,
                remote_mod_time,
            )

        merged = remote_snapshot
        if changes_to_upload:
            merged = remote_snapshot.with_cells(
                (c.tab_name, c.row, c.column, c.new_value or "") for c in changes_to_upload
            )

        if skipped_deletions:
            logger.info(
                "Local file has %d missing cells - will restore them from the remote",
                skipped_deletions,
            )
        if skipped_missing_tab:
            logger.warning(
                "Ignoring %d local changes on tabs that do not exist on the remote",
                skipped_missing_tab,
            )

        return ConflictResolution(
            changes_to_upload=changes_to_upload,
            conflicts=conflicts,
            merged_snapshot=merged,
            has_local_updates=(
                bool(remote_changes) or skipped_deletions > 0 or skipped_missing_tab > 0
            ),
            skipped_deletions=skipped_deletions,
            skipped_missing_tab=skipped_missing_tab,
        )
