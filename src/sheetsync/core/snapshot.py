"""Content-addressed grid snapshots and cell changes.

This module provides:
- hash_cell: SHA-256 digest of a cell value
- CellSnapshot: one tab's rows plus per-cell hashes
- SheetSnapshot: all tabs of a spreadsheet with their native order
- CellChange: one cell-level difference relative to a baseline
- A1 helpers: column_to_letter, letter_to_column, cell_reference

Snapshots are immutable. Hashes are computed once at construction;
any content change produces a new snapshot (see CellSnapshot.with_cell).
"""

from __future__ import annotations

import hashlib
import time
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from sheetsync.core.types import ChangeSource, ChangeType

Grid = tuple[tuple[str, ...], ...]


def hash_cell(value: str) -> str:
    """Return the SHA-256 hex digest of a cell value."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


EMPTY_HASH = hash_cell("")


def column_to_letter(column: int) -> str:
    """Convert a 0-based column index to A1 letters (0 -> A, 26 -> AA)."""
    result = ""
    col = column
    while col >= 0:
        result = chr(65 + col % 26) + result
        col = col // 26 - 1
    return result


def letter_to_column(letters: str) -> int:
    """Convert A1 column letters to a 0-based index (A -> 0, AA -> 26)."""
    result = 0
    for char in letters.upper():
        result = result * 26 + (ord(char) - 64)
    return result - 1


def cell_reference(tab_name: str, row: int, column: int) -> str:
    """Human-readable A1 reference, e.g. ``Sheet1!B3``."""
    return f"{tab_name}!{column_to_letter(column)}{row + 1}"


def format_cell_value(value: Any) -> str:
    """Stringify a typed cell value.

    Booleans become TRUE/FALSE and integral floats lose their ``.0`` so
    that values read from typed sources compare equal to their text form.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _freeze(rows: Iterable[Iterable[Any]]) -> Grid:
    return tuple(tuple(format_cell_value(cell) for cell in row) for row in rows)


@dataclass(frozen=True)
class CellSnapshot:
    """Content of one tab with a precomputed hash per cell.

    Rows may be ragged: a row is only as long as its last non-blank
    cell requires. Comparison pads both sides to the larger shape.
    """

    tab_name: str
    rows: Grid
    hashes: Grid
    captured_at: float

    @classmethod
    def create(
        cls,
        tab_name: str,
        rows: Iterable[Iterable[Any]],
        captured_at: float | None = None,
    ) -> CellSnapshot:
        """Build a snapshot, stringifying values and hashing every cell."""
        frozen = _freeze(rows)
        hashes = tuple(tuple(hash_cell(cell) for cell in row) for row in frozen)
        return cls(
            tab_name=tab_name,
            rows=frozen,
            hashes=hashes,
            captured_at=time.time() if captured_at is None else captured_at,
        )

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return max((len(row) for row in self.rows), default=0)

    def value(self, row: int, column: int) -> str | None:
        """Cell value, or None when the address is outside the grid."""
        if 0 <= row < len(self.rows) and 0 <= column < len(self.rows[row]):
            return self.rows[row][column]
        return None

    def cell_hash(self, row: int, column: int) -> str | None:
        """Precomputed hash, or None when the address is outside the grid."""
        if 0 <= row < len(self.hashes) and 0 <= column < len(self.hashes[row]):
            return self.hashes[row][column]
        return None

    def non_empty_cells(self) -> Iterable[tuple[int, int, str]]:
        """Yield (row, column, value) for every non-blank cell."""
        for r, row in enumerate(self.rows):
            for c, value in enumerate(row):
                if value:
                    yield r, c, value

    def non_empty_count(self) -> int:
        return sum(1 for _ in self.non_empty_cells())

    def with_cell(self, row: int, column: int, value: str) -> CellSnapshot:
        """Return a new snapshot with one cell replaced, growing the grid."""
        rows = [list(r) for r in self.rows]
        while len(rows) <= row:
            rows.append([])
        while len(rows[row]) <= column:
            rows[row].append("")
        rows[row][column] = value
        return CellSnapshot.create(self.tab_name, rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tab_name": self.tab_name,
            "rows": [list(row) for row in self.rows],
            "captured_at": self.captured_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CellSnapshot:
        return cls.create(data["tab_name"], data["rows"], data.get("captured_at"))


@dataclass(frozen=True)
class SheetSnapshot:
    """All tabs of one spreadsheet at a point in time.

    ``tab_order`` preserves the remote's native ordering so local files
    reproduce it. Tabs missing from ``tab_order`` sort after it by name.
    """

    sheet_id: str
    tabs: Mapping[str, CellSnapshot]
    tab_order: tuple[str, ...] = ()
    captured_at: float = field(default_factory=time.time)

    @classmethod
    def from_grids(
        cls,
        sheet_id: str,
        grids: Mapping[str, Iterable[Iterable[Any]]] | Sequence[tuple[str, Iterable[Iterable[Any]]]],
    ) -> SheetSnapshot:
        """Build from ``{tab: rows}`` (or ordered pairs), keeping insertion order."""
        items = list(grids.items()) if isinstance(grids, Mapping) else list(grids)
        tabs = {name: CellSnapshot.create(name, rows) for name, rows in items}
        return cls(sheet_id=sheet_id, tabs=tabs, tab_order=tuple(name for name, _ in items))

    def ordered_tab_names(self) -> list[str]:
        """Tab names in native order, followed by any unordered tabs."""
        ordered = [name for name in self.tab_order if name in self.tabs]
        extra = sorted(name for name in self.tabs if name not in ordered)
        return ordered + extra

    def ordered_tabs(self) -> list[CellSnapshot]:
        return [self.tabs[name] for name in self.ordered_tab_names()]

    def non_empty_count(self) -> int:
        """Number of non-blank cells across all tabs."""
        return sum(tab.non_empty_count() for tab in self.tabs.values())

    @property
    def row_count(self) -> int:
        return max((tab.row_count for tab in self.tabs.values()), default=0)

    @property
    def column_count(self) -> int:
        return max((tab.column_count for tab in self.tabs.values()), default=0)

    def with_cell(self, tab_name: str, row: int, column: int, value: str) -> SheetSnapshot:
        """Return a new snapshot with one cell replaced."""
        return self.with_cells([(tab_name, row, column, value)])

    def with_cells(self, updates: Iterable[tuple[str, int, int, str]]) -> SheetSnapshot:
        """Return a new snapshot with several cells replaced.

        Grids auto-grow (padded with blanks) to fit each address. Writing
        into a tab that does not exist creates it at the end of the tab
        order. Only touched tabs are re-hashed.
        """
        grids: dict[str, list[list[str]]] = {}
        order = list(self.tab_order)
        for tab_name, row, column, value in updates:
            if tab_name not in grids:
                existing = self.tabs.get(tab_name)
                grids[tab_name] = [list(r) for r in existing.rows] if existing else []
                if tab_name not in order:
                    order.append(tab_name)
            rows = grids[tab_name]
            while len(rows) <= row:
                rows.append([])
            while len(rows[row]) <= column:
                rows[row].append("")
            rows[row][column] = value

        tabs = dict(self.tabs)
        for tab_name, rows in grids.items():
            tabs[tab_name] = CellSnapshot.create(tab_name, rows)
        return SheetSnapshot(sheet_id=self.sheet_id, tabs=tabs, tab_order=tuple(order))

    def to_dict(self) -> dict[str, Any]:
        return {
            "sheet_id": self.sheet_id,
            "tab_order": list(self.tab_order),
            "captured_at": self.captured_at,
            "tabs": {name: tab.to_dict() for name, tab in self.tabs.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SheetSnapshot:
        tabs = {name: CellSnapshot.from_dict(tab) for name, tab in data["tabs"].items()}
        return cls(
            sheet_id=data["sheet_id"],
            tabs=tabs,
            tab_order=tuple(data.get("tab_order", ())),
            captured_at=data.get("captured_at", time.time()),
        )


def derive_change_type(old_value: str | None, new_value: str | None) -> ChangeType | None:
    """Classify a transition between two cell values.

    Returns None when nothing changed (blank and absent are equivalent).
    """
    old = old_value or ""
    new = new_value or ""
    if old == new:
        return None
    if not old:
        return ChangeType.ADDED
    if not new:
        return ChangeType.DELETED
    return ChangeType.MODIFIED


@dataclass(frozen=True)
class CellChange:
    """One cell that differs from the baseline."""

    tab_name: str
    row: int
    column: int
    old_value: str | None
    new_value: str | None
    change_type: ChangeType
    source: ChangeSource
    detected_at: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def address(self) -> tuple[str, int, int]:
        """(tab, row, column) key used to match changes across sides."""
        return (self.tab_name, self.row, self.column)

    @property
    def cell_reference(self) -> str:
        return cell_reference(self.tab_name, self.row, self.column)
