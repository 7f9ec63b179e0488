"""Tests for grid snapshots, cell hashing and A1 helpers."""

import pytest

from sheetsync.core.snapshot import (
    EMPTY_HASH,
    CellSnapshot,
    SheetSnapshot,
    cell_reference,
    column_to_letter,
    derive_change_type,
    format_cell_value,
    hash_cell,
    letter_to_column,
)
from sheetsync.core.types import ChangeType


class TestHashCell:
    """Tests for cell hashing."""

    def test_equal_values_hash_equal(self) -> None:
        """Same text should always produce the same digest."""
        assert hash_cell("Hello") == hash_cell("Hello")

    def test_different_values_hash_differently(self) -> None:
        """Different text should produce different digests."""
        assert hash_cell("Hello") != hash_cell("hello")

    def test_sha256_hex(self) -> None:
        """Digest should be a 64-char hex string."""
        digest = hash_cell("x")
        assert len(digest) == 64
        int(digest, 16)

    def test_empty_hash_constant(self) -> None:
        assert EMPTY_HASH == hash_cell("")


class TestA1Helpers:
    """Tests for column letters and cell references."""

    @pytest.mark.parametrize(
        ("column", "letters"),
        [(0, "A"), (1, "B"), (25, "Z"), (26, "AA"), (27, "AB"), (701, "ZZ"), (702, "AAA")],
    )
    def test_column_letters(self, column: int, letters: str) -> None:
        """Columns should map to letters and back."""
        assert column_to_letter(column) == letters
        assert letter_to_column(letters) == column

    def test_lowercase_letters(self) -> None:
        assert letter_to_column("ab") == 27

    def test_cell_reference(self) -> None:
        """References should be 1-based rows with the tab prefix."""
        assert cell_reference("Sheet1", 0, 0) == "Sheet1!A1"
        assert cell_reference("Budget", 9, 27) == "Budget!AB10"


class TestFormatCellValue:
    """Tests for stringifying typed values."""

    def test_none_is_blank(self) -> None:
        assert format_cell_value(None) == ""

    def test_booleans(self) -> None:
        assert format_cell_value(True) == "TRUE"
        assert format_cell_value(False) == "FALSE"

    def test_integral_float_drops_fraction(self) -> None:
        assert format_cell_value(42.0) == "42"

    def test_fractional_float_kept(self) -> None:
        assert format_cell_value(3.5) == "3.5"

    def test_strings_unchanged(self) -> None:
        assert format_cell_value("=SUM(A1:A2)") == "=SUM(A1:A2)"


class TestCellSnapshot:
    """Tests for single-tab snapshots."""

    def test_hashes_match_values(self) -> None:
        """Every stored hash should be the hash of its value."""
        tab = CellSnapshot.create("Sheet1", [["a", "b"], ["c"]])

        for r, row in enumerate(tab.rows):
            for c, value in enumerate(row):
                assert tab.hashes[r][c] == hash_cell(value)

    def test_values_are_stringified(self) -> None:
        tab = CellSnapshot.create("Sheet1", [[1, 2.0, True, None]])

        assert tab.rows == (("1", "2", "TRUE", ""),)

    def test_ragged_rows_allowed(self) -> None:
        """Rows may have different lengths."""
        tab = CellSnapshot.create("Sheet1", [["a"], ["b", "c", "d"], []])

        assert tab.row_count == 3
        assert tab.column_count == 3
        assert tab.value(0, 2) is None
        assert tab.value(1, 2) == "d"

    def test_value_out_of_range(self) -> None:
        tab = CellSnapshot.create("Sheet1", [["a"]])

        assert tab.value(5, 0) is None
        assert tab.value(0, -1) is None
        assert tab.cell_hash(3, 3) is None

    def test_non_empty_cells(self) -> None:
        """Blank cells should be skipped."""
        tab = CellSnapshot.create("Sheet1", [["a", ""], ["", "b"]])

        assert list(tab.non_empty_cells()) == [(0, 0, "a"), (1, 1, "b")]
        assert tab.non_empty_count() == 2

    def test_with_cell_grows_grid(self) -> None:
        """Writing outside the grid should pad with blanks."""
        tab = CellSnapshot.create("Sheet1", [["a"]])

        updated = tab.with_cell(2, 1, "x")

        assert updated.rows == (("a",), (), ("", "x"))
        assert updated.cell_hash(2, 1) == hash_cell("x")
        assert tab.rows == (("a",),)

    def test_dict_round_trip(self) -> None:
        tab = CellSnapshot.create("Sheet1", [["a", "1"]], captured_at=123.0)

        restored = CellSnapshot.from_dict(tab.to_dict())

        assert restored == tab


class TestSheetSnapshot:
    """Tests for multi-tab snapshots."""

    def test_from_grids_keeps_order(self) -> None:
        """Pairs should keep their order as the native tab order."""
        snapshot = SheetSnapshot.from_grids("sheet", [("Zeta", [["z"]]), ("Alpha", [["a"]])])

        assert snapshot.ordered_tab_names() == ["Zeta", "Alpha"]

    def test_unordered_tabs_sorted_after(self) -> None:
        tabs = {
            "B": CellSnapshot.create("B", []),
            "A": CellSnapshot.create("A", []),
            "C": CellSnapshot.create("C", []),
        }
        snapshot = SheetSnapshot(sheet_id="s", tabs=tabs, tab_order=("C",))

        assert snapshot.ordered_tab_names() == ["C", "A", "B"]

    def test_counts(self) -> None:
        snapshot = SheetSnapshot.from_grids(
            "sheet",
            {"One": [["a", "b"], ["c"]], "Two": [["", "d", "e", "f"]]},
        )

        assert snapshot.non_empty_count() == 6
        assert snapshot.row_count == 2
        assert snapshot.column_count == 4

    def test_with_cells_touches_only_named_tabs(self) -> None:
        snapshot = SheetSnapshot.from_grids("sheet", {"One": [["a"]], "Two": [["b"]]})

        updated = snapshot.with_cells([("One", 0, 1, "x"), ("One", 1, 0, "y")])

        assert updated.tabs["One"].rows == (("a", "x"), ("y",))
        assert updated.tabs["Two"] is snapshot.tabs["Two"]

    def test_with_cell_creates_missing_tab(self) -> None:
        snapshot = SheetSnapshot.from_grids("sheet", {"One": [["a"]]})

        updated = snapshot.with_cell("New", 0, 0, "n")

        assert updated.ordered_tab_names() == ["One", "New"]
        assert updated.tabs["New"].value(0, 0) == "n"

    def test_dict_round_trip(self) -> None:
        snapshot = SheetSnapshot.from_grids("sheet", [("B", [["1"]]), ("A", [["2", ""]])])

        restored = SheetSnapshot.from_dict(snapshot.to_dict())

        assert restored.ordered_tab_names() == ["B", "A"]
        assert restored.tabs["A"].rows == snapshot.tabs["A"].rows
        assert restored.captured_at == snapshot.captured_at


class TestDeriveChangeType:
    """Tests for classifying value transitions."""

    def test_added(self) -> None:
        assert derive_change_type(None, "x") == ChangeType.ADDED
        assert derive_change_type("", "x") == ChangeType.ADDED

    def test_deleted(self) -> None:
        assert derive_change_type("x", "") == ChangeType.DELETED
        assert derive_change_type("x", None) == ChangeType.DELETED

    def test_modified(self) -> None:
        assert derive_change_type("x", "y") == ChangeType.MODIFIED

    def test_unchanged(self) -> None:
        """Blank and absent should be equivalent."""
        assert derive_change_type("x", "x") is None
        assert derive_change_type(None, "") is None
