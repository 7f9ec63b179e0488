"""Local file reading and writing.

This module provides:
- LocalFileGateway: read/write SheetSnapshots as xlsx, csv or json
- AccessHandle: scoped access to a target's local directory
- is_writable: lock check used before overwriting a local file

Writes go to a temporary file in the destination directory and are moved
into place with os.replace, so readers never see a half-written file.
Conflict marker rows written after the data are dropped again on read.
"""

from __future__ import annotations

import csv
import errno
import io
import json
import logging
import math
import os
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from sheetsync.core.errors import (
    DiskFullError,
    FileLockedError,
    FileNotFoundSyncError,
    FileReadError,
    FileWriteError,
    ParseError,
)
from sheetsync.core.snapshot import SheetSnapshot, format_cell_value
from sheetsync.core.types import FileEncoding

if TYPE_CHECKING:
    from sheetsync.client.sync.resolver import ConflictInfo

logger = logging.getLogger(__name__)

CONFLICT_MARKER_PREFIX = "[CONFLICT - "


def is_writable(path: Path) -> bool:
    """Check whether a file can be overwritten.

    A missing file is writable if its directory is (or will be created).
    """
    path = Path(path)
    if not path.exists():
        return True
    return os.access(path, os.W_OK)


def _is_marker_row(row: Sequence[str]) -> bool:
    return bool(row) and row[0].startswith(CONFLICT_MARKER_PREFIX)


def strip_conflict_markers(rows: list[list[str]]) -> list[list[str]]:
    """Remove trailing conflict marker rows and their blank separator."""
    end = len(rows)
    while end and _is_marker_row(rows[end - 1]):
        end -= 1
    if end == len(rows):
        return rows
    if end and not any(rows[end - 1]):
        end -= 1
    return rows[:end]


def _trim_row(values: Sequence[Any]) -> list[str]:
    """Stringify a row and drop trailing blanks."""
    row = [format_cell_value(v) for v in values]
    while row and not row[-1]:
        row.pop()
    return row


def _xlsx_value(value: str) -> str | int | float | None:
    """Typed xlsx cell value that reads back as the same string."""
    if not value:
        return None
    try:
        number = int(value)
        if str(number) == value:
            return number
    except ValueError:
        pass
    try:
        real = float(value)
        if math.isfinite(real) and repr(real) == value and not real.is_integer():
            return real
    except ValueError:
        pass
    return value


class AccessHandle:
    """Scoped access to a local directory.

    Usage:
        with AccessHandle(target.local_dir) as directory:
            gateway.write(snapshot, directory / name, encoding)
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory).expanduser()
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    def acquire(self) -> Path:
        """Resolve the directory, creating it if needed.

        Raises:
            FileWriteError: If the directory cannot be created.
        """
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileWriteError(self._directory, e.strerror or str(e)) from e
        self._acquired = True
        return self._directory.resolve()

    def release(self) -> None:
        self._acquired = False

    def __enter__(self) -> Path:
        return self.acquire()

    def __exit__(self, *args: object) -> None:
        self.release()


class LocalFileGateway:
    """Reads and writes snapshots in the target's file encoding."""

    def read(self, path: Path, encoding: FileEncoding, sheet_id: str) -> SheetSnapshot:
        """Read a local file into a snapshot.

        Args:
            path: File to read.
            encoding: Expected encoding.
            sheet_id: Remote sheet id stamped on the snapshot.

        Raises:
            FileNotFoundSyncError: If the file does not exist.
            ParseError: If the content cannot be decoded.
            FileReadError: For other I/O failures.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundSyncError(path)

        readers: dict[FileEncoding, Callable[[Path], list[tuple[str, list[list[str]]]]]] = {
            FileEncoding.XLSX: self._read_xlsx,
            FileEncoding.CSV: self._read_csv,
            FileEncoding.JSON: self._read_json,
        }
        try:
            tabs = readers[FileEncoding(encoding)](path)
        except OSError as e:
            raise FileReadError(path, e.strerror or str(e)) from e

        tabs = [(name, strip_conflict_markers(rows)) for name, rows in tabs]
        return SheetSnapshot.from_grids(sheet_id, tabs)

    def write(
        self,
        snapshot: SheetSnapshot,
        path: Path,
        encoding: FileEncoding,
        conflicts: Sequence[ConflictInfo] = (),
    ) -> None:
        """Atomically write a snapshot to a local file.

        Args:
            snapshot: Content to write (tabs in native order).
            path: Destination file.
            encoding: Output encoding.
            conflicts: Conflicts to append as marker rows.

        Raises:
            FileLockedError: If the existing file is not writable.
            DiskFullError: If the volume is out of space.
            FileWriteError: For other I/O failures.
            ParseError: If there is nothing to write as CSV.
        """
        path = Path(path)
        if not is_writable(path):
            raise FileLockedError(path)

        encoding = FileEncoding(encoding)
        tmp = path.parent / f".{path.name}.{uuid.uuid4().hex[:8]}.tmp"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if encoding == FileEncoding.XLSX:
                self._write_xlsx(snapshot, tmp, conflicts)
            elif encoding == FileEncoding.CSV:
                tmp.write_text(self._encode_csv(snapshot, conflicts), encoding="utf-8", newline="")
            else:
                tmp.write_text(self._encode_json(snapshot, conflicts), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            if e.errno == errno.ENOSPC:
                raise DiskFullError() from e
            if isinstance(e, PermissionError):
                raise FileLockedError(path) from e
            raise FileWriteError(path, e.strerror or str(e)) from e
        except ParseError:
            tmp.unlink(missing_ok=True)
            raise

        logger.debug("Wrote %s (%d tabs)", path, len(snapshot.tabs))

    def encode(
        self,
        snapshot: SheetSnapshot,
        encoding: FileEncoding,
        conflicts: Sequence[ConflictInfo] = (),
    ) -> bytes:
        """Serialize a snapshot to bytes without touching the filesystem."""
        encoding = FileEncoding(encoding)
        if encoding == FileEncoding.CSV:
            return self._encode_csv(snapshot, conflicts).encode("utf-8")
        if encoding == FileEncoding.JSON:
            return self._encode_json(snapshot, conflicts).encode("utf-8")
        buffer = io.BytesIO()
        self._build_workbook(snapshot, conflicts).save(buffer)
        return buffer.getvalue()

    # === XLSX ===

    def _read_xlsx(self, path: Path) -> list[tuple[str, list[list[str]]]]:
        try:
            workbook = load_workbook(path, data_only=True)
        except (BadZipFile, InvalidFileException, KeyError, ValueError) as e:
            raise ParseError(f"{path.name}: {e}") from e

        try:
            tabs = []
            for worksheet in workbook.worksheets:
                # Anchor at A1 so leading blank rows/columns keep their indices
                cells = worksheet.iter_rows(min_row=1, min_col=1, values_only=True)
                rows = [_trim_row(values) for values in cells]
                while rows and not rows[-1]:
                    rows.pop()
                tabs.append((worksheet.title, rows))
            return tabs
        finally:
            workbook.close()

    def _build_workbook(self, snapshot: SheetSnapshot, conflicts: Sequence[ConflictInfo]) -> Workbook:
        workbook = Workbook()
        workbook.remove(workbook.active)

        tabs = snapshot.ordered_tabs()
        if not tabs:
            workbook.create_sheet("Sheet1")

        for tab in tabs:
            worksheet = workbook.create_sheet(tab.tab_name)
            for r, row in enumerate(tab.rows, start=1):
                for c, value in enumerate(row, start=1):
                    typed = _xlsx_value(value)
                    if typed is None:
                        continue
                    cell = worksheet.cell(row=r, column=c, value=typed)
                    if isinstance(typed, str) and typed.startswith("="):
                        cell.data_type = "s"  # text, not a formula

            tab_conflicts = [cf for cf in conflicts if cf.tab_name == tab.tab_name]
            if tab_conflicts:
                start = tab.row_count + 2  # one blank row before markers
                for offset, conflict in enumerate(tab_conflicts):
                    for c, value in enumerate(conflict.marker_row(), start=1):
                        worksheet.cell(row=start + offset, column=c, value=value)

        return workbook

    def _write_xlsx(self, snapshot: SheetSnapshot, path: Path, conflicts: Sequence[ConflictInfo]) -> None:
        self._build_workbook(snapshot, conflicts).save(path)

    # === CSV ===

    def _read_csv(self, path: Path) -> list[tuple[str, list[list[str]]]]:
        try:
            content = path.read_text(encoding="utf-8-sig")
        except UnicodeDecodeError as e:
            raise ParseError(f"{path.name} is not valid UTF-8") from e

        try:
            rows = [_trim_row(row) for row in csv.reader(io.StringIO(content, newline=""))]
        except csv.Error as e:
            raise ParseError(f"{path.name}: {e}") from e

        while rows and not rows[-1]:
            rows.pop()
        return [(path.stem, rows)]

    def _encode_csv(self, snapshot: SheetSnapshot, conflicts: Sequence[ConflictInfo]) -> str:
        tabs = snapshot.ordered_tabs()
        if not tabs:
            raise ParseError("No data to write")

        first = tabs[0]
        if len(tabs) > 1:
            logger.debug("CSV keeps only the first tab (%s)", first.tab_name)

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerows(first.rows)
        if conflicts:
            writer.writerow([])
            writer.writerows(conflict.marker_row() for conflict in conflicts)
        return buffer.getvalue()

    # === JSON ===

    def _read_json(self, path: Path) -> list[tuple[str, list[list[str]]]]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return [
                (str(sheet["name"]), [_trim_row(row) for row in sheet.get("data", [])])
                for sheet in data["sheets"]
            ]
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise ParseError(f"{path.name}: {e}") from e

    def _encode_json(self, snapshot: SheetSnapshot, conflicts: Sequence[ConflictInfo]) -> str:
        document: dict[str, Any] = {
            "sheets": [
                {"name": tab.tab_name, "data": [list(row) for row in tab.rows]}
                for tab in snapshot.ordered_tabs()
            ]
        }
        if conflicts:
            document["conflicts"] = [
                {
                    "cell": conflict.cell_reference,
                    "localValue": conflict.local_value,
                    "remoteValue": conflict.remote_value,
                    "timestamp": datetime.fromtimestamp(conflict.timestamp, UTC).isoformat(),
                }
                for conflict in conflicts
            ]
        return json.dumps(document, indent=2, ensure_ascii=False)
