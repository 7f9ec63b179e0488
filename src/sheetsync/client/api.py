"""HTTP client for the Google Sheets and Drive APIs.

This module provides:
- RemoteClient: the protocol the sync engine depends on
- GoogleSheetsClient: httpx implementation against Sheets v4 / Drive v3
- TabInfo, SheetMetadata, CellUpdate, SpreadsheetInfo: plain results

Every call waits for a slot on the shared RateLimiter and fetches a fresh
bearer token from the auth provider before it is sent.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from sheetsync.client.schemas import (
    BatchUpdateRequest,
    BatchUpdateResponse,
    DriveFile,
    DriveFileList,
    SpreadsheetResponse,
    ValueRange,
    ValueRangeResponse,
)
from sheetsync.core.errors import (
    ApiError,
    NetworkError,
    NetworkTimeoutError,
    NotAuthenticatedError,
    ParseError,
    PermissionDeniedError,
    PermissionRevokedError,
    RateLimitedError,
    SheetNotFoundError,
)
from sheetsync.core.snapshot import column_to_letter, format_cell_value

if TYPE_CHECKING:
    from sheetsync.client.auth import AuthProvider
    from sheetsync.client.sync.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

SHEETS_BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"
DRIVE_BASE_URL = "https://www.googleapis.com/drive/v3/files"
DEFAULT_RETRY_AFTER = 60.0  # seconds
DEFAULT_ROW_COUNT = 1000

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class TabInfo:
    """One tab of a spreadsheet with its grid size."""

    name: str
    row_count: int
    column_count: int


@dataclass(frozen=True)
class SheetMetadata:
    """Spreadsheet title and tabs in native order."""

    sheet_id: str
    title: str
    tabs: list[TabInfo]

    def row_counts(self) -> dict[str, int]:
        return {tab.name: tab.row_count for tab in self.tabs}


@dataclass(frozen=True)
class CellUpdate:
    """A single cell write (0-based indices)."""

    tab_name: str
    row: int
    column: int
    value: str


@dataclass(frozen=True)
class SpreadsheetInfo:
    """A spreadsheet visible to the signed-in account."""

    id: str
    name: str
    modified_time: datetime | None


class RemoteClient(Protocol):
    """Operations the sync engine needs from the remote spreadsheet service."""

    def fetch_sheet_metadata(self, sheet_id: str) -> SheetMetadata: ...

    def fetch_tab_values(self, sheet_id: str, tab_name: str) -> list[list[str]]: ...

    def push_cell_updates(self, sheet_id: str, updates: Sequence[CellUpdate]) -> int: ...

    def fetch_last_modified_time(self, sheet_id: str) -> datetime | None: ...


def quote_tab_name(tab_name: str) -> str:
    """Quote a tab name for A1 notation (``'it''s'``)."""
    return "'" + tab_name.replace("'", "''") + "'"


def a1_range(tab_name: str, row: int, column: int) -> str:
    """A1 range of a single cell, e.g. ``'My Tab'!B3``."""
    return f"{quote_tab_name(tab_name)}!{column_to_letter(column)}{row + 1}"


class GoogleSheetsClient:
    """HTTP client for the Google Sheets API."""

    def __init__(
        self,
        auth: AuthProvider,
        rate_limiter: RateLimiter,
        timeout: float = 30.0,
        sheets_url: str = SHEETS_BASE_URL,
        drive_url: str = DRIVE_BASE_URL,
    ) -> None:
        """Initialize the client.

        Args:
            auth: Source of bearer tokens.
            rate_limiter: Process-wide limiter shared with other targets.
            timeout: Overall request timeout in seconds.
            sheets_url: Sheets API base URL.
            drive_url: Drive files API base URL.
        """
        self._auth = auth
        self._limiter = rate_limiter
        self._sheets_url = sheets_url.rstrip("/")
        self._drive_url = drive_url.rstrip("/")
        self._client = httpx.Client(timeout=timeout)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> GoogleSheetsClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # === Transport ===

    def _request(
        self,
        method: str,
        url: str,
        write: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        if write:
            self._limiter.wait_for_write_slot()
        else:
            self._limiter.wait_for_read_slot()

        token = self._auth.get_valid_credential()
        headers = {"Authorization": f"Bearer {token}"}

        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkTimeoutError() from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network error: {e}") from e

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        status = response.status_code
        if status < 400:
            self._limiter.record_success()
            return response

        if status == 401:
            raise NotAuthenticatedError()
        if status == 403:
            body = response.text
            if "revoked" in body or "invalid_grant" in body:
                raise PermissionRevokedError()
            raise PermissionDeniedError()
        if status == 404:
            raise SheetNotFoundError(response.request.url.path.rsplit("/", 1)[-1])
        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            self._limiter.handle_rate_limit(retry_after)
            raise RateLimitedError(retry_after)

        raise ApiError(status, _error_message(response))

    def _decode(self, response: httpx.Response, model: type[M]) -> M:
        try:
            return model.model_validate(response.json())
        except ValueError as e:
            logger.error("Unexpected response from %s: %s", response.request.url, e)
            raise ParseError(f"unexpected response: {e}") from e

    # === Sheets ===

    def fetch_sheet_metadata(self, sheet_id: str) -> SheetMetadata:
        """Get the title and tabs of a spreadsheet.

        Raises:
            SheetNotFoundError: If the spreadsheet does not exist.
        """
        response = self._request(
            "GET",
            f"{self._sheets_url}/{quote(sheet_id, safe='')}",
            params={"fields": "spreadsheetId,properties,sheets.properties"},
        )
        data = self._decode(response, SpreadsheetResponse)
        entries = sorted(data.sheets, key=lambda entry: entry.properties.index)
        return SheetMetadata(
            sheet_id=data.spreadsheet_id,
            title=data.properties.title,
            tabs=[
                TabInfo(
                    name=entry.properties.title,
                    row_count=entry.properties.grid_properties.row_count,
                    column_count=entry.properties.grid_properties.column_count,
                )
                for entry in entries
            ],
        )

    def fetch_tab_values(self, sheet_id: str, tab_name: str) -> list[list[str]]:
        """Get all values of a tab as strings."""
        range_ = quote(quote_tab_name(tab_name), safe="")
        response = self._request(
            "GET",
            f"{self._sheets_url}/{quote(sheet_id, safe='')}/values/{range_}",
            params={
                "valueRenderOption": "UNFORMATTED_VALUE",
                "dateTimeRenderOption": "FORMATTED_STRING",
            },
        )
        data = self._decode(response, ValueRangeResponse)
        return [[format_cell_value(value) for value in row] for row in data.values]

    def push_cell_updates(self, sheet_id: str, updates: Sequence[CellUpdate]) -> int:
        """Write cells in one batch.

        Values are sent as USER_ENTERED so numbers and formulas are parsed
        the way the spreadsheet UI would.

        Returns:
            Number of cells the service reports as updated.
        """
        if not updates:
            return 0

        body = BatchUpdateRequest(
            data=[
                ValueRange(range=a1_range(u.tab_name, u.row, u.column), values=[[u.value]])
                for u in updates
            ]
        )
        response = self._request(
            "POST",
            f"{self._sheets_url}/{quote(sheet_id, safe='')}/values:batchUpdate",
            write=True,
            json=body.model_dump(by_alias=True),
        )
        result = self._decode(response, BatchUpdateResponse)
        logger.debug("Batch update wrote %d cells", result.total_updated_cells)
        return result.total_updated_cells

    # === Drive ===

    def fetch_last_modified_time(self, sheet_id: str) -> datetime | None:
        """Get the spreadsheet's Drive modification time (one cheap call)."""
        response = self._request(
            "GET",
            f"{self._drive_url}/{quote(sheet_id, safe='')}",
            params={"fields": "modifiedTime", "supportsAllDrives": "true"},
        )
        return self._decode(response, DriveFile).modified_time

    def list_spreadsheets(
        self,
        page_token: str | None = None,
        page_size: int = 50,
    ) -> tuple[list[SpreadsheetInfo], str | None]:
        """List spreadsheets visible to the account, most recently modified first.

        Returns:
            Tuple of (spreadsheets, next page token or None).
        """
        params: dict[str, str | int] = {
            "q": "mimeType='application/vnd.google-apps.spreadsheet'",
            "fields": "files(id,name,modifiedTime,webViewLink),nextPageToken",
            "pageSize": page_size,
            "orderBy": "modifiedTime desc",
            "includeItemsFromAllDrives": "true",
            "supportsAllDrives": "true",
            "corpora": "allDrives",
        }
        if page_token:
            params["pageToken"] = page_token

        response = self._request("GET", self._drive_url, params=params)
        data = self._decode(response, DriveFileList)
        files = [SpreadsheetInfo(id=f.id, name=f.name, modified_time=f.modified_time) for f in data.files]
        return files, data.next_page_token


def _parse_retry_after(value: str | None) -> float:
    if not value:
        return DEFAULT_RETRY_AFTER
    try:
        return max(float(value), 0.0)
    except ValueError:
        return DEFAULT_RETRY_AFTER


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("error", {}).get("message") or response.text)
    except (ValueError, AttributeError):
        return response.text or "Unknown error"
