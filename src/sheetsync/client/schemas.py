"""Pydantic schemas for Google Sheets / Drive request and response bodies.

Only the fields sheetsync reads are declared; everything else in the
responses is ignored.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GoogleModel(BaseModel):
    """Base model mapping snake_case fields to the API's camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# === Sheets: metadata ===


class GridProperties(GoogleModel):
    """Grid dimensions of one tab."""

    row_count: int = 1000
    column_count: int = 26


class SheetProperties(GoogleModel):
    """Properties of one tab."""

    sheet_id: int = 0
    title: str
    index: int = 0
    grid_properties: GridProperties = Field(default_factory=GridProperties)


class SheetEntry(GoogleModel):
    properties: SheetProperties


class SpreadsheetProperties(GoogleModel):
    title: str = ""


class SpreadsheetResponse(GoogleModel):
    """Response of GET /v4/spreadsheets/{id}."""

    spreadsheet_id: str
    properties: SpreadsheetProperties = Field(default_factory=SpreadsheetProperties)
    sheets: list[SheetEntry] = Field(default_factory=list)


# === Sheets: values ===


class ValueRangeResponse(GoogleModel):
    """Response of GET /v4/spreadsheets/{id}/values/{range}."""

    range: str = ""
    major_dimension: str = "ROWS"
    values: list[list[Any]] = Field(default_factory=list)


class ValueRange(GoogleModel):
    """One range of a batch update."""

    range: str
    values: list[list[str]]


class BatchUpdateRequest(GoogleModel):
    """Request body of POST values:batchUpdate."""

    value_input_option: str = "USER_ENTERED"
    data: list[ValueRange]


class BatchUpdateResponse(GoogleModel):
    """Response of POST values:batchUpdate."""

    spreadsheet_id: str = ""
    total_updated_cells: int = 0
    total_updated_rows: int = 0


# === Drive ===


class DriveFile(GoogleModel):
    """File entry from the Drive v3 API."""

    id: str = ""
    name: str = ""
    modified_time: datetime | None = None
    web_view_link: str | None = None


class DriveFileList(GoogleModel):
    """Response of GET /drive/v3/files."""

    files: list[DriveFile] = Field(default_factory=list)
    next_page_token: str | None = None


# === OAuth ===


class TokenResponse(BaseModel):
    """Response of the OAuth token endpoint (snake_case on the wire)."""

    access_token: str
    expires_in: int = 3600
    token_type: str = "Bearer"
    refresh_token: str | None = None
    scope: str | None = None
