"""CSV import payloads."""

from typing import Any

from pydantic import BaseModel, Field


class MappingSuggestion(BaseModel):
    headers: list[str]
    mapping: dict[str, str] = Field(..., description="Target field -> CSV header")
    required_fields: list[str]
    available_fields: list[str]
    row_count: int


class ImportRowError(BaseModel):
    row: int
    field: str
    message: str
    value: str | None = None
    code: str = "row_error"


class ImportResult(BaseModel):
    success: bool
    processed: int
    created: int
    updated: int
    skipped: int
    errors: list[ImportRowError]
    preview: list[dict[str, Any]] | None = None
    preview_total: int | None = None
    job_id: str | None = None
    status: str | None = Field(None, description="Job status for committed imports")
