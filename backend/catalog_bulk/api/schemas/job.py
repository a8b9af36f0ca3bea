"""Bulk job status payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class JobStatus(BaseModel):
    id: str
    type: str = Field(..., description="Action kind or csv_import")
    status: str = Field(..., description="pending|running|completed|completed_with_errors|failed")
    total: int
    processed: int
    succeeded: int
    failed: int
    progress: float | None = Field(None, description="0-1 range for UI progress bars")
    message: str | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)
    errors_omitted: int = Field(0, description="Errors left out of this response")
    result: dict[str, Any] | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
