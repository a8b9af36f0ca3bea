"""Error taxonomy of the bulk catalog engine."""

from __future__ import annotations

from typing import Any


class BulkEngineError(Exception):
    """Base class for engine errors."""


class ValidationError(BulkEngineError, ValueError):
    """Malformed request, rejected before any mutation happens."""


class MappingError(ValidationError):
    """CSV column mapping is missing required fields."""

    def __init__(self, missing_fields: list[str], message: str | None = None):
        self.missing_fields = list(missing_fields)
        super().__init__(
            message
            or f"Required field(s) not mapped to a CSV column: {', '.join(self.missing_fields)}"
        )


class JobNotFoundError(BulkEngineError, LookupError):
    """Unknown job id (or a job owned by another seller)."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class ItemMutationError(BulkEngineError):
    """A single item failed during a bulk action; the batch continues."""

    def __init__(self, item_id: int | None, message: str, code: str = "item_error"):
        self.item_id = item_id
        self.code = code
        super().__init__(message)

    def to_error(self) -> dict[str, Any]:
        return {"item_id": self.item_id, "message": str(self), "code": self.code}


class RowError(BulkEngineError):
    """A CSV row failed coercion or business validation; the import continues."""

    def __init__(self, row: int, field: str, message: str, value: str | None = None):
        self.row = row
        self.field = field
        self.value = value
        super().__init__(message)

    def to_error(self) -> dict[str, Any]:
        error: dict[str, Any] = {
            "row": self.row,
            "field": self.field,
            "message": str(self),
            "code": "row_error",
        }
        if self.value is not None:
            error["value"] = self.value
        return error


class JobFatalError(BulkEngineError):
    """Infrastructure failure that prevents a batch from running at all."""


class UndoWindowExpiredError(BulkEngineError):
    """A price change can no longer be undone (window elapsed or already undone)."""

    def __init__(self, entry_id: int, product_id: int, message: str, code: str = "window_expired"):
        self.entry_id = entry_id
        self.product_id = product_id
        self.code = code
        super().__init__(message)
