"""Price history listing and undo payloads."""

from datetime import datetime

from pydantic import BaseModel, Field


class PriceHistoryEntryRead(BaseModel):
    id: int
    product_id: int
    product_name: str | None = None
    old_price: str
    new_price: str
    can_undo: bool
    created_at: datetime
    undone_at: datetime | None = None


class PriceHistoryGroup(BaseModel):
    job_id: str
    change_type: str
    change_operation: str
    change_value: str
    product_count: int
    can_undo: bool = Field(..., description="False once any entry is undone or past the window")
    created_at: datetime
    entries: list[PriceHistoryEntryRead]


class UndoRequest(BaseModel):
    job_id: str = Field(..., min_length=1)


class UndoError(BaseModel):
    entry_id: int | None = None
    item_id: int | None = None
    message: str
    code: str


class UndoResponse(BaseModel):
    job_id: str
    reverted_count: int
    already_undone_count: int
    errors: list[UndoError]
