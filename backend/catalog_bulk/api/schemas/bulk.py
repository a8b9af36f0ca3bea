"""Bulk submission and price preview payloads."""

from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from catalog_bulk.api.schemas.actions import AdjustPriceAction, BulkAction
from catalog_bulk.api.schemas.job import JobStatus
from catalog_bulk.api.schemas.selection import SelectionCriteria


class BulkRequest(BaseModel):
    action: BulkAction
    item_ids: list[int] | None = Field(None, description="Explicit targets")
    selection: SelectionCriteria | None = Field(
        None, description="Resolved to ids at submission when item_ids is omitted"
    )
    preset: str | None = Field(None, description="Quick-select preset applied within the selection")

    @model_validator(mode="after")
    def _require_targets(self) -> "BulkRequest":
        if self.item_ids is None and self.selection is None and self.preset is None:
            raise ValueError("item_ids or a selection is required")
        return self


class PricePreviewRequest(BaseModel):
    action: AdjustPriceAction
    item_ids: list[int] = Field(..., min_length=1)


class PricePreviewItem(BaseModel):
    item_id: int
    name: str | None = None
    old_price: Decimal | None = None
    new_price: Decimal | None = None
    error: str | None = None


class PricePreviewResponse(BaseModel):
    items: list[PricePreviewItem]


class StockCsvResponse(BaseModel):
    job: JobStatus | None = None
    matched: int
    unmatched_skus: list[str]
    errors: list[dict]
