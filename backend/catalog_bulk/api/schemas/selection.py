"""Selection criteria value object shared by the filter and bulk submission."""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field

from catalog_bulk.db.models.catalog_item import CatalogStatus


class StockBucket(str, enum.Enum):
    ANY = "any"
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"


class SelectionCriteria(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    search_text: str | None = Field(None, description="Case-insensitive match on name, category, description")
    status: CatalogStatus | None = None
    category: str | None = None
    stock_bucket: StockBucket = StockBucket.ANY