"""Catalog item payloads returned by the selection endpoint."""

from pydantic import BaseModel

from catalog_bulk.api.schemas.selection import SelectionCriteria


class CatalogItemRead(BaseModel):
    id: int
    name: str
    sku: str | None = None
    price: str
    status: str
    category: str | None = None
    stock_quantity: int

    model_config = {"from_attributes": True}


class SelectionResponse(BaseModel):
    ids: list[int]
    total: int
    criteria: SelectionCriteria
    preset: str | None = None
    items: list[CatalogItemRead]
