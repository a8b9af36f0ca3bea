"""Pure selection of catalog items for bulk actions."""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from catalog_bulk.api.schemas.selection import SelectionCriteria, StockBucket
from catalog_bulk.core.exceptions import ValidationError
from catalog_bulk.db.models.catalog_item import CatalogStatus

LOW_STOCK_THRESHOLD = 5


class Selectable(Protocol):
    id: Any
    name: Any
    status: Any
    category: Any
    description: Any
    stock_quantity: Any


# Quick-select presets narrow the already-filtered set
QUICK_SELECT_PRESETS: dict[str, dict[str, Any]] = {
    "all": {},
    "draft": {"status": CatalogStatus.DRAFT},
    "published": {"status": CatalogStatus.PUBLISHED},
    "out_of_stock": {"stock_bucket": StockBucket.OUT_OF_STOCK},
    "low_stock": {"stock_bucket": StockBucket.LOW_STOCK},
}


def _in_bucket(quantity: int | None, bucket: StockBucket) -> bool:
    quantity = quantity or 0
    if bucket is StockBucket.IN_STOCK:
        return quantity > 0
    if bucket is StockBucket.OUT_OF_STOCK:
        return quantity <= 0
    if bucket is StockBucket.LOW_STOCK:
        return quantity <= LOW_STOCK_THRESHOLD
    return True


def matches(item: Selectable, criteria: SelectionCriteria) -> bool:
    if criteria.search_text:
        needle = criteria.search_text.strip().lower()
        haystack = (item.name or "", item.category or "", item.description or "")
        if needle and not any(needle in value.lower() for value in haystack):
            return False
    if criteria.status is not None and item.status != criteria.status.value:
        return False
    if criteria.category and item.category != criteria.category:
        return False
    return _in_bucket(item.stock_quantity, criteria.stock_bucket)


def select_item_ids(items: Iterable[Selectable], criteria: SelectionCriteria) -> list[int]:
    """Return ids of matching items, in input order."""
    return [item.id for item in items if matches(item, criteria)]


def resolve_preset(name: str) -> SelectionCriteria:
    try:
        return SelectionCriteria(**QUICK_SELECT_PRESETS[name])
    except KeyError as exc:
        raise ValidationError(
            f"Unknown quick-select preset '{name}'. "
            f"Expected one of: {', '.join(QUICK_SELECT_PRESETS)}"
        ) from exc


def quick_select(
    items: Iterable[Selectable],
    preset: str,
    base: SelectionCriteria | None = None,
) -> list[int]:
    """Apply a named preset within the items matching ``base``."""
    preset_criteria = resolve_preset(preset)
    base = base or SelectionCriteria()
    return [
        item.id
        for item in items
        if matches(item, base) and matches(item, preset_criteria)
    ]
