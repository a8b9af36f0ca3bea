"""SKU-keyed stock CSV: parse quantities and resolve them to product or variant ids."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from catalog_bulk.core.exceptions import RowError, ValidationError
from catalog_bulk.db.models.catalog_item import CatalogItem, ProductVariant
from catalog_bulk.services.csv_import import parse_csv

logger = logging.getLogger(__name__)


@dataclass
class StockCsv:
    # sku -> new quantity; a repeated SKU keeps its last value
    quantities: dict[str, int] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class StockResolution:
    quantities: dict[int, int] = field(default_factory=dict)
    unmatched_skus: list[str] = field(default_factory=list)


def _find_columns(headers: list[str]) -> tuple[int, int]:
    lowered = [header.lower() for header in headers]
    sku_index = next((i for i, h in enumerate(lowered) if "sku" in h), None)
    stock_index = next(
        (i for i, h in enumerate(lowered) if "stock" in h and "current" not in h),
        None,
    )
    if sku_index is None or stock_index is None:
        raise ValidationError("CSV must contain SKU and Stock columns")
    return sku_index, stock_index


def parse_stock_csv(raw: bytes) -> StockCsv:
    parsed = parse_csv(raw)
    sku_index, stock_index = _find_columns(parsed.headers)

    result = StockCsv()
    for row, cells in parsed.rows:
        sku = cells[sku_index].strip() if sku_index < len(cells) else ""
        value = cells[stock_index].strip() if stock_index < len(cells) else ""
        if not sku:
            result.errors.append(RowError(row, "sku", "SKU is required", value).to_error())
            continue
        try:
            quantity = int(value)
        except ValueError:
            result.errors.append(RowError(row, "stock", "Stock must be a whole number", value).to_error())
            continue
        if quantity < 0:
            result.errors.append(RowError(row, "stock", "Stock cannot be negative", value).to_error())
            continue
        result.quantities[sku] = quantity
    return result


def resolve_skus(
    session: Session,
    seller_id: int,
    quantities: dict[str, int],
    target: str = "product",
) -> StockResolution:
    """Map SKUs (case-insensitive) to the seller's product or variant ids."""
    wanted = {sku.lower(): sku for sku in quantities}
    if target == "variant":
        stmt = (
            select(ProductVariant.id, ProductVariant.sku)
            .join(CatalogItem, ProductVariant.product_id == CatalogItem.id)
            .where(CatalogItem.seller_id == seller_id, func.lower(ProductVariant.sku).in_(list(wanted)))
        )
    else:
        stmt = select(CatalogItem.id, CatalogItem.sku).where(
            CatalogItem.seller_id == seller_id,
            func.lower(CatalogItem.sku).in_(list(wanted)),
        )

    resolution = StockResolution()
    matched: set[str] = set()
    for target_id, sku in session.execute(stmt).all():
        key = sku.lower()
        resolution.quantities[target_id] = quantities[wanted[key]]
        matched.add(key)
    resolution.unmatched_skus = [original for key, original in wanted.items() if key not in matched]
    if resolution.unmatched_skus:
        logger.info(f"Stock CSV for seller {seller_id}: {len(resolution.unmatched_skus)} unmatched SKU(s)")
    return resolution
