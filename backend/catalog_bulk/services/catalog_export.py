"""Catalog CSV export in the import template layout."""

from __future__ import annotations

import csv
import io
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from catalog_bulk.db.models.catalog_item import CatalogItem
from catalog_bulk.services.csv_import import TEMPLATE_HEADERS

logger = logging.getLogger(__name__)

VARIANT_HEADERS = ["Variant ID", "Variant Name"]


def _bool_cell(value: bool | None) -> str:
    return "true" if value else "false"


def _item_cells(item: CatalogItem) -> dict[str, object]:
    return {
        "Product ID": item.id,
        "Name": item.name,
        "SKU": item.sku or "",
        "Price": item.price,
        "Compare At Price": item.compare_at_price or "",
        "Category": item.category or "",
        "Description": item.description or "",
        "Stock Quantity": item.stock_quantity or 0,
        "Status": item.status,
        "Image URL": item.image_url or "",
        "Track Inventory": _bool_cell(item.track_inventory),
    }


def export_rows(session: Session, seller_id: int, include_variants: bool = False) -> list[dict[str, object]]:
    """One row per item, or one per variant when ``include_variants`` is set.

    Items without variants still get a single row with empty variant columns.
    """
    items = session.scalars(
        select(CatalogItem)
        .where(CatalogItem.seller_id == seller_id)
        .options(selectinload(CatalogItem.variants))
        .order_by(CatalogItem.id)
    ).all()

    rows: list[dict[str, object]] = []
    for item in items:
        base = _item_cells(item)
        if not include_variants:
            rows.append(base)
            continue
        if not item.variants:
            rows.append({**base, "Variant ID": "", "Variant Name": ""})
            continue
        for variant in sorted(item.variants, key=lambda v: v.id):
            rows.append(
                {
                    **base,
                    "Variant ID": variant.id,
                    "Variant Name": variant.name,
                    "SKU": variant.sku or "",
                    "Price": variant.price or item.price,
                    "Stock Quantity": variant.stock_quantity or 0,
                }
            )
    return rows


def export_csv(session: Session, seller_id: int, include_variants: bool = False) -> str:
    headers = [*TEMPLATE_HEADERS, *VARIANT_HEADERS] if include_variants else list(TEMPLATE_HEADERS)
    rows = export_rows(session, seller_id, include_variants)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=headers)
    writer.writeheader()
    writer.writerows(rows)
    logger.info(f"Exported {len(rows)} row(s) for seller {seller_id} (variants={include_variants})")
    return buffer.getvalue()
