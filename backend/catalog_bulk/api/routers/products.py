"""Catalog selection for the bulk action toolbar, and catalog export."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_bulk.api.dependencies.db import get_seller_id, get_session
from catalog_bulk.api.routers.job_helpers import resolve_selection
from catalog_bulk.api.schemas.product import CatalogItemRead, SelectionResponse
from catalog_bulk.api.schemas.selection import SelectionCriteria, StockBucket
from catalog_bulk.core.exceptions import ValidationError
from catalog_bulk.db.models.catalog_item import CatalogStatus
from catalog_bulk.services.catalog_export import export_csv

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(
    "/selection",
    summary="Select catalog items by filters or a quick-select preset",
    response_model=SelectionResponse,
)
async def select_products(
    search: str | None = Query(None, description="Matches name, category or description"),
    status_filter: CatalogStatus | None = Query(None, alias="status"),
    category: str | None = Query(None),
    stock: StockBucket = Query(StockBucket.ANY, description="Stock bucket"),
    preset: str | None = Query(None, description="all, draft, published, out_of_stock, low_stock"),
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> SelectionResponse:
    """Return the ids a bulk action would target, in catalog order."""
    criteria = SelectionCriteria(
        search_text=search,
        status=status_filter,
        category=category,
        stock_bucket=stock,
    )
    try:
        ids, items = resolve_selection(db, seller_id, criteria, preset)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error selecting products: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve products",
        ) from e

    return SelectionResponse(
        ids=ids,
        total=len(ids),
        criteria=criteria,
        preset=preset,
        items=[CatalogItemRead.model_validate(item) for item in items],
    )


@router.get("/export", summary="Export the catalog as CSV")
async def export_products(
    include_variants: bool = Query(False, description="One row per variant"),
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> Response:
    """Download the seller's catalog in the import template layout."""
    try:
        content = export_csv(db, seller_id, include_variants)
    except SQLAlchemyError as e:
        logger.error(f"Database error exporting products: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to export products",
        ) from e

    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="products-export-{timestamp}.csv"'},
    )
