"""Bulk action submission, price preview and stock CSV endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_bulk.api.dependencies.db import get_seller_id, get_session
from catalog_bulk.api.routers.job_helpers import resolve_selection, serialize_job
from catalog_bulk.api.schemas.actions import StockUpdateAction
from catalog_bulk.api.schemas.bulk import (
    BulkRequest,
    PricePreviewItem,
    PricePreviewRequest,
    PricePreviewResponse,
    StockCsvResponse,
)
from catalog_bulk.api.schemas.job import JobStatus
from catalog_bulk.core.exceptions import ValidationError
from catalog_bulk.services import job_runner
from catalog_bulk.services.executors import preview_prices
from catalog_bulk.services.stock_csv import parse_stock_csv, resolve_skus

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "",
    summary="Submit a bulk action",
    response_model=JobStatus,
    responses={202: {"description": "Job accepted and queued"}},
)
async def submit_bulk_action(
    payload: BulkRequest,
    response: Response,
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> JobStatus:
    """Apply one tagged action to explicit ids or to a selection.

    Small batches finish before the response (200 with the final job);
    larger ones return 202 with the pending job for polling.
    """
    try:
        item_ids = payload.item_ids
        if item_ids is None:
            item_ids, _ = resolve_selection(db, seller_id, payload.selection, payload.preset)
        job = job_runner.submit_bulk(db, seller_id, payload.action, item_ids)
        if not job.is_terminal:
            response.status_code = status.HTTP_202_ACCEPTED
        return serialize_job(job)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error submitting bulk action: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit bulk action",
        ) from e


@router.post(
    "/price-preview",
    summary="Preview a price adjustment without saving",
    response_model=PricePreviewResponse,
)
async def price_preview(
    payload: PricePreviewRequest,
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> PricePreviewResponse:
    items = preview_prices(db, seller_id, payload.action, payload.item_ids)
    return PricePreviewResponse(items=[PricePreviewItem(**item) for item in items])


@router.post(
    "/stock/csv",
    summary="Update stock from a SKU-keyed CSV",
    response_model=StockCsvResponse,
)
async def stock_from_csv(
    response: Response,
    file: UploadFile = File(...),
    target: str = Form("product", pattern="^(product|variant)$"),
    reason: str = Form("Bulk update"),
    notes: str = Form(""),
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> StockCsvResponse:
    """Resolve SKUs to the seller's products or variants and submit a stock_update job.

    Rows with invalid quantities and SKUs that match nothing are reported
    alongside the job.
    """
    try:
        parsed = parse_stock_csv(await file.read())
        resolution = resolve_skus(db, seller_id, parsed.quantities, target)
        job = None
        if resolution.quantities:
            action = StockUpdateAction(
                target=target,
                quantities=resolution.quantities,
                reason=reason,
                notes=notes,
            )
            job = job_runner.submit_bulk(db, seller_id, action, list(resolution.quantities))
            if not job.is_terminal:
                response.status_code = status.HTTP_202_ACCEPTED
        return StockCsvResponse(
            job=serialize_job(job) if job else None,
            matched=len(resolution.quantities),
            unmatched_skus=resolution.unmatched_skus,
            errors=parsed.errors,
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error processing stock CSV: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process stock CSV",
        ) from e
