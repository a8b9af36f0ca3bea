"""Price history listing and job-level undo."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_bulk.api.dependencies.db import get_seller_id, get_session
from catalog_bulk.api.schemas.price_history import PriceHistoryGroup, UndoRequest, UndoResponse
from catalog_bulk.core.exceptions import JobNotFoundError
from catalog_bulk.services import price_ledger

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(
    "",
    summary="Price changes grouped by job",
    response_model=list[PriceHistoryGroup],
)
async def list_price_history(
    limit: int = Query(price_ledger.HISTORY_JOB_LIMIT, ge=1, le=100, description="Jobs to return"),
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> list[PriceHistoryGroup]:
    try:
        groups = price_ledger.list_history(db, seller_id, job_limit=limit)
    except SQLAlchemyError as e:
        logger.error(f"Database error listing price history: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve price history",
        ) from e
    return [PriceHistoryGroup(**group) for group in groups]


@router.post(
    "/undo",
    summary="Undo the price changes of a job",
    response_model=UndoResponse,
)
async def undo_price_changes(
    payload: UndoRequest,
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> UndoResponse:
    """Revert each still-undoable entry of the job.

    Entries that cannot be reverted (window expired, already undone, product
    deleted) are reported in ``errors``; calling undo twice is safe.
    """
    try:
        outcome = price_ledger.undo_job(db, seller_id, payload.job_id)
    except JobNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No price changes found for job {payload.job_id}",
        ) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error undoing job {payload.job_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to undo price changes",
        ) from e
    return UndoResponse(**outcome.as_dict())
