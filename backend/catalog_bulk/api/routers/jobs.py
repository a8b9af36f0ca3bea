"""Bulk job tracking endpoints."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_bulk.api.dependencies.db import get_seller_id, get_session
from catalog_bulk.api.routers.job_helpers import serialize_job
from catalog_bulk.api.schemas.job import JobStatus
from catalog_bulk.core.exceptions import JobNotFoundError
from catalog_bulk.db.models.bulk_job import JobState
from catalog_bulk.db.session import SessionLocal
from catalog_bulk.services import job_runner

logger = logging.getLogger(__name__)
router = APIRouter()

STREAM_INTERVAL_SECONDS = 5
STREAM_MAX_IDLE_POLLS = 60  # 5 minutes without progress at 5s intervals


@router.get(
    "",
    summary="List the seller's bulk jobs",
    response_model=list[JobStatus],
)
async def list_jobs(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    status_filter: JobState | None = Query(None, alias="status", description="Filter by status"),
    error_limit: int = Query(20, ge=0, le=1000, description="Errors shown per job"),
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> list[JobStatus]:
    """Newest first. Errors are capped per job; see ``errors_omitted``."""
    try:
        jobs = job_runner.list_jobs(
            db, seller_id, status=status_filter.value if status_filter else None, limit=limit
        )
        return [serialize_job(job, error_limit) for job in jobs]
    except SQLAlchemyError as e:
        logger.error(f"Database error listing jobs: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve jobs",
        ) from e


@router.get(
    "/{job_id}",
    summary="Fetch job status",
    response_model=JobStatus,
)
async def get_job(
    job_id: str,
    error_limit: int | None = Query(None, ge=0, description="Show only the first N errors"),
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> JobStatus:
    """Pure read of the last committed snapshot, safe while the job runs."""
    try:
        return JobStatus(**job_runner.get_status(db, seller_id, job_id, error_limit))
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.get(
    "/{job_id}/stream",
    summary="Server-Sent Events stream of job progress",
)
async def stream_job_progress(
    job_id: str,
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> StreamingResponse:
    """Emit a ``data:`` event with the job status until the job is terminal.

    The stream closes with ``event: close`` on a terminal state, or
    ``event: timeout`` when progress stalls.
    """
    try:
        job_runner.get_job(db, seller_id, job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    async def event_generator() -> AsyncGenerator[str, None]:
        last_processed = -1
        idle_polls = 0
        # The request session closes when this function returns
        session = SessionLocal()
        try:
            while True:
                session.expire_all()
                try:
                    job = job_runner.get_job(session, seller_id, job_id)
                except JobNotFoundError:
                    yield f"event: error\ndata: {json.dumps({'error': 'Job not found'})}\n\n"
                    break

                job_status = serialize_job(job)
                yield f"data: {job_status.model_dump_json()}\n\n"

                if job.is_terminal:
                    yield "event: close\ndata: {}\n\n"
                    break

                if job.processed != last_processed:
                    last_processed = job.processed
                    idle_polls = 0
                else:
                    idle_polls += 1
                if idle_polls > STREAM_MAX_IDLE_POLLS:
                    yield "event: timeout\ndata: {}\n\n"
                    break

                await asyncio.sleep(STREAM_INTERVAL_SECONDS)
        finally:
            session.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
