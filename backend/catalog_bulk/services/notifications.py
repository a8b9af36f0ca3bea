"""Fire-and-forget job completion notifications."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_bulk.core.config import get_settings
from catalog_bulk.db.models.bulk_job import BulkJob
from catalog_bulk.db.models.webhook import Webhook

logger = logging.getLogger(__name__)

JOB_FINISHED_EVENT = "bulk_job.finished"
VALID_EVENTS = (JOB_FINISHED_EVENT,)


def cap_errors(errors: list[dict[str, Any]] | None, limit: int | None) -> tuple[list[dict[str, Any]], int]:
    """Return the first ``limit`` errors and how many were left out."""
    errors = list(errors or [])
    if limit is None or len(errors) <= limit:
        return errors, 0
    return errors[:limit], len(errors) - limit


def build_job_payload(job: BulkJob) -> dict[str, Any]:
    errors, omitted = cap_errors(job.errors, get_settings().error_display_limit)
    return {
        "event": JOB_FINISHED_EVENT,
        "timestamp": job.completed_at.isoformat() if job.completed_at else None,
        "data": {
            "job_id": job.id,
            "seller_id": job.seller_id,
            "type": job.job_type,
            "status": job.status,
            "total": job.total,
            "processed": job.processed,
            "succeeded": job.succeeded,
            "failed": job.failed,
            "result": job.result,
            "error_message": job.error_message,
            "errors": errors,
            "errors_omitted": omitted,
        },
    }


def notify_job_finished(session: Session, job: BulkJob) -> int:
    """Enqueue one delivery per enabled subscription of the job's seller.

    Returns the number of deliveries enqueued. Failures are logged and never
    propagate to the job.
    """
    from catalog_bulk.workers.tasks.notifications import deliver_job_notification

    try:
        webhooks = session.scalars(
            select(Webhook).where(
                Webhook.seller_id == job.seller_id,
                Webhook.event == JOB_FINISHED_EVENT,
                Webhook.enabled.is_(True),
            )
        ).all()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Could not load webhooks for job {job.id}: {e}", exc_info=True)
        return 0

    if not webhooks:
        logger.debug(f"No enabled webhooks for seller {job.seller_id}")
        return 0

    payload = build_job_payload(job)
    enqueued = 0
    for webhook in webhooks:
        try:
            deliver_job_notification.delay(webhook.id, payload)
            enqueued += 1
        except Exception as e:
            # Broker outages must not affect the finished job
            logger.error(f"Error enqueueing webhook {webhook.id} for job {job.id}: {e}", exc_info=True)
    logger.info(f"Enqueued {enqueued} notification(s) for job {job.id}")
    return enqueued
