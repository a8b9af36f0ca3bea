"""Celery tasks that run bulk catalog jobs and CSV import jobs."""

from __future__ import annotations

import logging
from typing import Any

from catalog_bulk.db.session import get_fresh_session
from catalog_bulk.services import job_runner
from catalog_bulk.services.price_ledger import expire_entries
from catalog_bulk.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run(job_id: str) -> dict[str, Any]:
    session = get_fresh_session()
    try:
        job = job_runner.run_job(session, job_id)
        if job is None:
            return {"job_id": job_id, "status": "missing"}
        return {"job_id": job.id, "status": job.status, "processed": job.processed}
    finally:
        session.close()


@celery_app.task(bind=True, name="catalog_bulk.workers.tasks.run_bulk_job")
def run_bulk_job_task(self, job_id: str) -> dict[str, Any]:
    """Apply a bulk action to every item of the job."""
    logger.info(f"Worker {self.request.hostname} picked up bulk job {job_id}")
    return _run(job_id)


@celery_app.task(bind=True, name="catalog_bulk.workers.tasks.run_import_job")
def run_import_job_task(self, job_id: str) -> dict[str, Any]:
    """Commit a staged CSV import row by row."""
    logger.info(f"Worker {self.request.hostname} picked up import job {job_id}")
    return _run(job_id)


@celery_app.task(name="catalog_bulk.workers.tasks.expire_price_history")
def expire_price_history_task() -> int:
    """Persist can_undo=False for price changes past the undo window."""
    session = get_fresh_session()
    try:
        return expire_entries(session)
    finally:
        session.close()
