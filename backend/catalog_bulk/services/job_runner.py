"""Bulk job scheduling and execution.

A job is created ``pending`` and committed before any work starts. Whoever
runs it (the request for small batches, a Celery worker otherwise) first
claims it with a conditional ``pending -> running`` update, so exactly one
runner owns a job. Each item or import row commits together with the job's
progress counters; readers always see a consistent committed snapshot.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_bulk.api.schemas.actions import BulkAction, StockUpdateAction, bulk_action_adapter
from catalog_bulk.core.config import get_settings
from catalog_bulk.core.exceptions import (
    JobFatalError,
    JobNotFoundError,
    RowError,
    ValidationError,
)
from catalog_bulk.db.models.bulk_job import BulkJob, JobState
from catalog_bulk.db.models.catalog_item import CatalogItem, ProductVariant
from catalog_bulk.services import csv_import
from catalog_bulk.services.executors import ExecutionContext, Executor, ItemResult, executor_for
from catalog_bulk.services.notifications import cap_errors, notify_job_finished
from catalog_bulk.services.price_ledger import as_utc, utcnow
from catalog_bulk.services.progress_tracker import job_fraction, publish_job_progress
from catalog_bulk.storage.uploads import delete_upload, load_upload, stage_upload
from catalog_bulk.utils.retry import TRANSIENT_DB_ERRORS, persist_with_retry

logger = logging.getLogger(__name__)

CSV_IMPORT = "csv_import"


# --------------------------------------------------------------------------
# Submission
# --------------------------------------------------------------------------


def _dedupe(item_ids: list[int]) -> list[int]:
    return list(dict.fromkeys(item_ids))


def _foreign_ids(session: Session, seller_id: int, item_ids: list[int], target: str) -> list[int]:
    if target == "variant":
        stmt = (
            select(ProductVariant.id)
            .join(CatalogItem, ProductVariant.product_id == CatalogItem.id)
            .where(ProductVariant.id.in_(item_ids), CatalogItem.seller_id != seller_id)
        )
    else:
        stmt = select(CatalogItem.id).where(
            CatalogItem.id.in_(item_ids), CatalogItem.seller_id != seller_id
        )
    return sorted(session.scalars(stmt).all())


def create_job(
    session: Session,
    seller_id: int,
    job_type: str,
    params: dict[str, Any],
    item_ids: list[int] | None = None,
    total: int | None = None,
) -> BulkJob:
    item_ids = list(item_ids or [])
    job = BulkJob(
        seller_id=seller_id,
        job_type=job_type,
        status=JobState.PENDING.value,
        params=params,
        item_ids=item_ids,
        total=len(item_ids) if total is None else total,
        processed=0,
        succeeded=0,
        failed=0,
        errors=[],
    )
    session.add(job)
    session.commit()
    session.refresh(job)
    logger.info(f"Created {job_type} job {job.id} for seller {seller_id} with {job.total} target(s)")
    return job


def submit_bulk(
    session: Session,
    seller_id: int,
    action: BulkAction,
    item_ids: list[int],
) -> BulkJob:
    """Validate and schedule a bulk action.

    Small batches run before returning, so the returned job is terminal;
    larger ones are handed to a worker and returned ``pending``.
    """
    item_ids = _dedupe(item_ids)
    if not item_ids:
        raise ValidationError("At least one item id is required")

    target = action.target if isinstance(action, StockUpdateAction) else "product"
    foreign = _foreign_ids(session, seller_id, item_ids, target)
    if foreign:
        raise ValidationError(
            f"Item(s) not owned by this seller: {', '.join(str(i) for i in foreign)}"
        )

    job = create_job(
        session,
        seller_id,
        action.kind,
        params=action.model_dump(mode="json"),
        item_ids=item_ids,
    )
    if job.total <= get_settings().bulk_sync_threshold:
        return run_job(session, job.id)
    return enqueue_job(session, job)


def submit_import(
    session: Session,
    seller_id: int,
    raw: bytes,
    mapping: dict[str, str],
    filename: str | None = None,
) -> BulkJob:
    """Validate the file and mapping up front, then commit the rows as a job."""
    parsed = csv_import.parse_csv(raw)
    cleaned = csv_import.validate_mapping(mapping, parsed.headers)

    params: dict[str, Any] = {"mapping": cleaned, "filename": filename}
    inline = parsed.row_count <= get_settings().import_sync_row_limit
    if not inline:
        params["upload_path"] = str(stage_upload(raw, filename))

    job = create_job(session, seller_id, CSV_IMPORT, params=params, total=parsed.row_count)
    if inline:
        return run_job(session, job.id, payload=raw)
    return enqueue_job(session, job)


def enqueue_job(session: Session, job: BulkJob) -> BulkJob:
    """Hand a pending job to a worker.

    When the broker refuses it the job is claimed here and failed, so it never
    stays pending with nobody to run it.
    """
    from catalog_bulk.workers.tasks.bulk_jobs import run_bulk_job_task, run_import_job_task

    task = run_import_job_task if job.job_type == CSV_IMPORT else run_bulk_job_task
    try:
        task.apply_async(args=[job.id])
    except Exception as exc:
        logger.error(f"Could not enqueue {job.job_type} job {job.id}: {exc}", exc_info=True)
        if not claim_job(session, job.id):
            session.refresh(job)
            return job
        upload_path = (job.params or {}).get("upload_path")
        if upload_path:
            delete_upload(upload_path)
        return _finish(session, job.id, error_message=f"Could not enqueue job: {exc}")
    logger.info(f"Enqueued {job.job_type} job {job.id}")
    return job


# --------------------------------------------------------------------------
# Execution
# --------------------------------------------------------------------------


def claim_job(session: Session, job_id: str, now: datetime | None = None) -> bool:
    """Atomically move a job from pending to running; True if this caller owns it."""
    result = session.execute(
        update(BulkJob)
        .where(BulkJob.id == job_id, BulkJob.status == JobState.PENDING.value)
        .values(status=JobState.RUNNING.value, started_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount == 1


def _record_failure(
    session: Session,
    job: BulkJob,
    errors: list[dict[str, Any]],
    result: dict[str, Any] | None = None,
) -> None:
    """Count one failed target and append its error(s) in a single commit."""

    def _write() -> None:
        job.processed += 1
        job.failed += 1
        job.errors = [*job.errors, *errors]
        if result is not None:
            job.result = result
        session.commit()

    try:
        persist_with_retry(_write, session, label=f"error record for job {job.id}")
    except TRANSIENT_DB_ERRORS as exc:
        raise JobFatalError(f"Could not record progress: {exc}") from exc


def _run_item(session: Session, job: BulkJob, executor: Executor, ctx: ExecutionContext, item_id: int) -> None:
    def _attempt() -> ItemResult:
        result = executor.execute(session, ctx, item_id)
        if result.success:
            job.processed += 1
            job.succeeded += 1
            session.commit()
        return result

    try:
        result = persist_with_retry(_attempt, session, label=f"{job.job_type} of item {item_id}")
    except TRANSIENT_DB_ERRORS as exc:
        logger.error(f"Job {job.id}: item {item_id} failed after retries: {exc}", exc_info=True)
        result = ItemResult(item_id, False, "Persistence failed after retries", "persistence")
    except SQLAlchemyError as exc:
        logger.error(f"Job {job.id}: commit of item {item_id} rejected: {exc}", exc_info=True)
        result = ItemResult(item_id, False, "Database rejected the change", "persistence")

    if not result.success:
        session.rollback()
        _record_failure(session, job, [result.to_error()])


def _run_items(session: Session, job: BulkJob) -> None:
    try:
        action = bulk_action_adapter.validate_python(job.params)
    except PydanticValidationError as exc:
        raise JobFatalError(f"Job parameters are unreadable: {exc}") from exc

    executor = executor_for(action)
    item_ids = list(job.item_ids)
    target = action.target if isinstance(action, StockUpdateAction) else "product"
    model = ProductVariant if target == "variant" else CatalogItem
    try:
        existing = persist_with_retry(
            lambda: set(session.scalars(select(model.id).where(model.id.in_(item_ids))).all()),
            session,
            label=f"item load for job {job.id}",
        )
    except TRANSIENT_DB_ERRORS as exc:
        raise JobFatalError(f"Item list could not be loaded: {exc}") from exc
    missing = len(item_ids) - len(existing)
    if missing:
        logger.info(f"Job {job.id}: {missing} of {len(item_ids)} target(s) no longer exist")

    ctx = ExecutionContext(seller_id=job.seller_id, job_id=job.id)
    for item_id in item_ids:
        _run_item(session, job, executor, ctx, item_id)
        publish_job_progress(job)


def _row_failure(row: int, message: str, code: str) -> dict[str, Any]:
    return {"row": row, "field": "database", "message": message, "code": code}


def _run_import(session: Session, job: BulkJob, payload: bytes | None) -> None:
    upload_path = job.params.get("upload_path")
    try:
        _import_rows(session, job, payload, upload_path)
    finally:
        if upload_path:
            delete_upload(upload_path)


def _import_rows(session: Session, job: BulkJob, payload: bytes | None, upload_path: str | None) -> None:
    if payload is None:
        if not upload_path:
            raise JobFatalError("Import job has no staged file")
        try:
            payload = load_upload(upload_path)
        except FileNotFoundError as exc:
            raise JobFatalError(str(exc)) from exc

    try:
        parsed = csv_import.parse_csv(payload)
        outcomes = csv_import.evaluate_rows(session, job.seller_id, parsed, job.params["mapping"])
    except (ValueError, KeyError) as exc:
        raise JobFatalError(f"Staged file could not be read: {exc}") from exc

    counts = {"created": 0, "updated": 0, "skipped": 0}
    now = utcnow()
    for outcome in outcomes:
        if outcome.errors:
            counts["skipped"] += 1
            _record_failure(session, job, outcome.errors, dict(counts))
            publish_job_progress(job)
            continue

        key = "created" if outcome.action == "create" else "updated"

        def _attempt(outcome=outcome, key=key) -> None:
            csv_import.apply_outcome(session, job.seller_id, outcome, job_id=job.id, now=now)
            job.processed += 1
            job.succeeded += 1
            job.result = {**counts, key: counts[key] + 1}
            session.commit()

        error: dict[str, Any] | None = None
        try:
            persist_with_retry(_attempt, session, label=f"import row {outcome.row} of job {job.id}")
            counts[key] += 1
        except RowError as exc:
            error = exc.to_error()
        except TRANSIENT_DB_ERRORS as exc:
            logger.error(f"Job {job.id}: row {outcome.row} failed after retries: {exc}", exc_info=True)
            error = _row_failure(outcome.row, "Database error occurred while processing this row", "persistence")
        except SQLAlchemyError as exc:
            logger.error(f"Job {job.id}: row {outcome.row} rejected by the database: {exc}", exc_info=True)
            error = _row_failure(outcome.row, "Database rejected this row", "persistence")
        except ArithmeticError as exc:
            logger.warning(f"Job {job.id}: row {outcome.row} has an out-of-range value: {exc!r}")
            error = _row_failure(outcome.row, "Value out of range", "invalid_value")

        if error is not None:
            session.rollback()
            counts["skipped"] += 1
            _record_failure(session, job, [error], dict(counts))
        publish_job_progress(job)


def _finish(session: Session, job_id: str, error_message: str | None = None) -> BulkJob:
    """Move the job to its terminal state; terminal jobs are never written again."""
    session.rollback()
    job = session.get(BulkJob, job_id)
    if error_message is not None:
        job.status = JobState.FAILED.value
        job.error_message = error_message[:2000]
    elif job.failed:
        job.status = JobState.COMPLETED_WITH_ERRORS.value
    else:
        job.status = JobState.COMPLETED.value
    job.completed_at = utcnow()
    session.commit()
    session.refresh(job)

    logger.info(
        f"Job {job.id} finished: status={job.status}, processed={job.processed}/{job.total}, "
        f"succeeded={job.succeeded}, failed={job.failed}"
    )
    publish_job_progress(job, error_message or f"Finished {job.processed}/{job.total}")
    notify_job_finished(session, job)
    return job


def run_job(session: Session, job_id: str, payload: bytes | None = None) -> BulkJob | None:
    """Claim and execute a job to a terminal state.

    Returns the job, or None when it does not exist. A job already claimed by
    another runner is returned untouched.
    """
    job = session.get(BulkJob, job_id)
    if job is None:
        logger.error(f"Job {job_id} not found")
        return None

    if not persist_with_retry(lambda: claim_job(session, job_id), session, label=f"claim of job {job_id}"):
        logger.warning(f"Job {job_id} is {job.status}; not claimed by this runner")
        session.refresh(job)
        return job

    session.refresh(job)
    publish_job_progress(job, "Started")
    try:
        if job.job_type == CSV_IMPORT:
            _run_import(session, job, payload)
        else:
            _run_items(session, job)
    except JobFatalError as exc:
        logger.error(f"Job {job_id} failed: {exc}", exc_info=True)
        return _finish(session, job_id, error_message=str(exc))
    except Exception as exc:
        logger.error(f"Unexpected error running job {job_id}: {exc}", exc_info=True)
        _finish(session, job_id, error_message=f"Unexpected error: {exc}")
        raise
    return _finish(session, job_id)


# --------------------------------------------------------------------------
# Status
# --------------------------------------------------------------------------


def get_job(session: Session, seller_id: int, job_id: str) -> BulkJob:
    job = session.get(BulkJob, job_id)
    if job is None or job.seller_id != seller_id:
        raise JobNotFoundError(job_id)
    return job


def job_message(job: BulkJob) -> str:
    if job.status == JobState.PENDING.value:
        return "Waiting for a worker"
    if job.status == JobState.FAILED.value and job.error_message:
        return job.error_message
    return f"Processed {job.processed}/{job.total}"


def describe_job(job: BulkJob, error_limit: int | None = None) -> dict[str, Any]:
    errors, omitted = cap_errors(job.errors, error_limit)
    return {
        "id": job.id,
        "type": job.job_type,
        "status": job.status,
        "total": job.total,
        "processed": job.processed,
        "succeeded": job.succeeded,
        "failed": job.failed,
        "errors": errors,
        "errors_omitted": omitted,
        "result": job.result,
        "error_message": job.error_message,
        "progress": job_fraction(job),
        "message": job_message(job),
        "created_at": as_utc(job.created_at) if job.created_at else None,
        "started_at": as_utc(job.started_at) if job.started_at else None,
        "completed_at": as_utc(job.completed_at) if job.completed_at else None,
    }


def get_status(
    session: Session,
    seller_id: int,
    job_id: str,
    error_limit: int | None = None,
) -> dict[str, Any]:
    """Pure read of the last committed job snapshot."""
    return describe_job(get_job(session, seller_id, job_id), error_limit)


def list_jobs(
    session: Session,
    seller_id: int,
    status: str | None = None,
    limit: int = 50,
) -> list[BulkJob]:
    query = select(BulkJob).where(BulkJob.seller_id == seller_id)
    if status:
        query = query.where(BulkJob.status == status)
    query = query.order_by(BulkJob.created_at.desc(), BulkJob.id).limit(limit)
    try:
        return list(session.scalars(query).all())
    except SQLAlchemyError:
        session.rollback()
        raise
