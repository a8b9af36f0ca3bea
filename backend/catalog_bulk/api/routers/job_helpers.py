"""Shared helpers for shaping job responses and resolving selections."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from catalog_bulk.api.schemas.job import JobStatus
from catalog_bulk.api.schemas.selection import SelectionCriteria
from catalog_bulk.db.models.bulk_job import BulkJob
from catalog_bulk.db.models.catalog_item import CatalogItem
from catalog_bulk.services.job_runner import describe_job
from catalog_bulk.services.selection import quick_select, select_item_ids


def serialize_job(job: BulkJob, error_limit: int | None = None) -> JobStatus:
    """Committed job row -> response schema, errors capped for display."""
    return JobStatus(**describe_job(job, error_limit))


def seller_items(db: Session, seller_id: int) -> list[CatalogItem]:
    return list(
        db.scalars(
            select(CatalogItem)
            .where(CatalogItem.seller_id == seller_id)
            .order_by(CatalogItem.id)
        ).all()
    )


def resolve_selection(
    db: Session,
    seller_id: int,
    criteria: SelectionCriteria | None,
    preset: str | None = None,
) -> tuple[list[int], list[CatalogItem]]:
    """Ids (and items) of the seller's catalog matching criteria and preset."""
    criteria = criteria or SelectionCriteria()
    items = seller_items(db, seller_id)
    if preset:
        ids = quick_select(items, preset, base=criteria)
    else:
        ids = select_item_ids(items, criteria)
    wanted = set(ids)
    return ids, [item for item in items if item.id in wanted]
