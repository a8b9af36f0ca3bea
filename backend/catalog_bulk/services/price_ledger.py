"""Price history ledger: recording, listing, undo and expiry."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from catalog_bulk.core.config import get_settings
from catalog_bulk.core.exceptions import (
    ItemMutationError,
    JobNotFoundError,
    UndoWindowExpiredError,
)
from catalog_bulk.db.models.catalog_item import CatalogItem
from catalog_bulk.db.models.price_history import PriceHistoryEntry
from catalog_bulk.utils.money import format_price
from catalog_bulk.utils.retry import TRANSIENT_DB_ERRORS, persist_with_retry

logger = logging.getLogger(__name__)

HISTORY_JOB_LIMIT = 20


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def undo_window() -> timedelta:
    return timedelta(hours=get_settings().undo_window_hours)


def is_undoable(entry: PriceHistoryEntry, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return (
        bool(entry.can_undo)
        and entry.undone_at is None
        and now - as_utc(entry.created_at) <= undo_window()
    )


def record_price_change(
    session: Session,
    item: CatalogItem,
    old_price: Decimal | str,
    new_price: Decimal,
    *,
    change_type: str,
    change_operation: str,
    change_value: Decimal | str,
    job_id: str,
    now: datetime | None = None,
) -> PriceHistoryEntry:
    """Write the new price and its ledger entry into the same unit of work.

    Nothing is committed here; the caller commits both together so a price
    write never exists without the entry that can reverse it. A stored price
    that never parsed is passed through as text and restored verbatim on undo.
    """
    item.price = format_price(new_price)
    entry = PriceHistoryEntry(
        seller_id=item.seller_id,
        product_id=item.id,
        old_price=format_price(old_price) if isinstance(old_price, Decimal) else old_price,
        new_price=format_price(new_price),
        change_type=change_type,
        change_operation=change_operation,
        change_value=str(change_value),
        job_id=job_id,
        can_undo=True,
        created_at=now or utcnow(),
    )
    session.add(entry)
    return entry


@dataclass
class UndoOutcome:
    job_id: str
    reverted_count: int = 0
    already_undone_count: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "reverted_count": self.reverted_count,
            "already_undone_count": self.already_undone_count,
            "errors": self.errors,
        }


def _undo_entry(session: Session, entry_id: int, now: datetime) -> None:
    entry = session.get(PriceHistoryEntry, entry_id)
    if entry.undone_at is not None:
        raise UndoWindowExpiredError(
            entry.id,
            entry.product_id,
            f"Price change for product {entry.product_id} was already undone",
            code="already_undone",
        )
    if not is_undoable(entry, now):
        if entry.can_undo:
            entry.can_undo = False
            session.commit()
        raise UndoWindowExpiredError(
            entry.id,
            entry.product_id,
            f"Undo window expired ({get_settings().undo_window_hours} hours maximum)",
        )

    item = session.get(CatalogItem, entry.product_id)
    if item is None or item.seller_id != entry.seller_id:
        raise ItemMutationError(
            entry.product_id,
            f"Product {entry.product_id} no longer exists",
            code="not_found",
        )

    item.price = entry.old_price
    entry.can_undo = False
    entry.undone_at = now
    session.commit()


def undo_job(
    session: Session,
    seller_id: int,
    job_id: str,
    now: datetime | None = None,
) -> UndoOutcome:
    """Revert every still-undoable price change of a job, entry by entry.

    Each entry commits on its own; entries that cannot be reverted are
    reported in ``errors`` with a code (window_expired, already_undone,
    not_found, persistence).
    """
    now = now or utcnow()
    entry_ids = session.scalars(
        select(PriceHistoryEntry.id)
        .where(
            PriceHistoryEntry.job_id == job_id,
            PriceHistoryEntry.seller_id == seller_id,
        )
        .order_by(PriceHistoryEntry.id)
    ).all()
    if not entry_ids:
        raise JobNotFoundError(job_id)

    outcome = UndoOutcome(job_id=job_id)
    for entry_id in entry_ids:
        try:
            persist_with_retry(
                lambda entry_id=entry_id: _undo_entry(session, entry_id, now),
                session,
                label=f"undo of price history entry {entry_id}",
            )
            outcome.reverted_count += 1
        except UndoWindowExpiredError as exc:
            session.rollback()
            if exc.code == "already_undone":
                outcome.already_undone_count += 1
            outcome.errors.append(
                {
                    "entry_id": exc.entry_id,
                    "item_id": exc.product_id,
                    "message": str(exc),
                    "code": exc.code,
                }
            )
        except ItemMutationError as exc:
            session.rollback()
            outcome.errors.append({"entry_id": entry_id, **exc.to_error()})
        except TRANSIENT_DB_ERRORS as exc:
            session.rollback()
            logger.error(f"Undo of price history entry {entry_id} failed: {exc}", exc_info=True)
            outcome.errors.append(
                {
                    "entry_id": entry_id,
                    "message": "Database error while reverting this price",
                    "code": "persistence",
                }
            )

    logger.info(
        f"Undo for job {job_id}: reverted={outcome.reverted_count}, "
        f"already_undone={outcome.already_undone_count}, errors={len(outcome.errors)}"
    )
    return outcome


def list_history(
    session: Session,
    seller_id: int,
    now: datetime | None = None,
    job_limit: int = HISTORY_JOB_LIMIT,
) -> list[dict[str, Any]]:
    """Group the seller's price history by job, newest first."""
    now = now or utcnow()
    entries = session.scalars(
        select(PriceHistoryEntry)
        .where(PriceHistoryEntry.seller_id == seller_id)
        .order_by(PriceHistoryEntry.created_at.desc(), PriceHistoryEntry.id)
    ).all()

    product_ids = {entry.product_id for entry in entries}
    names = dict(
        session.execute(
            select(CatalogItem.id, CatalogItem.name).where(CatalogItem.id.in_(product_ids))
        ).all()
    ) if product_ids else {}

    groups: dict[str, dict[str, Any]] = {}
    for entry in entries:
        group = groups.get(entry.job_id)
        if group is None:
            if len(groups) >= job_limit:
                continue
            group = groups[entry.job_id] = {
                "job_id": entry.job_id,
                "change_type": entry.change_type,
                "change_operation": entry.change_operation,
                "change_value": entry.change_value,
                "product_count": 0,
                "can_undo": True,
                "created_at": as_utc(entry.created_at),
                "entries": [],
            }
        undoable = is_undoable(entry, now)
        group["entries"].append(
            {
                "id": entry.id,
                "product_id": entry.product_id,
                "product_name": names.get(entry.product_id),
                "old_price": entry.old_price,
                "new_price": entry.new_price,
                "can_undo": undoable,
                "created_at": as_utc(entry.created_at),
                "undone_at": as_utc(entry.undone_at) if entry.undone_at else None,
            }
        )
        group["product_count"] = len(group["entries"])
        if not undoable:
            group["can_undo"] = False

    return list(groups.values())


def expire_entries(session: Session, now: datetime | None = None) -> int:
    """Persist can_undo=False for entries older than the undo window."""
    cutoff = (now or utcnow()) - undo_window()
    result = session.execute(
        update(PriceHistoryEntry)
        .where(
            PriceHistoryEntry.can_undo.is_(True),
            PriceHistoryEntry.created_at < cutoff,
        )
        .values(can_undo=False)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    expired = result.rowcount or 0
    if expired:
        logger.info(f"Expired {expired} price history entries older than {cutoff.isoformat()}")
    return expired
