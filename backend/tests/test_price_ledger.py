"""Price history recording, undo, listing and expiry."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from catalog_bulk.api.schemas.actions import AdjustPriceAction
from catalog_bulk.core.exceptions import JobNotFoundError
from catalog_bulk.db.models import CatalogItem, PriceHistoryEntry
from catalog_bulk.services import job_runner, price_ledger

pytestmark = pytest.mark.integration

SELLER_ID = 1
OTHER_SELLER_ID = 2


def _raise_prices(session, item_ids, percent="10"):
    action = AdjustPriceAction(operation="increase", value_type="percentage", value=Decimal(percent))
    return job_runner.submit_bulk(session, SELLER_ID, action, item_ids)


def _record(session, item, new_price, job_id, created_at):
    price_ledger.record_price_change(
        session,
        item,
        Decimal(item.price),
        Decimal(new_price),
        change_type="fixed",
        change_operation="set",
        change_value=new_price,
        job_id=job_id,
        now=created_at,
    )
    session.commit()


def test_undo_restores_old_prices(db_session, make_item):
    a = make_item("A", "10.00")
    b = make_item("B", "20.00")
    job = _raise_prices(db_session, [a.id, b.id])

    outcome = price_ledger.undo_job(db_session, SELLER_ID, job.id)

    assert (outcome.reverted_count, outcome.already_undone_count, outcome.errors) == (2, 0, [])
    db_session.expire_all()
    assert db_session.get(CatalogItem, a.id).price == "10.00"
    assert db_session.get(CatalogItem, b.id).price == "20.00"
    entries = db_session.scalars(select(PriceHistoryEntry)).all()
    assert all(not e.can_undo and e.undone_at is not None for e in entries)


def test_undo_twice_reverts_nothing_the_second_time(db_session, make_item):
    item = make_item("A", "10.00")
    job = _raise_prices(db_session, [item.id])
    price_ledger.undo_job(db_session, SELLER_ID, job.id)

    second = price_ledger.undo_job(db_session, SELLER_ID, job.id)

    assert second.reverted_count == 0
    assert second.already_undone_count == 1
    assert second.errors[0]["code"] == "already_undone"
    db_session.expire_all()
    assert db_session.get(CatalogItem, item.id).price == "10.00"


def test_entry_past_the_undo_window_is_not_reverted(db_session, make_item):
    item = make_item("Old", "10.00")
    created = datetime.now(timezone.utc) - timedelta(hours=25)
    _record(db_session, item, "15.00", "job-old", created)

    outcome = price_ledger.undo_job(db_session, SELLER_ID, "job-old")

    assert outcome.reverted_count == 0
    assert outcome.errors[0]["code"] == "window_expired"
    db_session.expire_all()
    assert db_session.get(CatalogItem, item.id).price == "15.00"
    assert db_session.scalars(select(PriceHistoryEntry)).one().can_undo is False


def test_undo_window_boundary(db_session, make_item):
    item = make_item("Edge", "10.00")
    now = datetime.now(timezone.utc)
    _record(db_session, item, "12.00", "job-edge", now - timedelta(hours=24))

    outcome = price_ledger.undo_job(db_session, SELLER_ID, "job-edge", now=now)

    assert outcome.reverted_count == 1


def test_undo_reports_deleted_products(db_session, make_item):
    kept = make_item("Kept", "10.00")
    gone = make_item("Gone", "20.00")
    job = _raise_prices(db_session, [kept.id, gone.id])
    db_session.delete(db_session.get(CatalogItem, gone.id))
    db_session.commit()

    outcome = price_ledger.undo_job(db_session, SELLER_ID, job.id)

    assert outcome.reverted_count == 1
    assert [(e["item_id"], e["code"]) for e in outcome.errors] == [(gone.id, "not_found")]


def test_undo_of_unknown_or_foreign_job_is_not_found(db_session, make_item):
    item = make_item("A", "10.00")
    job = _raise_prices(db_session, [item.id])

    with pytest.raises(JobNotFoundError):
        price_ledger.undo_job(db_session, SELLER_ID, "no-such-job")
    with pytest.raises(JobNotFoundError):
        price_ledger.undo_job(db_session, OTHER_SELLER_ID, job.id)


def test_history_is_grouped_by_job_newest_first(db_session, make_item):
    item = make_item("Mug", "10.00")
    now = datetime.now(timezone.utc)
    _record(db_session, item, "11.00", "job-1", now - timedelta(hours=30))
    _record(db_session, item, "12.00", "job-2", now - timedelta(hours=1))

    groups = price_ledger.list_history(db_session, SELLER_ID, now=now)

    assert [g["job_id"] for g in groups] == ["job-2", "job-1"]
    assert groups[0]["can_undo"] is True
    assert groups[1]["can_undo"] is False
    assert groups[0]["entries"][0]["product_name"] == "Mug"
    assert groups[0]["entries"][0]["old_price"] == "11.00"
    assert price_ledger.list_history(db_session, OTHER_SELLER_ID, now=now) == []


def test_history_keeps_only_recent_jobs(db_session, make_item):
    item = make_item("Mug", "10.00")
    now = datetime.now(timezone.utc)
    for i in range(3):
        _record(db_session, item, f"{11 + i}.00", f"job-{i}", now - timedelta(minutes=10 - i))

    groups = price_ledger.list_history(db_session, SELLER_ID, now=now, job_limit=2)

    assert [g["job_id"] for g in groups] == ["job-2", "job-1"]


def test_expire_entries_persists_can_undo(db_session, make_item):
    item = make_item("Mug", "10.00")
    now = datetime.now(timezone.utc)
    _record(db_session, item, "11.00", "job-old", now - timedelta(hours=26))
    _record(db_session, item, "12.00", "job-new", now - timedelta(hours=2))

    assert price_ledger.expire_entries(db_session, now=now) == 1

    db_session.expire_all()
    flags = {e.job_id: e.can_undo for e in db_session.scalars(select(PriceHistoryEntry))}
    assert flags == {"job-old": False, "job-new": True}
