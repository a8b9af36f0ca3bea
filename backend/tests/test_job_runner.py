"""Bulk job scheduling, per-item execution and terminal states."""

import json
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from catalog_bulk.api.schemas.actions import (
    AdjustPriceAction,
    ArchiveAction,
    AssignCategoryAction,
    DeleteAction,
    DuplicateAction,
    PublishAction,
    StockUpdateAction,
    UnpublishAction,
)
from catalog_bulk.core.config import get_settings
from catalog_bulk.core.exceptions import JobNotFoundError, ValidationError
from catalog_bulk.db.models import BulkJob, CatalogItem, PriceHistoryEntry, ProductVariant, StockHistory
from catalog_bulk.services import executors, job_runner
from catalog_bulk.workers.tasks import bulk_jobs

pytestmark = pytest.mark.integration

SELLER_ID = 1
OTHER_SELLER_ID = 2


def _assert_consistent(job: BulkJob) -> None:
    assert job.processed <= job.total
    assert job.succeeded + job.failed == job.processed
    assert len(job.errors) == job.failed


def test_percentage_increase_with_one_unparsable_price(db_session, make_item):
    a = make_item("A", "10.00")
    b = make_item("B", "20.00")
    broken = make_item("Broken", "ten dollars")
    action = AdjustPriceAction(operation="increase", value_type="percentage", value=Decimal("10"))

    job = job_runner.submit_bulk(db_session, SELLER_ID, action, [a.id, b.id, broken.id])

    assert job.status == "completed_with_errors"
    assert (job.total, job.processed, job.succeeded, job.failed) == (3, 3, 2, 1)
    assert job.errors[0]["item_id"] == broken.id
    assert job.errors[0]["code"] == "invalid_price"
    assert job.completed_at is not None
    _assert_consistent(job)

    db_session.expire_all()
    assert db_session.get(CatalogItem, a.id).price == "11.00"
    assert db_session.get(CatalogItem, b.id).price == "22.00"
    assert db_session.get(CatalogItem, broken.id).price == "ten dollars"

    entries = db_session.scalars(select(PriceHistoryEntry).order_by(PriceHistoryEntry.id)).all()
    assert [(e.product_id, e.old_price, e.new_price) for e in entries] == [
        (a.id, "10.00", "11.00"),
        (b.id, "20.00", "22.00"),
    ]
    assert all(e.job_id == job.id and e.change_type == "percentage" for e in entries)


def test_delete_with_one_missing_id(db_session, make_item):
    items = [make_item(f"Item {i}") for i in range(4)]
    ids = [item.id for item in items]
    ids.insert(2, 9999)

    job = job_runner.submit_bulk(db_session, SELLER_ID, DeleteAction(), ids)

    assert job.status == "completed_with_errors"
    assert job.processed == 5
    assert len(job.errors) == 1
    assert job.errors[0]["item_id"] == 9999
    assert "not found" in job.errors[0]["message"]
    _assert_consistent(job)
    assert db_session.scalar(select(func.count(CatalogItem.id))) == 0


def test_delete_removes_variants(db_session, make_item, make_variant):
    item = make_item("With variants")
    make_variant(item, "V-1")
    make_variant(item, "V-2")

    job = job_runner.submit_bulk(db_session, SELLER_ID, DeleteAction(), [item.id])

    assert job.status == "completed"
    assert db_session.scalar(select(func.count(ProductVariant.id))) == 0


def test_fixed_decrease_clamps_at_zero(db_session, make_item):
    item = make_item("Cheap", "10.00")
    action = AdjustPriceAction(operation="decrease", value_type="fixed", value=Decimal("100"))

    job = job_runner.submit_bulk(db_session, SELLER_ID, action, [item.id])

    assert job.status == "completed"
    db_session.expire_all()
    assert db_session.get(CatalogItem, item.id).price == "0.00"


def test_status_transitions_and_category(db_session, make_item):
    item = make_item("Mug", status="Draft")

    assert job_runner.submit_bulk(db_session, SELLER_ID, PublishAction(), [item.id]).status == "completed"
    db_session.expire_all()
    assert db_session.get(CatalogItem, item.id).status == "Published"

    job_runner.submit_bulk(db_session, SELLER_ID, ArchiveAction(), [item.id])
    db_session.expire_all()
    assert db_session.get(CatalogItem, item.id).status == "Archived"

    job_runner.submit_bulk(db_session, SELLER_ID, UnpublishAction(), [item.id])
    job_runner.submit_bulk(db_session, SELLER_ID, AssignCategoryAction(category="Kitchen"), [item.id])
    db_session.expire_all()
    stored = db_session.get(CatalogItem, item.id)
    assert (stored.status, stored.category) == ("Draft", "Kitchen")


def test_unknown_stored_status_is_an_item_error(db_session, make_item):
    item = make_item("Legacy", status="Hidden")

    job = job_runner.submit_bulk(db_session, SELLER_ID, PublishAction(), [item.id])

    assert job.status == "completed_with_errors"
    assert job.errors[0]["code"] == "invalid_status"


def test_stock_update_writes_history(db_session, make_item):
    item = make_item("Candle", stock_quantity=4)
    action = StockUpdateAction(quantity=10, reason="Recount", notes="Shelf B")

    job = job_runner.submit_bulk(db_session, SELLER_ID, action, [item.id])

    assert job.status == "completed"
    db_session.expire_all()
    assert db_session.get(CatalogItem, item.id).stock_quantity == 10
    history = db_session.scalars(select(StockHistory)).one()
    assert (history.quantity_before, history.quantity_change, history.quantity_after) == (4, 6, 10)
    assert (history.reason, history.job_id) == ("Recount", job.id)


def test_stock_update_targets_variants(db_session, make_item, make_variant):
    item = make_item("Shirt")
    small = make_variant(item, "SHIRT-S", stock_quantity=2)
    action = StockUpdateAction(target="variant", quantities={small.id: 7})

    job = job_runner.submit_bulk(db_session, SELLER_ID, action, [small.id])

    assert job.status == "completed"
    db_session.expire_all()
    assert db_session.get(ProductVariant, small.id).stock_quantity == 7
    history = db_session.scalars(select(StockHistory)).one()
    assert (history.product_id, history.variant_id) == (item.id, small.id)


def test_submit_rejects_empty_and_foreign_ids(db_session, make_item):
    theirs = make_item("Theirs", seller_id=OTHER_SELLER_ID)

    with pytest.raises(ValidationError, match="At least one item"):
        job_runner.submit_bulk(db_session, SELLER_ID, DeleteAction(), [])
    with pytest.raises(ValidationError, match=str(theirs.id)):
        job_runner.submit_bulk(db_session, SELLER_ID, DeleteAction(), [theirs.id])

    assert db_session.scalar(select(func.count(BulkJob.id))) == 0
    db_session.expire_all()
    assert db_session.get(CatalogItem, theirs.id) is not None


def test_duplicate_ids_are_processed_once(db_session, make_item):
    item = make_item("Once", "10.00")
    action = AdjustPriceAction(operation="increase", value_type="fixed", value=Decimal("1"))

    job = job_runner.submit_bulk(db_session, SELLER_ID, action, [item.id, item.id])

    assert job.total == 1
    db_session.expire_all()
    assert db_session.get(CatalogItem, item.id).price == "11.00"


def test_large_batches_are_queued(db_session, make_item, monkeypatch):
    monkeypatch.setattr(get_settings(), "bulk_sync_threshold", 2)
    ids = [make_item(f"Item {i}").id for i in range(3)]

    with patch.object(bulk_jobs.run_bulk_job_task, "apply_async") as apply_async:
        job = job_runner.submit_bulk(db_session, SELLER_ID, PublishAction(), ids)

    assert job.status == "pending"
    assert job.processed == 0
    apply_async.assert_called_once_with(args=[job.id])

    finished = bulk_jobs.run_bulk_job_task.apply(args=[job.id]).get()
    assert finished == {"job_id": job.id, "status": "completed", "processed": 3}


def test_job_is_claimed_once(db_session, make_item, monkeypatch):
    monkeypatch.setattr(get_settings(), "bulk_sync_threshold", 0)
    item = make_item("Claimed")
    with patch.object(bulk_jobs.run_bulk_job_task, "apply_async"):
        job = job_runner.submit_bulk(db_session, SELLER_ID, PublishAction(), [item.id])

    assert job_runner.claim_job(db_session, job.id) is True
    assert job_runner.claim_job(db_session, job.id) is False

    untouched = job_runner.run_job(db_session, job.id)
    assert untouched.status == "running"
    assert untouched.processed == 0


def test_terminal_jobs_are_not_rerun(db_session, make_item):
    item = make_item("Done", "10.00")
    action = AdjustPriceAction(operation="increase", value_type="fixed", value=Decimal("1"))
    job = job_runner.submit_bulk(db_session, SELLER_ID, action, [item.id])

    again = job_runner.run_job(db_session, job.id)

    assert again.status == "completed"
    db_session.expire_all()
    assert db_session.get(CatalogItem, item.id).price == "11.00"


def test_transient_errors_are_retried(db_session, make_item, monkeypatch):
    item = make_item("Flaky", "10.00")
    original = executors.AdjustPriceExecutor.apply
    calls = {"count": 0}

    def flaky_apply(self, session, ctx, item_id):
        calls["count"] += 1
        if calls["count"] < 3:
            raise OperationalError("UPDATE catalog_items", {}, Exception("connection reset"))
        return original(self, session, ctx, item_id)

    monkeypatch.setattr(executors.AdjustPriceExecutor, "apply", flaky_apply)
    action = AdjustPriceAction(operation="increase", value_type="fixed", value=Decimal("1"))

    job = job_runner.submit_bulk(db_session, SELLER_ID, action, [item.id])

    assert calls["count"] == 3
    assert job.status == "completed"
    assert db_session.scalar(select(func.count(PriceHistoryEntry.id))) == 1


def test_exhausted_retries_become_an_item_error(db_session, make_item, monkeypatch):
    first = make_item("Always failing")
    second = make_item("Fine")

    def apply(self, session, ctx, item_id):
        if item_id == first.id:
            raise OperationalError("UPDATE catalog_items", {}, Exception("server closed the connection"))
        session.get(CatalogItem, item_id).category = "Moved"

    monkeypatch.setattr(executors.AssignCategoryExecutor, "apply", apply)

    job = job_runner.submit_bulk(
        db_session, SELLER_ID, AssignCategoryAction(category="Moved"), [first.id, second.id]
    )

    assert job.status == "completed_with_errors"
    assert job.errors == [
        {"item_id": first.id, "message": "Persistence failed after retries", "code": "persistence"}
    ]
    _assert_consistent(job)


def test_unreadable_params_fail_the_job(db_session, make_item):
    item = make_item("Target")
    job = job_runner.create_job(
        db_session, SELLER_ID, "adjust_price", params={"kind": "adjust_price"}, item_ids=[item.id]
    )

    finished = job_runner.run_job(db_session, job.id)

    assert finished.status == "failed"
    assert "unreadable" in finished.error_message
    assert finished.processed == 0
    assert finished.completed_at is not None


def test_get_status_is_scoped_to_the_seller(db_session, make_item):
    item = make_item("Mine")
    job = job_runner.submit_bulk(db_session, SELLER_ID, PublishAction(), [item.id])

    status = job_runner.get_status(db_session, SELLER_ID, job.id)
    assert status["status"] == "completed"
    assert status["progress"] == 1.0

    with pytest.raises(JobNotFoundError):
        job_runner.get_status(db_session, OTHER_SELLER_ID, job.id)
    with pytest.raises(JobNotFoundError):
        job_runner.get_status(db_session, SELLER_ID, "missing")


def test_status_caps_errors_for_display(db_session):
    ids = list(range(1000, 1025))
    job = job_runner.submit_bulk(db_session, SELLER_ID, DeleteAction(), ids)

    status = job_runner.get_status(db_session, SELLER_ID, job.id, error_limit=20)

    assert status["failed"] == 25
    assert len(status["errors"]) == 20
    assert status["errors_omitted"] == 5
    assert len(job_runner.get_status(db_session, SELLER_ID, job.id)["errors"]) == 25


def test_list_jobs_filters_by_status(db_session, make_item):
    item = make_item("Listed")
    ok = job_runner.submit_bulk(db_session, SELLER_ID, PublishAction(), [item.id])
    bad = job_runner.submit_bulk(db_session, SELLER_ID, DeleteAction(), [4242])

    assert {job.id for job in job_runner.list_jobs(db_session, SELLER_ID)} == {ok.id, bad.id}
    assert [job.id for job in job_runner.list_jobs(db_session, SELLER_ID, status="completed_with_errors")] == [bad.id]
    assert job_runner.list_jobs(db_session, OTHER_SELLER_ID) == []


def test_progress_snapshots_are_published(db_session, make_item, fake_redis):
    item = make_item("Tracked")

    job = job_runner.submit_bulk(db_session, SELLER_ID, PublishAction(), [item.id])

    keys = [call.args[0] for call in fake_redis.set.call_args_list]
    assert keys and all(key == f"bulk:progress:{job.id}" for key in keys)


def test_price_too_large_to_round_fails_only_that_item(db_session, make_item):
    a = make_item("A", "10.00")
    huge = make_item("Huge", "1e40")
    b = make_item("B", "20.00")
    action = AdjustPriceAction(operation="increase", value_type="percentage", value=Decimal("10"))

    job = job_runner.submit_bulk(db_session, SELLER_ID, action, [a.id, huge.id, b.id])

    assert job.status == "completed_with_errors"
    assert (job.processed, job.succeeded, job.failed) == (3, 2, 1)
    assert job.errors[0]["item_id"] == huge.id
    assert job.errors[0]["code"] == "invalid_price"
    db_session.expire_all()
    assert db_session.get(CatalogItem, b.id).price == "22.00"
    assert db_session.get(CatalogItem, huge.id).price == "1e40"


def test_price_calculation_overflow_is_an_item_error(db_session, make_item):
    near_limit = make_item("Near limit", "9" * 25 + ".99")
    normal = make_item("Normal", "10.00")
    action = AdjustPriceAction(operation="increase", value_type="percentage", value=Decimal("1000"))

    job = job_runner.submit_bulk(db_session, SELLER_ID, action, [near_limit.id, normal.id])

    assert job.status == "completed_with_errors"
    assert job.errors == [{"item_id": near_limit.id, "message": "New price is out of range", "code": "invalid_price"}]
    db_session.expire_all()
    assert db_session.get(CatalogItem, normal.id).price == "110.00"
    assert db_session.scalar(select(func.count(PriceHistoryEntry.id))) == 1


def test_constraint_violation_fails_only_that_item(db_session, make_item, monkeypatch):
    rejected = make_item("Rejected")
    accepted = make_item("Accepted")
    original = executors.AssignCategoryExecutor.apply

    def apply(self, session, ctx, item_id):
        if item_id == rejected.id:
            raise IntegrityError("UPDATE catalog_items", {}, Exception("value too long"))
        return original(self, session, ctx, item_id)

    monkeypatch.setattr(executors.AssignCategoryExecutor, "apply", apply)

    job = job_runner.submit_bulk(
        db_session, SELLER_ID, AssignCategoryAction(category="Kitchen"), [rejected.id, accepted.id]
    )

    assert job.status == "completed_with_errors"
    assert job.errors == [{"item_id": rejected.id, "message": "Database rejected the change", "code": "persistence"}]
    _assert_consistent(job)
    db_session.expire_all()
    assert db_session.get(CatalogItem, accepted.id).category == "Kitchen"


def test_enqueue_failure_fails_the_job(db_session, make_item, monkeypatch):
    monkeypatch.setattr(get_settings(), "bulk_sync_threshold", 0)
    item = make_item("Queued", status="Draft")

    with patch.object(bulk_jobs.run_bulk_job_task, "apply_async", side_effect=ConnectionError("broker down")):
        job = job_runner.submit_bulk(db_session, SELLER_ID, PublishAction(), [item.id])

    assert job.status == "failed"
    assert "broker down" in job.error_message
    assert job.completed_at is not None
    assert job.processed == 0
    db_session.expire_all()
    assert db_session.get(CatalogItem, item.id).status == "Draft"


def test_duplicate_creates_draft_copies(db_session, make_item, make_variant):
    original = make_item(
        "Mug",
        "12.50",
        sku="MUG-1",
        status="Published",
        category="Kitchen",
        description="Stoneware",
        stock_quantity=4,
        track_inventory=True,
    )
    make_variant(original, "MUG-1-BLUE")
    too_long = make_item("x" * 250)

    job = job_runner.submit_bulk(db_session, SELLER_ID, DuplicateAction(), [original.id, too_long.id])

    assert job.status == "completed_with_errors"
    assert job.errors[0]["code"] == "name_too_long"
    copy = db_session.scalars(select(CatalogItem).where(CatalogItem.name == "Mug (Copy)")).one()
    assert copy.id != original.id
    assert (copy.status, copy.sku, copy.price, copy.category, copy.description) == (
        "Draft",
        None,
        "12.50",
        "Kitchen",
        "Stoneware",
    )
    assert (copy.stock_quantity, copy.track_inventory, copy.seller_id) == (4, True, SELLER_ID)
    assert copy.variants == []
    db_session.expire_all()
    assert db_session.get(CatalogItem, original.id).status == "Published"


def _published_snapshots(fake_redis) -> list[dict]:
    return [json.loads(call.args[1]) for call in fake_redis.set.call_args_list]


def test_counters_are_consistent_at_every_published_snapshot(db_session, make_item, fake_redis):
    a = make_item("A", "10.00")
    broken = make_item("Broken", "n/a")
    b = make_item("B", "20.00")
    ids = [a.id, 9999, broken.id, b.id]
    action = AdjustPriceAction(operation="decrease", value_type="fixed", value=Decimal("1"))

    job = job_runner.submit_bulk(db_session, SELLER_ID, action, ids)

    snapshots = _published_snapshots(fake_redis)
    # started, one per item, finished
    assert len(snapshots) == len(ids) + 2
    for snapshot in snapshots:
        assert snapshot["total"] == len(ids)
        assert 0 <= snapshot["processed"] <= snapshot["total"]
        assert snapshot["succeeded"] + snapshot["failed"] == snapshot["processed"]
        assert 0.0 <= snapshot["progress"] <= 1.0
    assert [s["processed"] for s in snapshots] == [0, 1, 2, 3, 4, 4]
    assert [s["status"] for s in snapshots[:-1]] == ["running"] * (len(ids) + 1)
    assert snapshots[-1]["status"] == job.status == "completed_with_errors"


def test_import_counters_are_consistent_at_every_published_snapshot(db_session, fake_redis):
    raw = b"Name,Price\nMug,3\nPlate,\nBowl,4\n"

    job = job_runner.submit_import(db_session, SELLER_ID, raw, {"name": "Name", "price": "Price"})

    snapshots = _published_snapshots(fake_redis)
    assert [s["processed"] for s in snapshots] == [0, 1, 2, 3, 3]
    for snapshot in snapshots:
        assert snapshot["processed"] <= snapshot["total"] == 3
        assert snapshot["succeeded"] + snapshot["failed"] == snapshot["processed"]
    assert job.status == "completed_with_errors"
