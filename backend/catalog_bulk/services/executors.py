"""Per-action mutation strategies applied to one catalog item at a time."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_bulk.api.schemas.actions import (
    AdjustPriceAction,
    ArchiveAction,
    AssignCategoryAction,
    BulkAction,
    DeleteAction,
    DuplicateAction,
    PriceOperation,
    PriceValueType,
    PublishAction,
    StockUpdateAction,
    UnpublishAction,
)
from catalog_bulk.core.exceptions import ItemMutationError
from catalog_bulk.db.models.catalog_item import CatalogItem, CatalogStatus, ProductVariant
from catalog_bulk.db.models.stock_history import StockHistory
from catalog_bulk.services.price_ledger import record_price_change
from catalog_bulk.utils.money import clamp_price, parse_price, round_price
from catalog_bulk.utils.retry import TRANSIENT_DB_ERRORS

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
COPY_SUFFIX = " (Copy)"
# Columns carried over to a duplicate; sku stays empty so SKU lookups remain unambiguous
DUPLICATED_COLUMNS = (
    "price",
    "compare_at_price",
    "category",
    "description",
    "image_url",
    "stock_quantity",
    "track_inventory",
)

# Any status may move to any status; only the values themselves are checked.
ALLOWED_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    source.value: frozenset(target.value for target in CatalogStatus)
    for source in CatalogStatus
}


@dataclass
class ExecutionContext:
    seller_id: int
    job_id: str
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ItemResult:
    item_id: int
    success: bool
    error: str | None = None
    code: str | None = None

    def to_error(self) -> dict:
        return {"item_id": self.item_id, "message": self.error, "code": self.code}


def compute_new_price(
    current: Decimal,
    operation: PriceOperation,
    value_type: PriceValueType,
    value: Decimal,
) -> Decimal:
    """Apply a price adjustment; the result is rounded to cents and never negative.

    Percentage "set" scales the current price to ``value`` percent of itself
    rather than setting an absolute price.
    """
    if value_type is PriceValueType.PERCENTAGE:
        if operation is PriceOperation.INCREASE:
            new_price = current * (1 + value / HUNDRED)
        elif operation is PriceOperation.DECREASE:
            new_price = current * (1 - value / HUNDRED)
        else:
            new_price = current * (value / HUNDRED)
    else:
        if operation is PriceOperation.INCREASE:
            new_price = current + value
        elif operation is PriceOperation.DECREASE:
            new_price = current - value
        else:
            new_price = value
    return clamp_price(new_price)


def load_item(session: Session, ctx: ExecutionContext, item_id: int) -> CatalogItem:
    item = session.get(CatalogItem, item_id)
    if item is None or item.seller_id != ctx.seller_id:
        raise ItemMutationError(item_id, f"Item {item_id} not found", code="not_found")
    return item


class Executor(ABC):
    """Mutates a single item. Changes are staged on the session, never committed."""

    action_type: str

    @abstractmethod
    def apply(self, session: Session, ctx: ExecutionContext, item_id: int) -> None:
        """Stage the mutation or raise ItemMutationError."""

    def execute(self, session: Session, ctx: ExecutionContext, item_id: int) -> ItemResult:
        """Run ``apply`` and report a per-item result.

        Transient database errors are not caught here; the runner retries them.
        Any other database error or a failed price calculation rolls the item
        back and fails only this item.
        """
        try:
            self.apply(session, ctx, item_id)
            session.flush()
        except ItemMutationError as exc:
            return ItemResult(item_id, False, str(exc), exc.code)
        except TRANSIENT_DB_ERRORS:
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(f"Database error on item {item_id} of job {ctx.job_id}: {exc}", exc_info=True)
            return ItemResult(item_id, False, "Database rejected the change", "persistence")
        except ArithmeticError as exc:
            session.rollback()
            logger.warning(f"Price calculation failed for item {item_id} of job {ctx.job_id}: {exc!r}")
            return ItemResult(item_id, False, "New price is out of range", "invalid_price")
        return ItemResult(item_id, True)


class AdjustPriceExecutor(Executor):
    action_type = "adjust_price"

    def __init__(self, action: AdjustPriceAction):
        self.action = action

    def apply(self, session: Session, ctx: ExecutionContext, item_id: int) -> None:
        item = load_item(session, ctx, item_id)
        try:
            current = parse_price(item.price)
        except ValueError as exc:
            raise ItemMutationError(
                item_id, f"Item {item_id} has an unparsable price: {exc}", code="invalid_price"
            ) from exc

        new_price = compute_new_price(
            current, self.action.operation, self.action.value_type, self.action.value
        )
        record_price_change(
            session,
            item,
            current,
            new_price,
            change_type=self.action.change_type,
            change_operation=self.action.operation.value,
            change_value=self.action.value,
            job_id=ctx.job_id,
            now=ctx.now,
        )


class AssignCategoryExecutor(Executor):
    action_type = "assign_category"

    def __init__(self, action: AssignCategoryAction):
        self.action = action

    def apply(self, session: Session, ctx: ExecutionContext, item_id: int) -> None:
        item = load_item(session, ctx, item_id)
        item.category = self.action.category


class SetStatusExecutor(Executor):
    def __init__(self, action_type: str, target: CatalogStatus):
        self.action_type = action_type
        self.target = target

    def apply(self, session: Session, ctx: ExecutionContext, item_id: int) -> None:
        item = load_item(session, ctx, item_id)
        allowed = ALLOWED_STATUS_TRANSITIONS.get(item.status)
        if allowed is None:
            raise ItemMutationError(
                item_id, f"Item {item_id} has unknown status '{item.status}'", code="invalid_status"
            )
        if self.target.value not in allowed:
            raise ItemMutationError(
                item_id,
                f"Cannot move item {item_id} from {item.status} to {self.target.value}",
                code="invalid_transition",
            )
        item.status = self.target.value


class DeleteExecutor(Executor):
    action_type = "delete"

    def apply(self, session: Session, ctx: ExecutionContext, item_id: int) -> None:
        item = load_item(session, ctx, item_id)
        session.delete(item)


class DuplicateExecutor(Executor):
    """Copy an item as a new Draft named "<name> (Copy)". Variants are not copied."""

    action_type = "duplicate"

    def apply(self, session: Session, ctx: ExecutionContext, item_id: int) -> None:
        item = load_item(session, ctx, item_id)
        name = f"{item.name}{COPY_SUFFIX}"
        if len(name) > CatalogItem.__table__.c.name.type.length:
            raise ItemMutationError(item_id, f"Name of item {item_id} is too long to copy", code="name_too_long")
        duplicate = CatalogItem(
            seller_id=item.seller_id,
            name=name,
            status=CatalogStatus.DRAFT.value,
            **{column: getattr(item, column) for column in DUPLICATED_COLUMNS},
        )
        session.add(duplicate)


class StockUpdateExecutor(Executor):
    action_type = "stock_update"

    def __init__(self, action: StockUpdateAction):
        self.action = action

    def _load_variant(self, session: Session, ctx: ExecutionContext, variant_id: int) -> ProductVariant:
        variant = session.get(ProductVariant, variant_id)
        if variant is None or variant.product is None or variant.product.seller_id != ctx.seller_id:
            raise ItemMutationError(variant_id, f"Variant {variant_id} not found", code="not_found")
        return variant

    def apply(self, session: Session, ctx: ExecutionContext, item_id: int) -> None:
        quantity = self.action.quantity_for(item_id)
        if quantity is None:
            raise ItemMutationError(item_id, f"No stock quantity given for {item_id}", code="invalid_quantity")
        if quantity < 0:
            raise ItemMutationError(item_id, "Stock quantity cannot be negative", code="invalid_quantity")

        if self.action.target == "variant":
            target = self._load_variant(session, ctx, item_id)
            product_id, variant_id = target.product_id, target.id
        else:
            target = load_item(session, ctx, item_id)
            product_id, variant_id = target.id, None

        before = target.stock_quantity or 0
        target.stock_quantity = quantity
        session.add(
            StockHistory(
                seller_id=ctx.seller_id,
                product_id=product_id,
                variant_id=variant_id,
                change_type="adjustment",
                quantity_before=before,
                quantity_change=quantity - before,
                quantity_after=quantity,
                reason=self.action.reason,
                notes=self.action.notes,
                job_id=ctx.job_id,
                created_at=ctx.now,
            )
        )


def executor_for(action: BulkAction) -> Executor:
    """Pick the strategy for a tagged action."""
    if isinstance(action, AdjustPriceAction):
        return AdjustPriceExecutor(action)
    if isinstance(action, AssignCategoryAction):
        return AssignCategoryExecutor(action)
    if isinstance(action, PublishAction):
        return SetStatusExecutor("publish", CatalogStatus.PUBLISHED)
    if isinstance(action, UnpublishAction):
        return SetStatusExecutor("unpublish", CatalogStatus.DRAFT)
    if isinstance(action, ArchiveAction):
        return SetStatusExecutor("archive", CatalogStatus.ARCHIVED)
    if isinstance(action, DeleteAction):
        return DeleteExecutor()
    if isinstance(action, DuplicateAction):
        return DuplicateExecutor()
    if isinstance(action, StockUpdateAction):
        return StockUpdateExecutor(action)
    raise TypeError(f"No executor for action {type(action).__name__}")


def preview_prices(
    session: Session,
    seller_id: int,
    action: AdjustPriceAction,
    item_ids: list[int],
) -> list[dict]:
    """Old and new prices for an adjustment, without writing anything."""
    items = {
        item.id: item
        for item in session.scalars(
            select(CatalogItem).where(CatalogItem.id.in_(item_ids), CatalogItem.seller_id == seller_id)
        )
    }
    preview = []
    for item_id in dict.fromkeys(item_ids):
        item = items.get(item_id)
        if item is None:
            preview.append({"item_id": item_id, "error": f"Item {item_id} not found"})
            continue
        try:
            current = parse_price(item.price)
        except ValueError as exc:
            preview.append({"item_id": item_id, "name": item.name, "error": f"Unparsable price: {exc}"})
            continue
        try:
            new_price = compute_new_price(current, action.operation, action.value_type, action.value)
        except ArithmeticError:
            preview.append({"item_id": item_id, "name": item.name, "error": "New price is out of range"})
            continue
        preview.append(
            {
                "item_id": item_id,
                "name": item.name,
                "old_price": round_price(current),
                "new_price": new_price,
            }
        )
    return preview
