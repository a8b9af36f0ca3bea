"""CSV catalog import: parsing, mapping, row validation and row application.

Dry-run and commit share :func:`evaluate_rows`; only commit (driven by the
job runner) calls :func:`apply_outcome`.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from catalog_bulk.core.config import get_settings
from catalog_bulk.core.exceptions import MappingError, RowError, ValidationError
from catalog_bulk.db.models.catalog_item import CatalogItem, CatalogStatus
from catalog_bulk.services.price_ledger import record_price_change
from catalog_bulk.utils.money import format_price, parse_price

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "price")
IMPORT_FIELDS = (
    "name",
    "price",
    "compare_at_price",
    "category",
    "description",
    "stock_quantity",
    "image_url",
    "status",
    "sku",
    "product_id",
    "track_inventory",
)
IMPORT_STATUSES = (CatalogStatus.DRAFT.value, CatalogStatus.PUBLISHED.value)
TRUTHY = {"true", "yes", "y", "1"}
FALSY = {"false", "no", "n", "0"}

# Text fields bounded by their column width
MAX_LENGTHS = {
    target: CatalogItem.__table__.c[target].type.length for target in ("name", "sku", "category")
}

TEMPLATE_HEADERS = [
    "Product ID",
    "Name",
    "SKU",
    "Price",
    "Compare At Price",
    "Category",
    "Description",
    "Stock Quantity",
    "Status",
    "Image URL",
    "Track Inventory",
]
TEMPLATE_ROWS = [
    ["", "Ceramic Mug", "MUG-001", "12.50", "15.00", "Kitchen", "Stoneware mug, 350ml", "40", "Published", "", "true"],
    ["", "Linen Apron", "APR-002", "24.00", "", "Kitchen", "Washed linen apron", "12", "Draft", "", "false"],
]


@dataclass
class ParsedCsv:
    headers: list[str]
    # (1-based data row index, cells); blank rows are dropped but keep their index
    rows: list[tuple[int, list[str]]]

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class RowOutcome:
    row: int
    action: str  # create | update | skip
    data: dict[str, Any] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)
    product_id: int | None = None

    def preview(self) -> dict[str, Any]:
        return {"row": self.row, "action": self.action, "data": self.data}


def parse_csv(raw: bytes) -> ParsedCsv:
    """Split raw CSV bytes into headers and non-blank data rows."""
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValidationError(f"File encoding error: {e}") from e

    try:
        records = list(csv.reader(io.StringIO(text, newline="")))
    except csv.Error as e:
        raise ValidationError(f"CSV parsing error: {e}") from e

    if not records or not any(cell.strip() for cell in records[0]):
        raise ValidationError("CSV file must contain a header row")

    headers = [cell.strip() for cell in records[0]]
    rows = [
        (index, cells)
        for index, cells in enumerate(records[1:], start=1)
        if any(cell.strip() for cell in cells)
    ]
    if not rows:
        raise ValidationError("CSV file must contain at least a header and one data row")
    return ParsedCsv(headers=headers, rows=rows)


def _suggests(target: str, header: str) -> bool:
    h = header.lower()
    if target == "name":
        return "name" in h
    if target == "price":
        return "price" in h and "compare" not in h
    if target == "compare_at_price":
        return "compare" in h
    if target == "category":
        return "category" in h
    if target == "description":
        return "description" in h
    if target == "stock_quantity":
        return "stock" in h or "quantity" in h or "qty" in h
    if target == "image_url":
        return "image" in h and "url" in h
    if target == "status":
        return "status" in h
    if target == "sku":
        return "sku" in h
    if target == "product_id":
        return h == "id" or ("product" in h and "id" in h)
    if target == "track_inventory":
        return "track" in h
    return False


def suggest_mapping(headers: list[str]) -> dict[str, str]:
    """Guess target field -> header by case-insensitive substring match.

    The first header that matches a target wins.
    """
    mapping: dict[str, str] = {}
    for target in IMPORT_FIELDS:
        for header in headers:
            if _suggests(target, header):
                mapping[target] = header
                break
    return mapping


def validate_mapping(mapping: dict[str, str], headers: list[str]) -> dict[str, str]:
    """Check the mapping before any row is read and return its usable part."""
    unknown = sorted(set(mapping) - set(IMPORT_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown import field(s): {', '.join(unknown)}")

    cleaned = {target: header for target, header in mapping.items() if header}
    missing = [
        target
        for target in REQUIRED_FIELDS
        if target not in cleaned or cleaned[target] not in headers
    ]
    if missing:
        raise MappingError(missing)

    for target, header in list(cleaned.items()):
        if header not in headers:
            logger.debug(f"Ignoring mapping {target} -> '{header}': no such column")
            del cleaned[target]
    return cleaned


def _parse_non_negative_price(row: int, target: str, value: str, label: str) -> str:
    try:
        price = parse_price(value)
    except ValueError as e:
        raise RowError(row, target, f"{label} must be a valid number", value) from e
    if price < 0:
        raise RowError(row, target, f"{label} cannot be negative", value)
    return format_price(price)


def _coerce(row: int, target: str, value: str) -> Any:
    """Convert one mapped cell; raises RowError on invalid input."""
    limit = MAX_LENGTHS.get(target)
    if limit is not None and len(value) > limit:
        raise RowError(row, target, f"Value must be at most {limit} characters", value[:50])
    if target == "name":
        if not value:
            raise RowError(row, target, "Product name is required", value)
        return value
    if target == "price":
        if not value:
            raise RowError(row, target, "Valid price is required", value)
        return _parse_non_negative_price(row, target, value, "Price")
    if target == "compare_at_price":
        return _parse_non_negative_price(row, target, value, "Compare at price") if value else None
    if target == "stock_quantity":
        if not value:
            return 0
        try:
            quantity = int(value)
        except ValueError as e:
            raise RowError(row, target, "Stock quantity must be a whole number", value) from e
        if quantity < 0:
            raise RowError(row, target, "Stock quantity cannot be negative", value)
        return quantity
    if target == "status":
        if not value:
            return CatalogStatus.DRAFT.value
        for status in IMPORT_STATUSES:
            if value.lower() == status.lower():
                return status
        raise RowError(row, target, 'Status must be either "Draft" or "Published"', value)
    if target == "track_inventory":
        lowered = value.lower()
        if not lowered or lowered in FALSY:
            return False
        if lowered in TRUTHY:
            return True
        raise RowError(row, target, "Track inventory must be true or false", value)
    if target == "product_id":
        if not value:
            return None
        try:
            return int(value)
        except ValueError as e:
            raise RowError(row, target, "Product ID must be a whole number", value) from e
    if target == "sku":
        return value or None
    return value


def evaluate_rows(
    session: Session,
    seller_id: int,
    parsed: ParsedCsv,
    mapping: dict[str, str],
) -> list[RowOutcome]:
    """Coerce, validate and classify every row. Reads only; never writes."""
    columns = {target: parsed.headers.index(header) for target, header in mapping.items()}
    existing = session.execute(
        select(CatalogItem.id, CatalogItem.sku).where(CatalogItem.seller_id == seller_id)
    ).all()
    existing_ids = {item_id for item_id, _ in existing}
    ids_by_sku = {sku.lower(): item_id for item_id, sku in existing if sku}
    seen_skus: dict[str, int] = {}

    outcomes: list[RowOutcome] = []
    for row, cells in parsed.rows:
        outcome = RowOutcome(row=row, action="skip")
        blank: set[str] = set()
        for target, column in columns.items():
            value = cells[column].strip() if column < len(cells) else ""
            if not value:
                blank.add(target)
            try:
                outcome.data[target] = _coerce(row, target, value)
            except RowError as exc:
                outcome.errors.append(exc.to_error())

        product_id = outcome.data.pop("product_id", None)
        sku = outcome.data.get("sku")
        if product_id is not None and product_id not in existing_ids:
            outcome.errors.append(
                RowError(row, "product_id", f"Product {product_id} not found", str(product_id)).to_error()
            )
        if sku:
            first_row = seen_skus.setdefault(sku.lower(), row)
            if first_row != row:
                outcome.errors.append(
                    RowError(row, "sku", f"Duplicate SKU in file (first seen on row {first_row})", sku).to_error()
                )

        if outcome.errors:
            outcome.action = "skip"
        elif product_id is not None:
            outcome.action, outcome.product_id = "update", product_id
        elif sku and sku.lower() in ids_by_sku:
            outcome.action, outcome.product_id = "update", ids_by_sku[sku.lower()]
        else:
            outcome.action = "create"

        if outcome.action == "update":
            # Blank optional cells keep the stored value instead of resetting it
            for target in blank:
                outcome.data.pop(target, None)
        outcomes.append(outcome)
    return outcomes


def summarize(
    outcomes: list[RowOutcome],
    preview_limit: int | None = None,
) -> dict[str, Any]:
    """Counts and the full error list; the preview only when a limit is given."""
    summary: dict[str, Any] = {
        "success": True,
        "processed": len(outcomes),
        "created": sum(1 for o in outcomes if o.action == "create"),
        "updated": sum(1 for o in outcomes if o.action == "update"),
        "skipped": sum(1 for o in outcomes if o.action == "skip"),
        "errors": [error for o in outcomes for error in o.errors],
    }
    if preview_limit is not None:
        summary["preview"] = [o.preview() for o in outcomes[:preview_limit]]
        summary["preview_total"] = len(outcomes)
    return summary


def prepare(
    session: Session,
    seller_id: int,
    raw: bytes,
    mapping: dict[str, str],
) -> tuple[ParsedCsv, list[RowOutcome]]:
    parsed = parse_csv(raw)
    cleaned = validate_mapping(mapping, parsed.headers)
    return parsed, evaluate_rows(session, seller_id, parsed, cleaned)


def dry_run(
    session: Session,
    seller_id: int,
    raw: bytes,
    mapping: dict[str, str],
) -> dict[str, Any]:
    """Full validation and classification without persisting anything."""
    _, outcomes = prepare(session, seller_id, raw, mapping)
    summary = summarize(outcomes, get_settings().import_preview_limit)
    logger.info(
        f"Dry-run for seller {seller_id}: {summary['created']} create, "
        f"{summary['updated']} update, {summary['skipped']} skip"
    )
    return summary


def apply_outcome(
    session: Session,
    seller_id: int,
    outcome: RowOutcome,
    *,
    job_id: str,
    now: datetime | None = None,
) -> None:
    """Stage a validated create/update row on the session without committing."""
    if outcome.action == "create":
        session.add(CatalogItem(seller_id=seller_id, **outcome.data))
        session.flush()
        return

    item = session.get(CatalogItem, outcome.product_id)
    if item is None or item.seller_id != seller_id:
        raise RowError(outcome.row, "product_id", f"Product {outcome.product_id} no longer exists")

    for target, value in outcome.data.items():
        if target != "price":
            setattr(item, target, value)

    new_price = outcome.data.get("price")
    if new_price is None:
        session.flush()
        return
    try:
        old_price: Decimal | str = parse_price(item.price)
    except ValueError:
        old_price = item.price
    if old_price == Decimal(new_price):
        item.price = new_price
    else:
        record_price_change(
            session,
            item,
            old_price,
            Decimal(new_price),
            change_type="set",
            change_operation="set",
            change_value=new_price,
            job_id=job_id,
            now=now,
        )
    session.flush()


def template_csv() -> str:
    """Downloadable example file with every importable column."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerows(TEMPLATE_ROWS)
    return buffer.getvalue()
