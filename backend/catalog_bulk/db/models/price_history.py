"""Reversible ledger of catalog price changes."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.types import DateTime

from catalog_bulk.db.base import Base


class PriceHistoryEntry(Base):
    __tablename__ = "price_history"

    id = Column(Integer, primary_key=True)
    seller_id = Column(Integer, nullable=False, index=True)
    # No foreign key: the entry outlives a deleted item so undo can report it
    product_id = Column(Integer, nullable=False, index=True)
    old_price = Column(String(32), nullable=False)
    new_price = Column(String(32), nullable=False)
    change_type = Column(String(16), nullable=False)
    change_operation = Column(String(16), nullable=False)
    change_value = Column(String(32), nullable=False)
    job_id = Column(String(36), nullable=False, index=True)
    can_undo = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    undone_at = Column(DateTime(timezone=True))
