"""Audit trail of stock quantity changes."""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.types import DateTime

from catalog_bulk.db.base import Base


class StockHistory(Base):
    __tablename__ = "stock_history"

    id = Column(Integer, primary_key=True)
    seller_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, index=True)
    variant_id = Column(Integer, index=True)
    change_type = Column(String(32), nullable=False, default="adjustment")
    quantity_before = Column(Integer, nullable=False)
    quantity_change = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    reason = Column(Text, default="")
    notes = Column(Text, default="")
    job_id = Column(String(36), index=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
