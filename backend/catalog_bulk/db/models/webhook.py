"""SQLAlchemy model for job-completion webhook subscriptions."""
from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog_bulk.db.base import Base


class Webhook(Base):
    __tablename__ = "webhooks"

    id = Column(Integer, primary_key=True)
    seller_id = Column(Integer, nullable=False, index=True)
    url = Column(Text, nullable=False)
    event = Column(String(64), nullable=False)
    enabled = Column(Boolean, default=True)
    secret = Column(String(255))
    last_status = Column(String(32))
    last_response_ms = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
