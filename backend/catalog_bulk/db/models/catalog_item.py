"""SQLAlchemy models for seller catalog items and their variants."""

import enum

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship
from sqlalchemy.types import DateTime

from catalog_bulk.db.base import Base


class CatalogStatus(str, enum.Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    ARCHIVED = "Archived"


class CatalogItem(Base):
    __tablename__ = "catalog_items"

    id = Column(Integer, primary_key=True)
    seller_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(64), index=True)
    # Decimal kept in its text form; rows written by other collaborators may not parse
    price = Column(String(32), nullable=False, default="0.00")
    compare_at_price = Column(String(32))
    status = Column(String(16), nullable=False, default=CatalogStatus.DRAFT.value)
    category = Column(String(128), nullable=False, default="")
    description = Column(Text)
    image_url = Column(Text)
    stock_quantity = Column(Integer, nullable=False, default=0)
    track_inventory = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
    )


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True)
    product_id = Column(
        Integer,
        ForeignKey("catalog_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    sku = Column(String(64), index=True)
    price = Column(String(32))
    stock_quantity = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    product = relationship("CatalogItem", back_populates="variants")
