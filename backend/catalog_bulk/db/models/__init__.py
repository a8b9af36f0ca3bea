"""Database models package."""
from catalog_bulk.db.models.catalog_item import CatalogItem, CatalogStatus, ProductVariant
from catalog_bulk.db.models.bulk_job import BulkJob, JobState
from catalog_bulk.db.models.price_history import PriceHistoryEntry
from catalog_bulk.db.models.stock_history import StockHistory
from catalog_bulk.db.models.webhook import Webhook

__all__ = [
    "CatalogItem",
    "CatalogStatus",
    "ProductVariant",
    "BulkJob",
    "JobState",
    "PriceHistoryEntry",
    "StockHistory",
    "Webhook",
]
