"""Track bulk jobs (catalog mutations and CSV imports) for polling and audit."""

import enum
import uuid

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from catalog_bulk.db.base import Base, JsonType


class JobState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {JobState.COMPLETED.value, JobState.COMPLETED_WITH_ERRORS.value, JobState.FAILED.value}
)


class BulkJob(Base):
    __tablename__ = "bulk_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    seller_id = Column(Integer, nullable=False, index=True)
    job_type = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False, default=JobState.PENDING.value)
    params = Column(JsonType, nullable=False, default=dict)
    item_ids = Column(JsonType, nullable=False, default=list)
    total = Column(Integer, nullable=False, default=0)
    processed = Column(Integer, nullable=False, default=0)
    succeeded = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    errors = Column(JsonType, nullable=False, default=list)
    result = Column(JsonType)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES
