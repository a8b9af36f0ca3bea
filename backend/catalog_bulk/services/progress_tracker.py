"""Bulk job progress snapshots cached in Redis for dashboards."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any

from redis.exceptions import RedisError

from catalog_bulk.core.config import get_settings
from catalog_bulk.db.models.bulk_job import BulkJob
from catalog_bulk.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

settings = get_settings()
redis_client = create_redis_client(settings.redis_url, decode_responses=True)
SNAPSHOT_PREFIX = "bulk:progress:"
SNAPSHOT_TTL = timedelta(hours=24)


def snapshot_key(job_id: str) -> str:
    return f"{SNAPSHOT_PREFIX}{job_id}"


def job_fraction(job: BulkJob) -> float:
    """Share of targets processed; an empty job counts as done once terminal."""
    if not job.total:
        return 1.0 if job.is_terminal else 0.0
    return min(job.processed / job.total, 1.0)


def build_snapshot(job: BulkJob, message: str | None = None) -> dict[str, Any]:
    return {
        "job_id": job.id,
        "status": job.status,
        "progress": job_fraction(job),
        "message": message or f"Processed {job.processed}/{job.total}",
        "processed": job.processed,
        "total": job.total,
        "succeeded": job.succeeded,
        "failed": job.failed,
    }


def publish_job_progress(job: BulkJob, message: str | None = None) -> None:
    """Cache the committed counters of ``job``; Redis outages are logged only."""
    snapshot = build_snapshot(job, message)
    try:
        redis_client.set(
            snapshot_key(job.id),
            json.dumps(snapshot),
            ex=int(SNAPSHOT_TTL.total_seconds()),
        )
    except RedisError as e:
        logger.debug(f"Progress snapshot for job {job.id} not cached: {e}")
