"""Celery application for bulk jobs, imports and notifications."""

import ssl

from celery import Celery
from celery.schedules import crontab

from catalog_bulk.core.config import get_settings

settings = get_settings()


def _tls_url(url: str) -> str:
    """Upgrade Upstash URLs to rediss:// and pass ssl_cert_reqs in the query.

    The Redis result backend reads ssl_cert_reqs from the URL while it
    initializes, before conf.update() runs.
    """
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)
    if url.startswith("rediss://") and "ssl_cert_reqs" not in url:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}ssl_cert_reqs=none"
    return url


broker_url = _tls_url(settings.celery_broker_url or settings.redis_url)
backend_url = _tls_url(settings.celery_result_url or settings.redis_url)
uses_tls = broker_url.startswith("rediss://") or backend_url.startswith("rediss://")

celery_app = Celery(
    "catalog_bulk",
    broker=broker_url,
    backend=backend_url,
)

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,  # Acknowledge after task completion
    "task_reject_on_worker_lost": True,  # Re-queue if worker dies
    "worker_prefetch_multiplier": 1,  # Fair task distribution
    "task_time_limit": 3600,  # 1 hour hard limit
    "task_soft_time_limit": 3300,  # 55 min soft limit
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "result_backend_always_retry": True,
    "result_backend_max_retries": 3,
    "task_default_queue": "bulk",
    "task_routes": {
        "catalog_bulk.workers.tasks.run_bulk_job": {"queue": "bulk"},
        "catalog_bulk.workers.tasks.expire_price_history": {"queue": "bulk"},
        "catalog_bulk.workers.tasks.run_import_job": {"queue": "imports"},
        "catalog_bulk.workers.tasks.deliver_job_notification": {"queue": "notifications"},
    },
    "beat_schedule": {
        "expire-price-history": {
            "task": "catalog_bulk.workers.tasks.expire_price_history",
            "schedule": crontab(minute=0),
        },
    },
}

if uses_tls:
    tls_options = {"ssl_cert_reqs": ssl.CERT_NONE}
    for key in (
        "broker_use_ssl",
        "result_backend_use_ssl",
        "broker_transport_options",
        "result_backend_transport_options",
    ):
        celery_config[key] = dict(tls_options)

celery_app.conf.update(celery_config)

# Register tasks with the app
from catalog_bulk.workers.tasks import bulk_jobs, notifications  # noqa: E402,F401
