"""Celery task delivering bulk job notifications to one webhook."""

from __future__ import annotations

import logging
from typing import Any

from catalog_bulk.db.models.webhook import Webhook
from catalog_bulk.db.session import get_fresh_session
from catalog_bulk.services.webhook_dispatch import dispatch_event
from catalog_bulk.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def skip_reason(webhook: Webhook | None, payload: dict[str, Any]) -> str | None:
    """Why a queued notification should not be sent anymore, if at all."""
    if webhook is None:
        return "Webhook not found"
    if not webhook.enabled:
        return "Webhook is disabled"
    if webhook.event != payload.get("event"):
        return f"Webhook is no longer subscribed to {payload.get('event')}"
    seller_id = (payload.get("data") or {}).get("seller_id")
    if seller_id is not None and webhook.seller_id != seller_id:
        return "Webhook belongs to another seller"
    return None


@celery_app.task(bind=True, name="catalog_bulk.workers.tasks.deliver_job_notification")
def deliver_job_notification(self, webhook_id: int, payload: dict[str, Any]) -> dict[str, Any]:
    """Deliver the notification of one finished job.

    The subscription is re-checked at delivery time since it may have changed
    while the message was queued. Returns the delivery metrics tagged with the
    webhook and job ids.
    """
    job_id = (payload.get("data") or {}).get("job_id")
    outcome: dict[str, Any] = {"webhook_id": webhook_id, "job_id": job_id}

    session = get_fresh_session()
    try:
        webhook = session.get(Webhook, webhook_id)
        reason = skip_reason(webhook, payload)
        if reason:
            logger.warning(f"Notification of job {job_id} to webhook {webhook_id} skipped: {reason}")
            return {**outcome, "success": False, "error": reason}

        result = dispatch_event(webhook, payload, session)
        if result["success"]:
            logger.info(
                f"Job {job_id} notified webhook {webhook_id}: "
                f"status={result['status']} in {result['response_time_ms']}ms"
            )
        else:
            logger.warning(f"Job {job_id} notification to webhook {webhook_id} failed: {result['error']}")
        return {**outcome, **result}
    finally:
        session.close()
