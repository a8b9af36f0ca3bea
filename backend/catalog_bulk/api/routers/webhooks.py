"""Job completion webhook subscriptions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_bulk.api.dependencies.db import get_seller_id, get_session
from catalog_bulk.api.schemas.webhook import WebhookCreate, WebhookRead
from catalog_bulk.db.models.webhook import Webhook
from catalog_bulk.services.notifications import VALID_EVENTS

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", summary="List webhooks", response_model=list[WebhookRead])
async def list_webhooks(
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> list[WebhookRead]:
    try:
        webhooks = db.scalars(
            select(Webhook).where(Webhook.seller_id == seller_id).order_by(Webhook.id.desc())
        ).all()
        return [WebhookRead.model_validate(w) for w in webhooks]
    except SQLAlchemyError as e:
        logger.error(f"Database error while listing webhooks: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve webhooks",
        ) from e


@router.post(
    "",
    summary="Create a webhook",
    status_code=status.HTTP_201_CREATED,
    response_model=WebhookRead,
)
async def create_webhook(
    payload: WebhookCreate,
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> WebhookRead:
    """Subscribe a URL to job completion events; enabled by default."""
    if payload.event not in VALID_EVENTS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid event type. Must be one of: {', '.join(VALID_EVENTS)}",
        )
    try:
        webhook = Webhook(
            seller_id=seller_id,
            url=str(payload.url),
            event=payload.event,
            enabled=payload.enabled,
            secret=payload.secret,
        )
        db.add(webhook)
        db.commit()
        db.refresh(webhook)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating webhook: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create webhook",
        ) from e

    logger.info(f"Created webhook {webhook.id} for seller {seller_id} ({payload.event})")
    return WebhookRead.model_validate(webhook)


@router.delete("/{webhook_id}", summary="Delete webhook")
async def delete_webhook(
    webhook_id: int,
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> Response:
    webhook = db.get(Webhook, webhook_id)
    if not webhook or webhook.seller_id != seller_id:
        raise HTTPException(status_code=404, detail="Webhook not found")
    try:
        db.delete(webhook)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error deleting webhook {webhook_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete webhook",
        ) from e

    logger.info(f"Deleted webhook {webhook_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
