"""Bounded retry for persistence calls made by executors and the importer."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from catalog_bulk.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors worth another attempt; anything else is reported immediately
TRANSIENT_DB_ERRORS = (OperationalError, DisconnectionError)


def persist_with_retry(
    operation: Callable[[], T],
    session: Session,
    *,
    label: str = "persistence call",
    attempts: int | None = None,
) -> T:
    """Run ``operation`` with a small bounded retry on transient DB errors.

    The session is rolled back between attempts so each attempt starts from
    the last committed state. After the final attempt the original exception
    propagates and the caller converts it into a per-item/per-row error.
    """
    max_attempts = attempts or get_settings().persistence_retry_attempts

    def _before_retry(retry_state: RetryCallState) -> None:
        session.rollback()
        logger.warning(
            f"Retrying {label} (attempt {retry_state.attempt_number}/{max_attempts}): "
            f"{retry_state.outcome.exception()}"
        )

    retryer = Retrying(
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception_type(TRANSIENT_DB_ERRORS),
        before_sleep=_before_retry,
        reraise=True,
    )
    return retryer(operation)
