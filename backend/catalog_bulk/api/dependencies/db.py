"""Request dependencies: database session and acting seller."""

from collections.abc import Generator

from fastapi import Header, HTTPException, status
from sqlalchemy.orm import Session

from catalog_bulk.db.session import get_db


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a managed SQLAlchemy session."""
    yield from get_db()


def get_seller_id(
    x_seller_id: int | None = Header(None, description="Seller acting on the catalog"),
) -> int:
    """Sessions are resolved upstream; the gateway forwards the seller id."""
    if x_seller_id is None or x_seller_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid X-Seller-Id header",
        )
    return x_seller_id
