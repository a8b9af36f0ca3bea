"""Local staging of CSV uploads that are imported by a worker."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from catalog_bulk.core.config import get_settings

logger = logging.getLogger(__name__)


def uploads_dir() -> Path:
    path = Path(get_settings().uploads_dir).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def stage_upload(raw: bytes, original_name: str | None = None) -> Path:
    """Persist uploaded CSV bytes and return the absolute path."""
    suffix = Path(original_name or "upload.csv").suffix or ".csv"
    target_path = (uploads_dir() / f"{uuid.uuid4()}{suffix}").resolve()
    target_path.write_bytes(raw)
    logger.info(f"Staged upload {original_name or 'upload.csv'} at {target_path} ({len(raw)} bytes)")
    return target_path


def load_upload(uri: str | Path) -> bytes:
    """Read a staged upload; raises FileNotFoundError when it is gone."""
    path = Path(uri).resolve()
    if not path.exists():
        raise FileNotFoundError(f"Staged upload not found: {path}")
    return path.read_bytes()


def delete_upload(uri: str | Path) -> None:
    """Cleanup staged files when imports finish."""
    path = Path(uri).resolve()
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning(f"Failed to delete staged upload {path}: {exc}")
