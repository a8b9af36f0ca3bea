"""CSV catalog import endpoints: mapping suggestion, dry-run/commit, template."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_bulk.api.dependencies.db import get_seller_id, get_session
from catalog_bulk.api.schemas.imports import ImportResult, MappingSuggestion
from catalog_bulk.core.exceptions import MappingError, ValidationError
from catalog_bulk.services import csv_import, job_runner

logger = logging.getLogger(__name__)
router = APIRouter()


def _parse_mapping(raw: str) -> dict[str, str]:
    try:
        mapping = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise ValidationError(f"Mapping is not valid JSON: {e}") from e
    if not isinstance(mapping, dict) or not all(
        isinstance(key, str) and isinstance(value, (str, type(None))) for key, value in mapping.items()
    ):
        raise ValidationError("Mapping must be an object of field -> column header")
    return {key: value for key, value in mapping.items() if value}


@router.post(
    "/mapping",
    summary="Suggest a column mapping for a CSV file",
    response_model=MappingSuggestion,
)
async def suggest_mapping(
    file: UploadFile = File(...),
    seller_id: int = Depends(get_seller_id),
) -> MappingSuggestion:
    try:
        parsed = csv_import.parse_csv(await file.read())
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return MappingSuggestion(
        headers=parsed.headers,
        mapping=csv_import.suggest_mapping(parsed.headers),
        required_fields=list(csv_import.REQUIRED_FIELDS),
        available_fields=list(csv_import.IMPORT_FIELDS),
        row_count=parsed.row_count,
    )


@router.post(
    "",
    summary="Dry-run or commit a CSV import",
    response_model=ImportResult,
    responses={202: {"description": "Large import queued as a job"}},
)
async def import_csv(
    response: Response,
    file: UploadFile = File(...),
    mapping: str = Form("{}", description="JSON object: target field -> CSV header"),
    dry_run: bool = Form(True),
    seller_id: int = Depends(get_seller_id),
    db: Session = Depends(get_session),
) -> ImportResult:
    """Validate every row and either preview or persist the result.

    A dry-run never writes. A commit re-reads the file from scratch; files
    above the synchronous row limit are queued and answered with 202.
    """
    try:
        raw = await file.read()
        field_mapping = _parse_mapping(mapping)
        if dry_run:
            return ImportResult(**csv_import.dry_run(db, seller_id, raw, field_mapping))

        job = job_runner.submit_import(db, seller_id, raw, field_mapping, file.filename)
        counts = job.result or {}
        if not job.is_terminal:
            response.status_code = status.HTTP_202_ACCEPTED
        return ImportResult(
            success=job.status != "failed",
            processed=job.processed,
            created=counts.get("created", 0),
            updated=counts.get("updated", 0),
            skipped=counts.get("skipped", 0),
            errors=job.errors,
            job_id=job.id,
            status=job.status,
        )
    except MappingError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "missing_fields": e.missing_fields},
        ) from e
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error importing CSV: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to import CSV",
        ) from e


@router.get("/template", summary="Download an example import CSV")
async def download_template() -> Response:
    return Response(
        content=csv_import.template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="catalog-import-template.csv"'},
    )
