"""
Import data API routes.

Upload a spreadsheet as an import job, inspect job progress and rows,
and trigger a processing pass on demand.
"""

import json
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
import structlog

from models.base import PaginationParams
from models.import_data import (
    ImportJobResponse,
    ImportRowListResponse,
    ImportUploadResponse,
    ProcessRunReport,
    RowStatus,
)
from parsers import parse_import_file
from services.import_data_service import get_import_data_service
from services.import_processor import get_import_processor
from exceptions import AppError, ImportDataNotFoundError, ValidationError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def _parse_column_mapping(raw: Optional[str]) -> dict[str, str]:
    if not raw:
        return {}
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(
            message="column_mapping must be a JSON object",
            code="INVALID_COLUMN_MAPPING",
            details={"error": str(e)}
        )
    if not isinstance(mapping, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in mapping.items()
    ):
        raise ValidationError(
            message="column_mapping must map column names to field names",
            code="INVALID_COLUMN_MAPPING"
        )
    return mapping


# ===================
# ROUTES
# ===================

@router.post("/upload", response_model=ImportUploadResponse, status_code=201)
async def upload_import_file(
    file: UploadFile = File(...),
    column_mapping: Optional[str] = Form(None, description="JSON object: column -> logical field"),
    sheet_name: Optional[str] = Form(None, description="Worksheet name for Excel files"),
):
    """
    Upload a CSV/XLSX file as a new import job.

    Every data row becomes a pending import row, picked up by the next
    processing pass.

    Raises:
        422: Unreadable file, no rows, or invalid column mapping
    """
    logger.info(
        "import_upload_started",
        filename=file.filename,
        content_type=file.content_type
    )

    try:
        mapping = _parse_column_mapping(column_mapping)
        content = await file.read()
        parsed = parse_import_file(BytesIO(content), file.filename or "upload.csv", sheet_name)

        service = get_import_data_service()
        job, created = service.create_job(file.filename or "upload", parsed.rows, mapping)

        logger.info(
            "import_upload_completed",
            import_data_id=job.id,
            rows_created=created
        )

        return ImportUploadResponse(
            import_data_id=job.id,
            file_name=job.file_name or "",
            rows_created=created,
            columns=parsed.columns,
        )

    except Exception as e:
        return handle_error(e)


@router.post("/process", response_model=ProcessRunReport)
def process_import_rows():
    """
    Run one processing pass now.

    Returns skipped=true when a pass is already in progress.
    """
    try:
        return get_import_processor().run_once()
    except Exception as e:
        return handle_error(e)


@router.get("/{import_data_id}", response_model=ImportJobResponse)
async def get_import_job(import_data_id: str):
    """
    Get an import job with live row counts.

    Raises:
        404: Import job not found
    """
    try:
        service = get_import_data_service()
        job = service.get_job(import_data_id)
        if job is None:
            raise ImportDataNotFoundError(import_data_id)

        return ImportJobResponse(
            **job.model_dump(),
            progress=service.get_progress(import_data_id),
        )

    except Exception as e:
        return handle_error(e)


@router.get("/{import_data_id}/rows", response_model=ImportRowListResponse)
async def list_import_rows(
    import_data_id: str,
    status: Optional[RowStatus] = Query(None, description="Filter by row status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page"),
):
    """
    List rows of an import job in spreadsheet order.

    Raises:
        404: Import job not found
    """
    try:
        service = get_import_data_service()
        if service.get_job(import_data_id) is None:
            raise ImportDataNotFoundError(import_data_id)

        rows, total = service.get_rows(
            import_data_id,
            status=status,
            pagination=PaginationParams(page=page, page_size=page_size),
        )
        total_pages = (total + page_size - 1) // page_size

        return ImportRowListResponse(
            data=rows,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages
        )

    except Exception as e:
        return handle_error(e)
