"""
Import job and import row schemas.

An import job (`import_data`) is one uploaded spreadsheet; each of its
rows (`import_data_rows`) moves through the RowStatus state machine:

    pending -> processing -> success | failure | pending_reconciliation
    pending_reconciliation -> success | failure   (reconciliation pass only)
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from models.base import BaseSchema, TimestampMixin


class RowStatus(str, Enum):
    """Import row status values."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING_RECONCILIATION = "pending_reconciliation"


# Allowed transitions (processing -> pending is the stale-claim reclaim)
ROW_TRANSITIONS = {
    RowStatus.PENDING: {RowStatus.PROCESSING},
    RowStatus.PROCESSING: {
        RowStatus.SUCCESS,
        RowStatus.FAILURE,
        RowStatus.PENDING_RECONCILIATION,
        RowStatus.PENDING,
    },
    RowStatus.PENDING_RECONCILIATION: {RowStatus.SUCCESS, RowStatus.FAILURE},
    RowStatus.SUCCESS: set(),
    RowStatus.FAILURE: set(),
}


def is_valid_row_transition(current: RowStatus, new: RowStatus) -> bool:
    """Check whether a row may move from `current` to `new`."""
    return new in ROW_TRANSITIONS[current]


class ProcessingStatus(str, Enum):
    """Import job processing status."""
    RUNNING = "running"
    COMPLETED = "completed"


class ImportCounts(BaseModel):
    """Summary counts stored on a completed job."""
    total: int = 0
    success: int = 0
    failure: int = 0
    pending: int = 0


class ImportJob(BaseSchema, TimestampMixin):
    """Import job as stored in import_data."""
    id: str
    file_name: Optional[str] = None
    column_mapping: dict[str, str] = Field(
        default_factory=dict,
        description="Spreadsheet column -> logical field"
    )
    processing_status: ProcessingStatus = ProcessingStatus.RUNNING
    processed_at: Optional[datetime] = None
    counts: ImportCounts = Field(default_factory=ImportCounts)

    @classmethod
    def from_row(cls, row: dict) -> "ImportJob":
        return cls(
            id=str(row["id"]),
            file_name=row.get("file_name"),
            column_mapping=row.get("column_mapping") or {},
            processing_status=row.get("processing_status") or ProcessingStatus.RUNNING,
            processed_at=row.get("processed_at"),
            counts=row.get("counts") or ImportCounts(),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class ImportRow(BaseModel):
    """
    Import row as stored in import_data_rows.

    `data` is the raw spreadsheet row; only the column mapper reads it.
    """
    id: str
    import_data_id: str
    row_index: int = 0
    data: dict[str, Any] = Field(default_factory=dict)
    status: RowStatus = RowStatus.PENDING
    message: Optional[str] = None
    error: Optional[str] = None
    error_stack: Optional[str] = None
    processed_at: Optional[datetime] = None
    processing_started_at: Optional[datetime] = None
    line_item_id: Optional[str] = None
    shipment_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "ImportRow":
        return cls(
            id=str(row["id"]),
            import_data_id=str(row["import_data_id"]),
            row_index=row.get("row_index") or 0,
            data=row.get("data") or {},
            status=row.get("status") or RowStatus.PENDING,
            message=row.get("message"),
            error=row.get("error"),
            error_stack=row.get("error_stack"),
            processed_at=row.get("processed_at"),
            processing_started_at=row.get("processing_started_at"),
            line_item_id=row.get("line_item_id"),
            shipment_id=row.get("shipment_id"),
        )


# ===================
# PROCESSING RESULTS
# ===================

class RowOutcome(BaseModel):
    """Final status and message for one processed row."""
    row_id: str
    status: RowStatus
    message: Optional[str] = None
    error: Optional[str] = None


class JobProgress(BaseModel):
    """Per-job incremental counts."""
    total: int = 0
    success: int = 0
    failure: int = 0
    pending: int = 0
    processing: int = 0
    pending_reconciliation: int = 0

    @property
    def processed(self) -> int:
        return self.success + self.failure + self.pending_reconciliation

    @property
    def remaining(self) -> int:
        return self.pending + self.processing

    @property
    def drained(self) -> bool:
        return self.pending == 0 and self.processing == 0


class ProcessRunReport(BaseModel):
    """Summary of one orchestrator pass."""
    skipped: bool = False
    reclaimed: int = 0
    claimed: int = 0
    processed: int = 0
    jobs_completed: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# ===================
# API RESPONSES
# ===================

class ImportUploadResponse(BaseModel):
    """Response after an import file is uploaded."""
    import_data_id: str
    file_name: str
    rows_created: int
    columns: list[str]


class ImportJobResponse(ImportJob):
    """Job with live row counts."""
    progress: Optional[JobProgress] = None


class ImportRowListResponse(BaseModel):
    """Paginated list of rows for one job."""
    data: list[ImportRow]
    total: int
    page: int
    page_size: int
    total_pages: int
