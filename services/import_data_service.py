"""
Import job and row persistence.

Owns the import_data and import_data_rows tables: job creation, the
atomic pending -> processing claim, per-row outcomes, counts and job
completion.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog

from config import get_supabase_client
from exceptions import DatabaseError
from models.base import PaginationParams
from models.import_data import (
    ImportCounts,
    ImportJob,
    ImportRow,
    JobProgress,
    ProcessingStatus,
    RowStatus,
    is_valid_row_transition,
)

logger = structlog.get_logger(__name__)

INSERT_CHUNK_SIZE = 500

# PostgREST returns at most this many rows per request
READ_PAGE_SIZE = 1000


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ImportDataService:
    """Database access for import jobs and their rows."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "import_data"
        self.rows_table = "import_data_rows"

    # ===================
    # JOBS
    # ===================

    def get_job(self, import_data_id: str) -> Optional[ImportJob]:
        result = (
            self.db.table(self.table)
            .select("*")
            .eq("id", import_data_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return ImportJob.from_row(result.data[0])

    def create_job(
        self,
        file_name: str,
        rows: list[dict[str, Any]],
        column_mapping: Optional[dict[str, str]] = None,
    ) -> tuple[ImportJob, int]:
        """
        Create a job and one pending row per spreadsheet row.

        Returns:
            (job, number of rows inserted)
        """
        now = _iso(_now())
        result = self.db.table(self.table).insert({
            "file_name": file_name,
            "column_mapping": column_mapping or {},
            "processing_status": ProcessingStatus.RUNNING.value,
            "counts": ImportCounts(total=len(rows), pending=len(rows)).model_dump(),
            "created_at": now,
            "updated_at": now,
        }).execute()
        if not result.data:
            raise DatabaseError("insert", "import job was not created", {"file_name": file_name})
        job = ImportJob.from_row(result.data[0])

        records = [
            {
                "import_data_id": job.id,
                "row_index": index,
                "data": data,
                "status": RowStatus.PENDING.value,
                "created_at": now,
            }
            for index, data in enumerate(rows)
        ]
        inserted = 0
        for start in range(0, len(records), INSERT_CHUNK_SIZE):
            chunk = records[start:start + INSERT_CHUNK_SIZE]
            chunk_result = self.db.table(self.rows_table).insert(chunk).execute()
            inserted += len(chunk_result.data or chunk)

        logger.info("import_job_created", import_data_id=job.id, file_name=file_name, rows=inserted)
        return job, inserted

    def complete_job(self, import_data_id: str, progress: JobProgress) -> None:
        """Mark a job completed and store its final counts."""
        counts = ImportCounts(
            total=progress.total,
            success=progress.success,
            failure=progress.failure,
            pending=progress.remaining + progress.pending_reconciliation,
        )
        now = _iso(_now())
        self.db.table(self.table).update({
            "processing_status": ProcessingStatus.COMPLETED.value,
            "processed_at": now,
            "counts": counts.model_dump(),
            "updated_at": now,
        }).eq("id", import_data_id).execute()

        logger.info(
            "import_job_completed",
            import_data_id=import_data_id,
            total=counts.total,
            success=counts.success,
            failure=counts.failure,
        )

    # ===================
    # CLAIMING
    # ===================

    def fetch_pending(self, limit: int) -> list[dict[str, Any]]:
        """Up to `limit` pending row stubs, oldest first."""
        result = (
            self.db.table(self.rows_table)
            .select("id, import_data_id, row_index")
            .eq("status", RowStatus.PENDING.value)
            .order("created_at")
            .order("row_index")
            .limit(limit)
            .execute()
        )
        return result.data or []

    def claim_rows(self, row_ids: list[str], claimed_at: datetime) -> int:
        """
        Move rows pending -> processing in one conditional update.

        Rows another worker already claimed do not match the status
        predicate and are left alone.

        Returns:
            Number of rows this call claimed
        """
        if not row_ids:
            return 0
        result = (
            self.db.table(self.rows_table)
            .update({
                "status": RowStatus.PROCESSING.value,
                "processing_started_at": _iso(claimed_at),
            })
            .in_("id", row_ids)
            .eq("status", RowStatus.PENDING.value)
            .execute()
        )
        claimed = len(result.data or [])
        logger.info("import_rows_claimed", requested=len(row_ids), claimed=claimed)
        return claimed

    def fetch_claimed(self, row_ids: list[str], claimed_at: datetime) -> list[ImportRow]:
        """Rows among `row_ids` carrying this pass's claim stamp."""
        if not row_ids:
            return []
        result = (
            self.db.table(self.rows_table)
            .select("*")
            .in_("id", row_ids)
            .eq("status", RowStatus.PROCESSING.value)
            .eq("processing_started_at", _iso(claimed_at))
            .execute()
        )
        rows = [ImportRow.from_row(row) for row in result.data or []]
        return sorted(rows, key=lambda row: (row.import_data_id, row.row_index))

    def reclaim_stale(self, older_than: datetime) -> int:
        """
        Return rows stuck in processing since before `older_than` to pending.

        Rows of completed jobs are left alone.
        """
        stale = (
            self.db.table(self.rows_table)
            .select("id, import_data_id")
            .eq("status", RowStatus.PROCESSING.value)
            .lt("processing_started_at", _iso(older_than))
            .execute()
        )
        if not stale.data:
            return 0

        job_ids = sorted({row["import_data_id"] for row in stale.data})
        completed = (
            self.db.table(self.table)
            .select("id")
            .in_("id", job_ids)
            .eq("processing_status", ProcessingStatus.COMPLETED.value)
            .execute()
        )
        completed_ids = {row["id"] for row in completed.data or []}
        row_ids = [row["id"] for row in stale.data if row["import_data_id"] not in completed_ids]
        if not row_ids:
            return 0

        result = (
            self.db.table(self.rows_table)
            .update({"status": RowStatus.PENDING.value, "processing_started_at": None})
            .in_("id", row_ids)
            .eq("status", RowStatus.PROCESSING.value)
            .lt("processing_started_at", _iso(older_than))
            .execute()
        )
        reclaimed = len(result.data or [])
        if reclaimed:
            logger.warning("stale_import_rows_reclaimed", count=reclaimed)
        return reclaimed

    # ===================
    # ROW OUTCOMES
    # ===================

    def set_row_outcome(
        self,
        row_id: str,
        status: RowStatus,
        message: Optional[str] = None,
        error: Optional[str] = None,
        error_stack: Optional[str] = None,
        line_item_id: Optional[str] = None,
        shipment_id: Optional[str] = None,
    ) -> None:
        """Write a row's terminal (or pending_reconciliation) status."""
        update = {
            "status": status.value,
            "message": message,
            "error": error,
            "error_stack": error_stack,
            "processed_at": _iso(_now()),
        }
        if line_item_id is not None:
            update["line_item_id"] = line_item_id
        if shipment_id is not None:
            update["shipment_id"] = shipment_id

        self.db.table(self.rows_table).update(update).eq("id", row_id).execute()
        logger.debug("import_row_updated", row_id=row_id, status=status.value)

    def set_rows_status(
        self,
        row_ids: Iterable[str],
        status: RowStatus,
        message: Optional[str] = None,
        error: Optional[str] = None,
        only_from: Optional[RowStatus] = None,
    ) -> int:
        """Bulk status change; `only_from` restricts it to rows in that status."""
        if only_from is not None and not is_valid_row_transition(only_from, status):
            raise ValueError(f"Invalid row transition: {only_from.value} -> {status.value}")
        row_ids = list(row_ids)
        if not row_ids:
            return 0
        query = (
            self.db.table(self.rows_table)
            .update({
                "status": status.value,
                "message": message,
                "error": error,
                "processed_at": _iso(_now()),
            })
            .in_("id", row_ids)
        )
        if only_from is not None:
            query = query.eq("status", only_from.value)
        result = query.execute()
        return len(result.data or [])

    # ===================
    # READS
    # ===================

    def get_progress(self, import_data_id: str) -> JobProgress:
        """Count a job's rows by status, one count query per status."""
        counts: dict[RowStatus, int] = {}
        for status in RowStatus:
            result = (
                self.db.table(self.rows_table)
                .select("id", count="exact")
                .eq("import_data_id", import_data_id)
                .eq("status", status.value)
                .limit(1)
                .execute()
            )
            counts[status] = result.count or 0
        return JobProgress(
            total=sum(counts.values()),
            success=counts[RowStatus.SUCCESS],
            failure=counts[RowStatus.FAILURE],
            pending=counts[RowStatus.PENDING],
            processing=counts[RowStatus.PROCESSING],
            pending_reconciliation=counts[RowStatus.PENDING_RECONCILIATION],
        )

    def get_rows(
        self,
        import_data_id: str,
        status: Optional[RowStatus] = None,
        pagination: Optional[PaginationParams] = None,
    ) -> tuple[list[ImportRow], int]:
        """
        Rows of one job in spreadsheet order.

        Returns:
            (rows, total matching)
        """
        query = (
            self.db.table(self.rows_table)
            .select("*", count="exact")
            .eq("import_data_id", import_data_id)
        )
        if status is not None:
            query = query.eq("status", status.value)
        query = query.order("row_index")
        if pagination is not None:
            query = query.range(pagination.offset, pagination.offset + pagination.limit - 1)

        result = query.execute()
        rows = [ImportRow.from_row(row) for row in result.data or []]
        total = result.count if result.count is not None else len(rows)
        return rows, total

    def get_all_rows(self, import_data_id: str, status: Optional[RowStatus] = None) -> list[ImportRow]:
        """Every row of one job in spreadsheet order, read page by page."""
        rows: list[ImportRow] = []
        page = 1
        while True:
            batch, total = self.get_rows(
                import_data_id,
                status=status,
                pagination=PaginationParams(page=page, page_size=READ_PAGE_SIZE),
            )
            rows.extend(batch)
            if not batch or len(rows) >= total:
                return rows
            page += 1

    def get_reconciliation_refs(self, import_data_id: str) -> tuple[set[str], set[str]]:
        """Line item and shipment ids referenced by a job's parked rows."""
        rows = self.get_all_rows(import_data_id, status=RowStatus.PENDING_RECONCILIATION)
        line_item_ids = {row.line_item_id for row in rows if row.line_item_id}
        shipment_ids = {row.shipment_id for row in rows if row.shipment_id}
        return line_item_ids, shipment_ids


# Singleton instance
_import_data_service: Optional[ImportDataService] = None


def get_import_data_service() -> ImportDataService:
    """Get or create ImportDataService instance."""
    global _import_data_service
    if _import_data_service is None:
        _import_data_service = ImportDataService()
    return _import_data_service
