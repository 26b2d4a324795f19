"""
Import batch orchestrator.

One pass:
    1. Return stale processing claims to pending
    2. Claim up to `import_batch_size` pending rows (pending -> processing)
    3. Process claimed rows grouped by job, in row order
    4. When a job has no pending/processing rows left: reconcile, mark it
       completed and announce completion

Only one pass runs per process at a time. A row failure is recorded on
that row and never stops the batch.
"""

import threading
import traceback
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

import structlog

from config import DatabaseSession, settings
from integrations.realtime import (
    IMPORT_COMPLETE_EVENT,
    IMPORT_PROGRESS_EVENT,
    RoomBroadcaster,
    get_broadcaster,
    import_room,
)
from integrations.webhook import WebhookNotifier, get_webhook_notifier
from models.import_data import ImportJob, ImportRow, JobProgress, ProcessRunReport, RowOutcome, RowStatus
from models.notification import Notification
from services.import_data_service import ImportDataService, get_import_data_service
from services.reconciliation_service import ReconciliationService, get_reconciliation_service
from services.row_resolver import RowResolver, get_row_resolver
from services.shipment_matcher import ShipmentMatcher, get_shipment_matcher
from exceptions import RowProcessingError
from utils.column_mapping import get_mapped_text

logger = structlog.get_logger(__name__)

MISSING_JOB_ERROR = "ImportData document not found"


@dataclass
class JobTracker:
    """Ids touched by deferred size-pricing rows of one job during a pass."""
    line_item_ids: set[str] = field(default_factory=set)
    shipment_ids: set[str] = field(default_factory=set)


class ImportProcessor:
    """Claims pending import rows and drives them through the pipeline."""

    def __init__(
        self,
        import_data_service: Optional[ImportDataService] = None,
        resolver: Optional[RowResolver] = None,
        matcher: Optional[ShipmentMatcher] = None,
        reconciler: Optional[ReconciliationService] = None,
        notifier: Optional[WebhookNotifier] = None,
        broadcaster: Optional[RoomBroadcaster] = None,
        batch_size: Optional[int] = None,
        claim_timeout_minutes: Optional[int] = None,
    ):
        self.import_data = import_data_service or get_import_data_service()
        self.resolver = resolver or get_row_resolver()
        self.matcher = matcher or get_shipment_matcher()
        self.reconciler = reconciler or get_reconciliation_service()
        self.notifier = notifier or get_webhook_notifier()
        self.broadcaster = broadcaster or get_broadcaster()
        self.batch_size = batch_size or settings.import_batch_size
        self.claim_timeout = timedelta(minutes=claim_timeout_minutes or settings.import_claim_timeout_minutes)
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    # ===================
    # PASS
    # ===================

    def run_once(self) -> ProcessRunReport:
        """
        Run one claim-and-process pass.

        Returns immediately with skipped=True if a pass is already running.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("import_processing_already_running")
            return ProcessRunReport(skipped=True)

        report = ProcessRunReport()
        try:
            with DatabaseSession("process_import_rows"):
                self._run(report)
        except Exception as e:
            logger.error("import_processing_failed", error=str(e), error_type=type(e).__name__)
            report.errors.append(str(e))
        finally:
            self._lock.release()

        logger.info(
            "import_processing_pass_complete",
            reclaimed=report.reclaimed,
            claimed=report.claimed,
            processed=report.processed,
            jobs_completed=len(report.jobs_completed),
            errors=len(report.errors),
        )
        return report

    def _run(self, report: ProcessRunReport) -> None:
        now = datetime.now(timezone.utc)
        report.reclaimed = self.import_data.reclaim_stale(now - self.claim_timeout)

        candidates = self.import_data.fetch_pending(self.batch_size)
        if not candidates:
            logger.debug("no_pending_import_rows")
            return

        row_ids = [row["id"] for row in candidates]
        claimed_at = datetime.now(timezone.utc)
        report.claimed = self.import_data.claim_rows(row_ids, claimed_at)
        if report.claimed == 0:
            logger.info("import_rows_claimed_elsewhere", candidates=len(row_ids))
            return

        rows = self.import_data.fetch_claimed(row_ids, claimed_at)

        by_job: "OrderedDict[str, list[ImportRow]]" = OrderedDict()
        for row in rows:
            by_job.setdefault(row.import_data_id, []).append(row)

        for import_data_id, job_rows in by_job.items():
            try:
                self._process_job(import_data_id, job_rows, report)
            except Exception as e:
                logger.error(
                    "import_job_processing_failed",
                    import_data_id=import_data_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                report.errors.append(f"{import_data_id}: {e}")

    # ===================
    # JOBS
    # ===================

    def _process_job(self, import_data_id: str, rows: list[ImportRow], report: ProcessRunReport) -> None:
        job = self.import_data.get_job(import_data_id)
        if job is None:
            logger.warning("import_job_missing", import_data_id=import_data_id, rows=len(rows))
            for row in rows:
                outcome = RowOutcome(row_id=row.id, status=RowStatus.FAILURE, error=MISSING_JOB_ERROR)
                self._write_outcome(outcome)
                report.processed += 1
                self._emit(
                    IMPORT_PROGRESS_EVENT,
                    {
                        "importDataId": import_data_id,
                        "fileName": "",
                        "rowId": row.id,
                        "index": row.row_index,
                        "status": outcome.status.value,
                        "error": outcome.error,
                    },
                    room=import_room(import_data_id),
                )
            return

        tracker = JobTracker()
        for row in rows:
            outcome = self._process_row(row, job, tracker)
            report.processed += 1

            progress = self.import_data.get_progress(job.id)
            self._emit_progress(job, row, outcome, progress)

            if progress.drained:
                self._complete_job(job, tracker)
                report.jobs_completed.append(job.id)

    def _complete_job(self, job: ImportJob, tracker: JobTracker) -> None:
        line_item_ids, shipment_ids = self.import_data.get_reconciliation_refs(job.id)
        line_item_ids |= tracker.line_item_ids
        shipment_ids |= tracker.shipment_ids

        try:
            result = self.reconciler.reconcile(job.id, job.column_mapping, line_item_ids, shipment_ids)
            self._dispatch(result.notifications)
        except Exception as e:
            logger.error("reconciliation_failed", import_data_id=job.id, error=str(e))
            parked = self.import_data.get_all_rows(job.id, status=RowStatus.PENDING_RECONCILIATION)
            self.import_data.set_rows_status(
                [row.id for row in parked],
                RowStatus.FAILURE,
                error=f"Reconciliation failed: {e}",
                only_from=RowStatus.PENDING_RECONCILIATION,
            )

        progress = self.import_data.get_progress(job.id)
        self.import_data.complete_job(job.id, progress)

        rows = self.import_data.get_all_rows(job.id)
        self._emit(
            IMPORT_COMPLETE_EVENT,
            {
                "importDataId": job.id,
                "fileName": job.file_name,
                "summary": {
                    "total": progress.total,
                    "success": progress.success,
                    "error": progress.failure,
                },
                "results": [self._row_summary(row, job) for row in rows],
            },
            room=import_room(job.id),
        )

    # ===================
    # ROWS
    # ===================

    def _process_row(self, row: ImportRow, job: ImportJob, tracker: JobTracker) -> RowOutcome:
        log = logger.bind(import_data_id=job.id, row_id=row.id, row_index=row.row_index)
        try:
            resolution = self.resolver.resolve(row.data, job.column_mapping)
            self._dispatch(resolution.notifications)

            result = self.matcher.match(resolution)
            self._dispatch(result.notifications)

            if result.deferred:
                tracker.line_item_ids.add(result.line_item_id)
                tracker.shipment_ids.add(result.shipment_id)

            outcome = RowOutcome(row_id=row.id, status=result.status, message=result.message, error=result.error)
            self._write_outcome(
                outcome,
                line_item_id=result.line_item_id if result.deferred else None,
                shipment_id=result.shipment_id if result.deferred else None,
            )
            log.info("import_row_processed", status=result.status.value)
            return outcome

        except RowProcessingError as e:
            log.info("import_row_rejected", code=e.code, error=e.message)
            outcome = RowOutcome(row_id=row.id, status=RowStatus.FAILURE, error=e.message)
            self._write_outcome(outcome)
            return outcome

        except Exception as e:
            log.error("import_row_crashed", error=str(e), error_type=type(e).__name__)
            outcome = RowOutcome(row_id=row.id, status=RowStatus.FAILURE, error=str(e) or type(e).__name__)
            self._write_outcome(outcome, error_stack=traceback.format_exc())
            return outcome

    def _write_outcome(
        self,
        outcome: RowOutcome,
        error_stack: Optional[str] = None,
        line_item_id: Optional[str] = None,
        shipment_id: Optional[str] = None,
    ) -> None:
        try:
            self.import_data.set_row_outcome(
                outcome.row_id,
                outcome.status,
                message=outcome.message,
                error=outcome.error,
                error_stack=error_stack,
                line_item_id=line_item_id,
                shipment_id=shipment_id,
            )
        except Exception as e:
            # Row stays in processing; the stale-claim sweep returns it to pending
            logger.error("import_row_write_failed", row_id=outcome.row_id, error=str(e))

    # ===================
    # SIDE CHANNELS
    # ===================

    def _dispatch(self, notifications: Iterable[Notification]) -> None:
        try:
            self.notifier.dispatch(notifications)
        except Exception as e:
            logger.warning("webhook_dispatch_failed", error=str(e))

    def _emit(self, event: str, payload: dict[str, Any], room: Optional[str] = None) -> None:
        try:
            self.broadcaster.emit(event, payload, room=room)
        except Exception as e:
            logger.warning("import_event_emit_failed", event_name=event, error=str(e))

    def _emit_progress(self, job: ImportJob, row: ImportRow, outcome: RowOutcome, progress: JobProgress) -> None:
        payload: dict[str, Any] = {
            "importDataId": job.id,
            "fileName": job.file_name,
            "rowId": row.id,
            "index": row.row_index,
            "status": outcome.status.value,
            "processed": progress.processed,
            "total": progress.total,
            "success": progress.success,
            "errors": progress.failure,
            "remaining": progress.remaining,
        }
        if outcome.message:
            payload["message"] = outcome.message
        if outcome.error:
            payload["error"] = outcome.error
        self._emit(IMPORT_PROGRESS_EVENT, payload, room=import_room(job.id))

    @staticmethod
    def _row_summary(row: ImportRow, job: ImportJob) -> dict[str, Any]:
        return {
            "index": row.row_index,
            "status": row.status.value,
            "message": row.message or row.error,
            "poName": get_mapped_text(row.data, "POName", job.column_mapping),
            "sku": get_mapped_text(row.data, "SKU", job.column_mapping),
            "shippingNumber": get_mapped_text(row.data, "shippingNumber", job.column_mapping),
        }


# Singleton instance
_import_processor: Optional[ImportProcessor] = None


def get_import_processor() -> ImportProcessor:
    """Get or create ImportProcessor instance."""
    global _import_processor
    if _import_processor is None:
        _import_processor = ImportProcessor()
    return _import_processor
