from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from p2pflow.application.jobs import JobManager
from p2pflow.core.document_identifier import PrefixTable, get_prefix_table
from p2pflow.core.error_classifier import CANCELLED_MESSAGE, classify
from p2pflow.core.errors import BulkJobBusyError
from p2pflow.core.extraction import extract_output_id
from p2pflow.domain import BulkJob, BulkResult, DocumentKind, Stage
from p2pflow.domain.jobs import (
    ITEM_CANCELLED,
    ITEM_FAILED,
    ITEM_PENDING,
    ITEM_SUCCESS,
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_RUNNING,
)
from p2pflow.extractors.bulk_records import BulkPORecord
from p2pflow.infrastructure import AutomationRunner, AutomationSession, CsvDocumentLedger, DocumentLedger
from p2pflow.infrastructure import get_automation_runner

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_YEARS = "2025"
PO_NOT_GENERATED = "PO number not generated: the bulk step finished without reporting a Purchase Order number"


def excluded_years() -> tuple[str, ...]:
    raw = os.getenv("BULK_EXCLUDED_YEARS", DEFAULT_EXCLUDED_YEARS)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass
class BulkSubmission:
    job_id: str
    total_items: int


class BulkWorker:
    """Runs uploaded purchase-order records one by one inside a single session."""

    def __init__(
        self,
        runner: AutomationRunner | None = None,
        ledger: DocumentLedger | None = None,
        jobs: JobManager | None = None,
        prefix_table: PrefixTable | None = None,
    ) -> None:
        self._runner = runner or get_automation_runner()
        self._ledger = ledger or CsvDocumentLedger()
        self._jobs = jobs or JobManager()
        self._table = prefix_table or get_prefix_table()
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._sessions: dict[str, AutomationSession] = {}

    @property
    def jobs(self) -> JobManager:
        return self._jobs

    def is_busy(self) -> bool:
        return self._jobs.active_job() is not None

    def submit(self, records: list[BulkPORecord], filename: str | None = None) -> BulkSubmission:
        """Register a job and start processing it in the background.

        Must be called from inside a running event loop.
        """

        active = self._jobs.active_job()
        if active is not None:
            raise BulkJobBusyError(f"Bulk job {active.job_id} is still running")
        job = self._jobs.create(records, filename)
        task = asyncio.get_running_loop().create_task(self.run(job, records))
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.job_id, None))
        logger.info("Bulk job %s started with %d record(s) from %s", job.job_id, job.total_items, filename)
        return BulkSubmission(job_id=job.job_id, total_items=job.total_items)

    async def wait(self, job_id: str) -> None:
        task = self._tasks.get(job_id)
        if task is not None:
            await task

    def cancel(self, job_id: str | None = None) -> BulkJob | None:
        job = self._jobs.cancel(job_id)
        if job is not None:
            session = self._sessions.get(job.job_id)
            if session is not None:
                session.cancel()
            logger.info("Bulk job %s cancelled", job.job_id)
        return job

    async def run(self, job: BulkJob, records: list[BulkPORecord]) -> None:
        started = time.perf_counter()
        years = excluded_years()
        session = self._runner.open_session()
        self._sessions[job.job_id] = session
        try:
            for result, record in zip(job.results, records):
                if job.status != JOB_RUNNING:
                    break
                if record.in_excluded_years(years):
                    self._finish(
                        result,
                        ITEM_FAILED,
                        error=f"Skipped - document date {record.document_date} falls in an excluded year",
                    )
                    result.user_message = result.error
                    continue
                await self._process(job, result, record, session)
        finally:
            self._sessions.pop(job.job_id, None)
            await session.close()
            self._complete(job, started)

    async def _process(self, job: BulkJob, result: BulkResult, record: BulkPORecord, session: AutomationSession) -> None:
        output = await session.create_purchase_order(record.to_params())
        po_number = extract_output_id(output.output, DocumentKind.PURCHASE_ORDER, self._table) if output.success else None

        if po_number:
            self._ledger.record_completion(Stage.PURCHASE_ORDER, po_number)
            self._ledger.record_po_details(po_number, record.material, record.quantity, record.price)
            self._finish(result, ITEM_SUCCESS, result_id=po_number)
            logger.info("Bulk job %s item %d created PO %s", job.job_id, result.index, po_number)
            return

        if output.cancelled or job.status == JOB_CANCELLED:
            if result.status == ITEM_PENDING:
                self._finish(result, ITEM_CANCELLED)
            result.user_message = CANCELLED_MESSAGE
            return

        raw = output.diagnostic if not output.success else PO_NOT_GENERATED
        self._finish(result, ITEM_FAILED, error=raw)
        result.user_message = classify(raw).message
        logger.warning("Bulk job %s item %d failed: %s", job.job_id, result.index, raw[:200])

        # a timed-out driver may still be working on the record
        if output.timed_out:
            logger.warning("Bulk job %s: item %d timed out, resetting session", job.job_id, result.index)
            await session.reset()
        elif not await session.recover():
            logger.warning("Bulk job %s: session recovery failed, resetting session", job.job_id)
            await session.reset()

    @staticmethod
    def _finish(result: BulkResult, status: str, *, result_id: str | None = None, error: str | None = None) -> None:
        result.status = status
        result.result_id = result_id
        result.error = error
        result.completed_at = datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _complete(job: BulkJob, started: float) -> None:
        # items left pending only happen when the loop stopped early
        for result in job.results:
            if result.status == ITEM_PENDING:
                result.status = ITEM_CANCELLED
                result.completed_at = datetime.now(timezone.utc).isoformat()
        if job.status == JOB_RUNNING:
            all_failed = job.results and job.failed_count == job.total_items
            job.status = JOB_FAILED if all_failed else JOB_COMPLETED
        job.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Bulk job %s finished as %s: %d succeeded, %d failed, %d cancelled",
            job.job_id,
            job.status,
            job.success_count,
            job.failed_count,
            job.cancelled_count,
        )


_worker: BulkWorker | None = None


def get_bulk_worker() -> BulkWorker:
    global _worker
    if _worker is None:
        _worker = BulkWorker()
    return _worker


def reset_bulk_worker() -> None:
    global _worker
    _worker = None
