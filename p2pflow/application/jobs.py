"""In-memory registry of bulk purchase-order jobs."""
from __future__ import annotations

import itertools
import threading
from datetime import datetime, timezone
from typing import Any, Iterable

from p2pflow.domain import BulkJob, BulkResult
from p2pflow.domain.jobs import ITEM_CANCELLED, ITEM_PENDING, JOB_CANCELLED, JOB_RUNNING
from p2pflow.extractors.bulk_records import BulkPORecord


class JobManager:
    """Owns every :class:`BulkJob` for the lifetime of the process."""

    def __init__(self) -> None:
        self._jobs: dict[str, BulkJob] = {}
        self._counter = itertools.count(1)
        self._lock = threading.RLock()

    def next_job_id(self) -> str:
        return f"bulk-{next(self._counter):05d}"

    def create(self, records: Iterable[BulkPORecord], filename: str | None = None) -> BulkJob:
        with self._lock:
            job = BulkJob(
                job_id=self.next_job_id(),
                filename=filename,
                started_at=datetime.now(timezone.utc).isoformat(),
            )
            job.results = [
                BulkResult(index=index, material=record.material, quantity=record.quantity, price=record.price)
                for index, record in enumerate(records, start=1)
            ]
            self._jobs[job.job_id] = job
            return job

    def get(self, job_id: str) -> BulkJob | None:
        return self._jobs.get(job_id)

    def snapshot(self, job_id: str) -> dict[str, Any] | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.to_dict() if job else None

    def active_job(self) -> BulkJob | None:
        return next((job for job in self._jobs.values() if job.status == JOB_RUNNING), None)

    def cancel(self, job_id: str | None = None) -> BulkJob | None:
        """Mark pending items cancelled; finished items are kept as they are."""

        with self._lock:
            job = self._jobs.get(job_id) if job_id else self.active_job()
            if job is None or job.status != JOB_RUNNING:
                return job
            for result in job.results:
                if result.status == ITEM_PENDING:
                    result.status = ITEM_CANCELLED
                    result.completed_at = datetime.now(timezone.utc).isoformat()
            job.status = JOB_CANCELLED
            return job

    def list_jobs(self) -> list[dict[str, Any]]:
        with self._lock:
            return [job.to_dict() for job in self._jobs.values()]

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()
            self._counter = itertools.count(1)
