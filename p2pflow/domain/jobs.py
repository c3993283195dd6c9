"""Domain entities for bulk purchase-order jobs."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_CANCELLED = "cancelled"

ITEM_PENDING = "pending"
ITEM_SUCCESS = "success"
ITEM_FAILED = "failed"
ITEM_CANCELLED = "cancelled"

TERMINAL_ITEM_STATUSES = frozenset({ITEM_SUCCESS, ITEM_FAILED, ITEM_CANCELLED})


@dataclass(slots=True)
class BulkResult:
    """Outcome of one uploaded record."""

    index: int
    material: str
    quantity: str
    price: str
    status: str = ITEM_PENDING
    result_id: str | None = None
    error: str | None = None
    user_message: str | None = None
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ITEM_STATUSES


@dataclass(slots=True)
class BulkJob:
    """A bulk purchase-order run tracked as one unit."""

    job_id: str
    filename: str | None
    started_at: str
    status: str = JOB_RUNNING
    results: list[BulkResult] = field(default_factory=list)
    duration_ms: int | None = None

    @property
    def total_items(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.results if item.status == ITEM_SUCCESS)

    @property
    def failed_count(self) -> int:
        return sum(1 for item in self.results if item.status == ITEM_FAILED)

    @property
    def cancelled_count(self) -> int:
        return sum(1 for item in self.results if item.status == ITEM_CANCELLED)

    @property
    def pending_count(self) -> int:
        return sum(1 for item in self.results if item.status == ITEM_PENDING)

    @property
    def completed_items(self) -> int:
        return self.total_items - self.pending_count

    @property
    def progress(self) -> float:
        if not self.results:
            return 1.0
        return round(self.completed_items / self.total_items, 4)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.job_id,
            "filename": self.filename,
            "status": self.status,
            "startedAt": self.started_at,
            "durationMs": self.duration_ms,
            "totalItems": self.total_items,
            "completedItems": self.completed_items,
            "pendingItems": self.pending_count,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "cancelledCount": self.cancelled_count,
            "progress": self.progress,
            "results": [
                {
                    "index": item["index"],
                    "material": item["material"],
                    "quantity": item["quantity"],
                    "price": item["price"],
                    "status": item["status"],
                    "poNumber": item["result_id"],
                    "error": item["error"],
                    "userMessage": item["user_message"],
                    "completedAt": item["completed_at"],
                }
                for item in (asdict(result) for result in self.results)
            ],
        }
