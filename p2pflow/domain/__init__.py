"""Domain layer definitions."""

from .jobs import BulkJob, BulkResult
from .procurement import (
    DocumentKind,
    DocumentReference,
    Intent,
    LedgerEntry,
    PODetails,
    Stage,
    StageSummary,
    ValidationIssue,
    WorkItem,
)

__all__ = [
    "BulkJob",
    "BulkResult",
    "DocumentKind",
    "DocumentReference",
    "Intent",
    "LedgerEntry",
    "PODetails",
    "Stage",
    "StageSummary",
    "ValidationIssue",
    "WorkItem",
]
