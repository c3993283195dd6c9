"""Application services."""

from .jobs import JobManager
from .orchestrator import (
    OrchestrationResult,
    StepRecord,
    WorkflowOrchestrator,
    get_workflow_orchestrator,
    reset_workflow_orchestrator,
)

__all__ = [
    "JobManager",
    "OrchestrationResult",
    "StepRecord",
    "WorkflowOrchestrator",
    "get_workflow_orchestrator",
    "reset_workflow_orchestrator",
]
