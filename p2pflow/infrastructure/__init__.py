"""Infrastructure layer exports."""

from .automation import (
    AutomationRunner,
    AutomationSession,
    RunControl,
    StepOutput,
    SubprocessAutomationRunner,
    SubprocessAutomationSession,
    configure_automation_runner,
    get_automation_runner,
)
from .ledger import CsvDocumentLedger, DocumentLedger, get_document_ledger

__all__ = [
    "AutomationRunner",
    "AutomationSession",
    "CsvDocumentLedger",
    "DocumentLedger",
    "RunControl",
    "StepOutput",
    "SubprocessAutomationRunner",
    "SubprocessAutomationSession",
    "configure_automation_runner",
    "get_automation_runner",
    "get_document_ledger",
]
