from __future__ import annotations


class P2PFlowError(Exception):
    """Base class for command and workflow failures."""


class WorkItemValidationError(P2PFlowError):
    """Raised when a command lacks a usable document reference."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class AutomationFailure(P2PFlowError):
    """An external automation step exited non-zero, timed out or could not start."""

    def __init__(self, message: str, *, stage: str | None = None, output: str = "") -> None:
        super().__init__(message)
        self.stage = stage
        self.output = output


class IdempotencyConflict(P2PFlowError):
    """The requested stage was already executed for this document."""


class SessionFailure(P2PFlowError):
    """The shared automation session was lost and could not be recovered."""


class BulkJobBusyError(P2PFlowError):
    """A bulk job is already running; only one may run at a time."""


class CancellationSignal(P2PFlowError):
    """Raised inside a flow once cancellation was requested."""


class UnsupportedUploadError(P2PFlowError):
    """Raised when an uploaded bulk file cannot be parsed into records."""
