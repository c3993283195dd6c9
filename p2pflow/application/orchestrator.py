"""Run resolved work items against the external automation steps."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from p2pflow.core.document_identifier import PrefixTable, get_prefix_table
from p2pflow.core.error_classifier import (
    CANCELLED_MESSAGE,
    SUPPLIER_INVOICE_EXISTS_MESSAGE,
    classify,
)
from p2pflow.core.errors import (
    AutomationFailure,
    CancellationSignal,
    IdempotencyConflict,
    WorkItemValidationError,
)
from p2pflow.core.extraction import extract_output_id
from p2pflow.domain import DocumentKind, Intent, PODetails, Stage, WorkItem
from p2pflow.domain.procurement import INTENT_STAGES, STAGE_LABELS
from p2pflow.infrastructure import (
    AutomationRunner,
    CsvDocumentLedger,
    DocumentLedger,
    RunControl,
    get_automation_runner,
)

logger = logging.getLogger(__name__)

STEP_COMPLETED = "completed"
STEP_RUNNING = "running"
STEP_FAILED = "failed"
STEP_SKIPPED = "skipped"

PROCURE_TO_PAY_STAGES: tuple[Stage, ...] = (
    Stage.PURCHASE_ORDER,
    Stage.GOODS_RECEIPT,
    Stage.SUPPLIER_INVOICE,
    Stage.PAYMENT,
)

# document kind each stage produces
STAGE_OUTPUT_KINDS: dict[Stage, DocumentKind] = {
    Stage.PURCHASE_ORDER: DocumentKind.PURCHASE_ORDER,
    Stage.GOODS_RECEIPT: DocumentKind.MATERIAL_DOCUMENT,
    Stage.SUPPLIER_INVOICE: DocumentKind.SUPPLIER_INVOICE,
}

DEFAULT_PO_PARAMETERS: dict[str, str] = {
    "material": "P-A2026-3",
    "quantity": "1",
    "price": "1000",
}
DEFAULT_INVOICE_AMOUNT = Decimal("1000.00")
MAX_ERROR_CHARS = 2000

PO_NOT_GENERATED = "PO number not generated: the automation finished without reporting a Purchase Order number"
INVOICE_NOT_GENERATED = (
    "Invoice number not generated. The automation finished but no Supplier Invoice number was found in its output."
)
PAYMENT_EXISTS_MESSAGE = "Payment has already been processed for this Supplier Invoice."


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def invoice_amount(details: PODetails | None) -> Decimal:
    """``price * quantity`` of the originating PO, rounded to cents."""

    if details is None:
        return DEFAULT_INVOICE_AMOUNT
    try:
        amount = Decimal(str(details.price).replace(",", "")) * Decimal(str(details.quantity).replace(",", ""))
    except InvalidOperation:
        return DEFAULT_INVOICE_AMOUNT
    if not amount.is_finite() or amount <= 0:
        return DEFAULT_INVOICE_AMOUNT
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(slots=True)
class StepRecord:
    id: str
    description: str
    status: str
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "description": self.description, "status": self.status, "timestamp": self.timestamp}


@dataclass(slots=True)
class OrchestrationResult:
    success: bool
    message: str
    intent: Intent
    steps: list[StepRecord] = field(default_factory=list)
    extracted_ids: dict[str, str] = field(default_factory=dict)
    raw_output: str = ""
    errors: list[str] = field(default_factory=list)
    user_message: str | None = None
    completed_stage: Stage | None = None
    error_code: str | None = None
    cancelled: bool = False
    duration_ms: int = 0
    run_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "intent": self.intent.value,
            "steps": [step.to_dict() for step in self.steps],
            "extractedIds": dict(self.extracted_ids),
            "userMessage": self.user_message,
            "completedStage": self.completed_stage.value if self.completed_stage else None,
            "errorCode": self.error_code,
            "cancelled": self.cancelled,
            "duration": self.duration_ms,
            "output": self.raw_output,
            "runId": self.run_id,
        }
        if self.errors:
            payload["errors"] = list(self.errors)
        return payload


@dataclass(slots=True)
class _FlowState:
    """Identifiers and inputs carried from one stage to the next."""

    material: str
    quantity: str
    price: str
    supplier: str | None = None
    po_number: str | None = None
    material_document: str | None = None
    invoice_number: str | None = None
    outputs: list[str] = field(default_factory=list)


class WorkflowOrchestrator:
    """Sequences automation steps and records completed documents."""

    def __init__(
        self,
        runner: AutomationRunner | None = None,
        ledger: DocumentLedger | None = None,
        prefix_table: PrefixTable | None = None,
    ) -> None:
        self._runner = runner or get_automation_runner()
        self._ledger = ledger or CsvDocumentLedger()
        self._table = prefix_table or get_prefix_table()
        self._runs: dict[str, RunControl] = {}

    @property
    def is_running(self) -> bool:
        return bool(self._runs)

    def cancel(self, run_id: str | None = None) -> bool:
        """Stop one run, by default the most recently started one still going.

        Returns whether a running command was found.  Other runs keep going.
        """

        if run_id is not None:
            control = self._runs.get(run_id)
        else:
            control = next((run for run in reversed(self._runs.values()) if not run.cancelled), None)
        if control is None or control.cancelled:
            return False
        control.cancel()
        logger.info("Cancellation requested for run %s", control.run_id)
        return True

    async def execute(self, item: WorkItem, run_id: str | None = None) -> OrchestrationResult:
        """Run every stage the item needs; ``run_id`` names the run for :meth:`cancel`."""

        started = time.perf_counter()
        run_id = run_id or uuid.uuid4().hex
        try:
            self._validate(item)
        except WorkItemValidationError as exc:
            result = self._rejected(item, exc)
            result.run_id = run_id
            result.duration_ms = int((time.perf_counter() - started) * 1000)
            return result

        stages = PROCURE_TO_PAY_STAGES if item.intent is Intent.PROCURE_TO_PAY else (INTENT_STAGES[item.intent],)
        state = _FlowState(
            material=item.parameters.get("material") or DEFAULT_PO_PARAMETERS["material"],
            quantity=item.parameters.get("quantity") or DEFAULT_PO_PARAMETERS["quantity"],
            price=item.parameters.get("price") or DEFAULT_PO_PARAMETERS["price"],
            supplier=item.parameters.get("supplier"),
            po_number=item.parameters.get("po_number"),
            invoice_number=item.parameters.get("invoice_number"),
        )
        result = OrchestrationResult(success=False, message="", intent=item.intent, run_id=run_id)
        result.steps.append(StepRecord(id="parse", description=f'Parsing command: "{item.command}"', status=STEP_COMPLETED))

        control = RunControl(run_id)
        self._runs[run_id] = control
        try:
            for position, stage in enumerate(stages):
                step = StepRecord(id=stage.value, description=self._describe(stage, state), status=STEP_RUNNING)
                result.steps.append(step)
                try:
                    document_id = await self._run_stage(stage, state, control)
                except (AutomationFailure, IdempotencyConflict, CancellationSignal) as exc:
                    step.status = STEP_FAILED
                    self._skip(result, stages[position + 1 :])
                    self._fail(result, stage, exc)
                    break
                step.status = STEP_COMPLETED
                step.description = self._completed_description(stage, document_id)
                result.completed_stage = stage
                self._collect_ids(result, state)
            else:
                result.success = True
                result.message = self._success_message(item.intent, state)
        finally:
            if self._runs.get(run_id) is control:
                del self._runs[run_id]

        result.raw_output = "\n".join(state.outputs)
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Executed %s in %dms (success=%s, ids=%s)",
            item.intent.value,
            result.duration_ms,
            result.success,
            result.extracted_ids,
        )
        return result

    # ------------------------------------------------------------------
    # stage execution
    # ------------------------------------------------------------------
    async def _run_stage(self, stage: Stage, state: _FlowState, control: RunControl) -> str | None:
        if control.cancelled:
            raise CancellationSignal(CANCELLED_MESSAGE)
        self._check_not_repeated(stage, state)

        output = await self._runner.run_step(stage, self._step_params(stage, state), control)
        if output.output:
            state.outputs.append(output.output)
        if output.cancelled or control.cancelled:
            raise CancellationSignal(CANCELLED_MESSAGE)
        if not output.success:
            raise AutomationFailure(output.diagnostic, stage=stage.value, output=output.output)

        kind = STAGE_OUTPUT_KINDS.get(stage)
        document_id = extract_output_id(output.output, kind, self._table) if kind else None
        if stage is Stage.PURCHASE_ORDER and not document_id:
            raise AutomationFailure(PO_NOT_GENERATED, stage=stage.value, output=output.output)
        if stage is Stage.SUPPLIER_INVOICE and not document_id:
            raise AutomationFailure(INVOICE_NOT_GENERATED, stage=stage.value, output=output.output)

        self._record(stage, document_id, state)
        return document_id

    def _check_not_repeated(self, stage: Stage, state: _FlowState) -> None:
        if stage is Stage.SUPPLIER_INVOICE and state.po_number:
            if self._ledger.find_by_parent(Stage.SUPPLIER_INVOICE, state.po_number) is not None:
                raise IdempotencyConflict(SUPPLIER_INVOICE_EXISTS_MESSAGE)
        if stage is Stage.PAYMENT and state.invoice_number:
            if self._ledger.exists(Stage.PAYMENT, state.invoice_number):
                raise IdempotencyConflict(PAYMENT_EXISTS_MESSAGE)

    def _step_params(self, stage: Stage, state: _FlowState) -> dict[str, str]:
        if stage is Stage.PURCHASE_ORDER:
            params = {"MATERIAL": state.material, "QUANTITY": state.quantity, "PRICE": state.price}
            if state.supplier:
                params["SUPPLIER"] = state.supplier
            return params
        if stage is Stage.GOODS_RECEIPT:
            return {"PO_NUMBER": state.po_number or ""}
        if stage is Stage.SUPPLIER_INVOICE:
            po_number = state.po_number or ""
            amount = invoice_amount(self._ledger.po_details(po_number))
            return {"PO_NUMBER": po_number, "AMOUNT": str(amount)}
        return {"INVOICE_NUMBER": state.invoice_number or ""}

    def _record(self, stage: Stage, document_id: str | None, state: _FlowState) -> None:
        if stage is Stage.PURCHASE_ORDER:
            state.po_number = document_id
            self._ledger.record_completion(Stage.PURCHASE_ORDER, document_id)
            self._ledger.record_po_details(document_id, state.material, state.quantity, state.price)
        elif stage is Stage.GOODS_RECEIPT:
            state.material_document = document_id
            self._ledger.record_completion(Stage.GOODS_RECEIPT, document_id or state.po_number, state.po_number)
        elif stage is Stage.SUPPLIER_INVOICE:
            state.invoice_number = document_id
            self._ledger.record_completion(Stage.SUPPLIER_INVOICE, document_id, state.po_number)
        else:
            parent = state.po_number
            if parent is None:
                invoice = self._ledger.entries(Stage.SUPPLIER_INVOICE)
                parent = next((e.parent_id for e in invoice if e.document_id == state.invoice_number), None)
            self._ledger.record_completion(Stage.PAYMENT, state.invoice_number, parent)

    # ------------------------------------------------------------------
    # result shaping
    # ------------------------------------------------------------------
    @staticmethod
    def _validate(item: WorkItem) -> None:
        if item.errors:
            issue = item.errors[0]
            raise WorkItemValidationError(issue.code, issue.message)
        if item.intent is Intent.UNKNOWN:
            raise WorkItemValidationError("unknown_command", item.description)

    def _rejected(self, item: WorkItem, exc: WorkItemValidationError) -> OrchestrationResult:
        messages = [issue.message for issue in item.errors] or [str(exc)]
        return OrchestrationResult(
            success=False,
            message=item.description,
            intent=item.intent,
            steps=[StepRecord(id="error", description=item.description, status=STEP_FAILED)],
            errors=messages,
            user_message=messages[0],
            error_code=exc.code,
        )

    @staticmethod
    def _skip(result: OrchestrationResult, stages: tuple[Stage, ...]) -> None:
        for stage in stages:
            result.steps.append(
                StepRecord(id=stage.value, description=f"{STAGE_LABELS[stage]} skipped", status=STEP_SKIPPED)
            )

    @staticmethod
    def _fail(result: OrchestrationResult, stage: Stage, exc: Exception) -> None:
        label = STAGE_LABELS[stage]
        raw = str(exc)
        if isinstance(exc, CancellationSignal):
            result.cancelled = True
            result.user_message = CANCELLED_MESSAGE
            result.message = f"{label} cancelled"
        elif isinstance(exc, IdempotencyConflict):
            result.user_message = raw
            result.message = f"{label} already completed"
        else:
            result.user_message = classify(raw).message
            result.message = f"{label} failed"
        if result.completed_stage is not None:
            result.message += f" (completed up to {STAGE_LABELS[result.completed_stage]})"
        result.errors.append(raw[:MAX_ERROR_CHARS])
        logger.warning("%s step failed: %s", stage.value, raw[:200])

    @staticmethod
    def _collect_ids(result: OrchestrationResult, state: _FlowState) -> None:
        if state.po_number:
            result.extracted_ids["poNumber"] = state.po_number
        if state.material_document:
            result.extracted_ids["materialDocument"] = state.material_document
        if state.invoice_number:
            result.extracted_ids["invoiceNumber"] = state.invoice_number

    @staticmethod
    def _describe(stage: Stage, state: _FlowState) -> str:
        if stage is Stage.PURCHASE_ORDER:
            return f"Creating Purchase Order (material {state.material}, quantity {state.quantity}, price {state.price})"
        if stage is Stage.GOODS_RECEIPT:
            return f"Posting Goods Receipt for PO {state.po_number}"
        if stage is Stage.SUPPLIER_INVOICE:
            return f"Creating Supplier Invoice for PO {state.po_number}"
        return f"Processing Payment for Invoice {state.invoice_number}"

    @staticmethod
    def _completed_description(stage: Stage, document_id: str | None) -> str:
        label = STAGE_LABELS[stage]
        return f"{label} completed: {document_id}" if document_id else f"{label} completed"

    @staticmethod
    def _success_message(intent: Intent, state: _FlowState) -> str:
        if intent is Intent.PROCURE_TO_PAY:
            return f"Procure-to-Pay completed successfully! PO: {state.po_number} Invoice: {state.invoice_number}"
        if intent is Intent.CREATE_PURCHASE_ORDER:
            return f"Purchase Order created successfully! PO: {state.po_number}"
        if intent is Intent.CREATE_GOODS_RECEIPT:
            suffix = f" Material Document: {state.material_document}" if state.material_document else ""
            return f"Goods Receipt posted for PO {state.po_number}!{suffix}"
        if intent is Intent.CREATE_SUPPLIER_INVOICE:
            return f"Supplier Invoice created successfully! Invoice: {state.invoice_number} PO: {state.po_number}"
        return f"Payment processed for Invoice {state.invoice_number}!"


_orchestrator: WorkflowOrchestrator | None = None


def get_workflow_orchestrator() -> WorkflowOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = WorkflowOrchestrator()
    return _orchestrator


def reset_workflow_orchestrator() -> None:
    global _orchestrator
    _orchestrator = None
