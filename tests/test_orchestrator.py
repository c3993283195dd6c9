import asyncio
import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from fakes import BlockingRunner, FakeRunner, failed, ok

from p2pflow.application.orchestrator import WorkflowOrchestrator, invoice_amount
from p2pflow.core.document_identifier import DEFAULT_TABLE
from p2pflow.core.error_classifier import (
    CANCELLED_MESSAGE,
    GOODS_RECEIPT_EXISTS_MESSAGE,
    PO_NOT_GENERATED_MESSAGE,
    SUPPLIER_INVOICE_EXISTS_MESSAGE,
)
from p2pflow.core.interpreter import CommandInterpreter
from p2pflow.domain import PODetails, Stage
from p2pflow.infrastructure import CsvDocumentLedger

P2P_OUTPUTS = {
    Stage.PURCHASE_ORDER: ok(Stage.PURCHASE_ORDER, "Saving...\nPO Number: 4500001234\n1 passed"),
    Stage.GOODS_RECEIPT: ok(Stage.GOODS_RECEIPT, "Material Document: 5000005678"),
    Stage.SUPPLIER_INVOICE: ok(Stage.SUPPLIER_INVOICE, "Invoice Created: 5105600042"),
    Stage.PAYMENT: ok(Stage.PAYMENT, "Payment run scheduled"),
}


@pytest.fixture()
def ledger(tmp_path):
    return CsvDocumentLedger(tmp_path)


def _parse(command):
    return CommandInterpreter(DEFAULT_TABLE).parse(command)


def _run(runner, ledger, command):
    orchestrator = WorkflowOrchestrator(runner=runner, ledger=ledger, prefix_table=DEFAULT_TABLE)
    return asyncio.run(orchestrator.execute(_parse(command)))


def test_procure_to_pay_propagates_ids_and_amount(ledger):
    runner = FakeRunner(P2P_OUTPUTS)
    result = _run(runner, ledger, "Run P2P with material P-100 quantity 3 price 250.50")

    assert result.success
    assert [stage for stage, _ in runner.calls] == [
        Stage.PURCHASE_ORDER,
        Stage.GOODS_RECEIPT,
        Stage.SUPPLIER_INVOICE,
        Stage.PAYMENT,
    ]
    params = dict(runner.calls)
    assert params[Stage.PURCHASE_ORDER] == {"MATERIAL": "P-100", "QUANTITY": "3", "PRICE": "250.50"}
    assert params[Stage.GOODS_RECEIPT] == {"PO_NUMBER": "4500001234"}
    assert params[Stage.SUPPLIER_INVOICE] == {"PO_NUMBER": "4500001234", "AMOUNT": "751.50"}
    assert params[Stage.PAYMENT] == {"INVOICE_NUMBER": "5105600042"}

    assert result.extracted_ids == {
        "poNumber": "4500001234",
        "materialDocument": "5000005678",
        "invoiceNumber": "5105600042",
    }
    assert result.completed_stage is Stage.PAYMENT
    assert all(step.status == "completed" for step in result.steps)

    summary = ledger.stage_of("4500001234")
    assert summary.po_created and summary.goods_receipt_completed
    assert summary.invoice_number == "5105600042"
    assert summary.payment_completed


def test_failed_step_skips_the_rest_and_reports_furthest_stage(ledger):
    outputs = dict(P2P_OUTPUTS)
    outputs[Stage.GOODS_RECEIPT] = failed(
        Stage.GOODS_RECEIPT, "Error: Item 1 does not contain any selectable items\n    at post (gr.ts:4:1)"
    )
    runner = FakeRunner(outputs)
    result = _run(runner, ledger, "Run P2P")

    assert not result.success
    assert [step.status for step in result.steps] == ["completed", "completed", "failed", "skipped", "skipped"]
    assert result.completed_stage is Stage.PURCHASE_ORDER
    assert "completed up to Purchase Order" in result.message
    assert result.user_message == GOODS_RECEIPT_EXISTS_MESSAGE
    assert "selectable items" in result.errors[0]
    assert len(runner.calls) == 2
    assert ledger.exists(Stage.PURCHASE_ORDER, "4500001234")
    assert ledger.entries(Stage.GOODS_RECEIPT) == []


def test_invalid_work_item_never_reaches_the_runner(ledger):
    runner = FakeRunner(P2P_OUTPUTS)
    result = _run(runner, ledger, "Create invoice")
    assert not result.success
    assert runner.calls == []
    assert "Number is required" in result.errors[0]
    assert result.steps[0].status == "failed"


def test_wrong_document_type_is_rejected_before_dispatch(ledger):
    runner = FakeRunner(P2P_OUTPUTS)
    result = _run(runner, ledger, "Create invoice for PO 5000001234")
    assert not result.success
    assert runner.calls == []
    assert "Wrong document type" in result.message
    assert result.error_code.endswith("_wrong_document_type")
    assert result.to_dict()["errorCode"] == result.error_code


def test_single_goods_receipt_records_ledger(ledger):
    runner = FakeRunner(P2P_OUTPUTS)
    result = _run(runner, ledger, "Post GR for PO 4500001075")
    assert result.success
    assert runner.calls == [(Stage.GOODS_RECEIPT, {"PO_NUMBER": "4500001075"})]
    entry = ledger.find_by_parent(Stage.GOODS_RECEIPT, "4500001075")
    assert entry.document_id == "5000005678"


def test_invoice_amount_comes_from_po_details(ledger):
    ledger.record_po_details("4500001075", "P-A2026-3", "4", "12.345")
    runner = FakeRunner(P2P_OUTPUTS)
    result = _run(runner, ledger, "Create invoice for PO 4500001075")
    assert result.success
    assert runner.calls[0][1]["AMOUNT"] == "49.38"
    assert ledger.find_by_parent(Stage.SUPPLIER_INVOICE, "4500001075").document_id == "5105600042"


def test_invoice_amount_defaults_and_rounding():
    assert invoice_amount(None) == Decimal("1000.00")
    details = PODetails("4500000001", "M", "1", "19.995", "")
    assert invoice_amount(details) == Decimal("20.00")
    assert invoice_amount(PODetails("4500000001", "M", "two", "10", "")) == Decimal("1000.00")


def test_purchase_order_without_number_in_output_fails(ledger):
    runner = FakeRunner({Stage.PURCHASE_ORDER: ok(Stage.PURCHASE_ORDER, "1 passed (12.3s)")})
    result = _run(runner, ledger, "Create PO")
    assert not result.success
    assert result.user_message == PO_NOT_GENERATED_MESSAGE
    assert ledger.entries(Stage.PURCHASE_ORDER) == []


def test_invoice_already_recorded_is_an_idempotency_conflict(ledger):
    ledger.record_completion(Stage.SUPPLIER_INVOICE, "5105600001", "4500001075")
    runner = FakeRunner(P2P_OUTPUTS)
    result = _run(runner, ledger, "Create invoice for PO 4500001075")
    assert not result.success
    assert runner.calls == []
    assert result.user_message == SUPPLIER_INVOICE_EXISTS_MESSAGE


def test_payment_records_invoice_with_po_parent(ledger):
    ledger.record_completion(Stage.SUPPLIER_INVOICE, "5105600001", "4500001075")
    runner = FakeRunner(P2P_OUTPUTS)
    result = _run(runner, ledger, "Pay invoice 5105600001")
    assert result.success
    entry = ledger.entries(Stage.PAYMENT)[0]
    assert (entry.document_id, entry.parent_id) == ("5105600001", "4500001075")
    assert ledger.stage_of("4500001075").payment_completed


def test_cancel_stops_the_running_step(ledger):
    runner = BlockingRunner()
    orchestrator = WorkflowOrchestrator(runner=runner, ledger=ledger, prefix_table=DEFAULT_TABLE)

    async def scenario():
        task = asyncio.create_task(orchestrator.execute(_parse("Run P2P")))
        await runner.started.wait()
        assert orchestrator.is_running
        assert orchestrator.cancel() is True
        return await task

    result = asyncio.run(scenario())
    assert result.cancelled
    assert result.user_message == CANCELLED_MESSAGE
    assert [step.status for step in result.steps] == ["completed", "failed", "skipped", "skipped", "skipped"]
    assert not orchestrator.is_running
    assert orchestrator.cancel() is False


def test_cancel_targets_one_run_and_leaves_others_running(ledger):
    runner = BlockingRunner({Stage.PURCHASE_ORDER: ok(Stage.PURCHASE_ORDER, "PO Number: 4500007001")})
    orchestrator = WorkflowOrchestrator(runner=runner, ledger=ledger, prefix_table=DEFAULT_TABLE)

    async def scenario():
        first = asyncio.create_task(orchestrator.execute(_parse("Create PO"), run_id="run-a"))
        second = asyncio.create_task(orchestrator.execute(_parse("Create PO"), run_id="run-b"))
        while len(runner.calls) < 2:
            await asyncio.sleep(0.01)
        assert orchestrator.cancel("run-a") is True
        cancelled = await first

        third = asyncio.create_task(orchestrator.execute(_parse("Create PO"), run_id="run-c"))
        while len(runner.calls) < 3:
            await asyncio.sleep(0.01)
        runner.release.set()
        return cancelled, await second, await third

    cancelled, second, third = asyncio.run(scenario())
    assert cancelled.cancelled
    assert cancelled.run_id == "run-a"
    assert second.success and not second.cancelled
    assert third.success and not third.cancelled
    assert second.extracted_ids == {"poNumber": "4500007001"}
    assert orchestrator.cancel("run-b") is False


def test_result_payload_shape(ledger):
    runner = FakeRunner(P2P_OUTPUTS)
    payload = _run(runner, ledger, "Create PO").to_dict()
    assert payload["success"] is True
    assert payload["extractedIds"] == {"poNumber": "4500001234"}
    assert payload["intent"] == "purchase_order"
    assert payload["runId"]
    assert "errors" not in payload
    assert {"id", "description", "status", "timestamp"} <= set(payload["steps"][0])
