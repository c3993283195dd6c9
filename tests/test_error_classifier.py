import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from p2pflow.core.error_classifier import (
    CANCELLED_MESSAGE,
    GOODS_RECEIPT_EXISTS_MESSAGE,
    NETWORK_MESSAGE,
    PO_NOT_GENERATED_MESSAGE,
    RULES,
    SESSION_LOST_MESSAGE,
    SUPPLIER_INVOICE_EXISTS_MESSAGE,
    ErrorCause,
    classify,
)


def test_rule_order_is_pinned():
    assert [rule.name for rule in RULES] == [
        "pass_through",
        "goods_receipt_exists",
        "supplier_invoice_exists",
        "timeout",
        "element_not_found",
        "click_failed",
        "session_lost",
        "network",
        "po_not_generated",
        "cancelled",
    ]


def test_human_sentence_passes_through():
    text = "Please check the supplier number and try again."
    result = classify(text)
    assert result.cause is ErrorCause.PASS_THROUGH
    assert result.message == text


@pytest.mark.parametrize(
    ("text", "cause"),
    [
        ("Purchase order 4500000130 does not contain any selectable items.", ErrorCause.GOODS_RECEIPT_ALREADY_EXISTS),
        ("Timeout 30000ms exceeded.", ErrorCause.TIMEOUT),
        ("Balance is zero for document 5105600042.", ErrorCause.SUPPLIER_INVOICE_ALREADY_EXISTS),
        ("Target page, context or browser has been closed.", ErrorCause.SESSION_LOST),
    ],
)
def test_sentence_shaped_application_messages_are_still_classified(text, cause):
    assert classify(text).cause is cause


def test_stack_traces_do_not_pass_through():
    result = classify("Error: Something broke.\n    at Object.<anonymous> (flow.spec.ts:10:5)")
    assert result.cause is not ErrorCause.PASS_THROUGH


def test_goods_receipt_already_exists():
    result = classify("Error: Item 1 does not contain any selectable items\n    at GoodsReceipt.post")
    assert result.cause is ErrorCause.GOODS_RECEIPT_ALREADY_EXISTS
    assert result.message == GOODS_RECEIPT_EXISTS_MESSAGE


@pytest.mark.parametrize("text", ["SUPPLIER_INVOICE_ALREADY_EXISTS", "the balance is zero for this document"])
def test_supplier_invoice_already_exists(text):
    result = classify(text)
    assert result.cause is ErrorCause.SUPPLIER_INVOICE_ALREADY_EXISTS
    assert result.message == SUPPLIER_INVOICE_EXISTS_MESSAGE


@pytest.mark.parametrize(
    ("text", "stage"),
    [
        ("locator.fill: Timeout 30000ms exceeded waiting for getByRole('textbox', { name: 'Supplier' })", "supplier"),
        ("timeout while filling baseline date", "baseline"),
        ("timeout waiting for invoice payment tab", "payment"),
        ("timeout exceeded on amount field", "invoice"),
        ("timeout waiting for Item OK checkbox", "goods"),
        ("timeout waiting for Purchasing Document field", "purchase_order"),
        ("timeout waiting for emphasized Save", "save"),
        ("timeout waiting for button", "button"),
        ("timeout waiting for textbox", "textbox"),
    ],
)
def test_timeout_is_sub_classified_by_stage(text, stage):
    result = classify(text)
    assert result.cause is ErrorCause.TIMEOUT
    assert result.stage == stage


@pytest.mark.parametrize(
    "text",
    [
        "locator.fill: Timeout 30000ms exceeded.\nwaiting for getByRole('textbox', { name: 'Amount' }) in Create Supplier Invoice",
        "Timeout 30000ms exceeded while opening the Supplier Invoice screen",
        "timeout on SUPPLIER_INVOICE step",
    ],
)
def test_supplier_invoice_text_gets_invoice_guidance(text):
    result = classify(text)
    assert result.cause is ErrorCause.TIMEOUT
    assert result.stage == "invoice"
    assert "Supplier Invoice" in result.message


def test_supplier_field_still_wins_on_the_purchase_order_screen():
    result = classify("Timeout 30000ms exceeded waiting for Supplier field")
    assert result.stage == "supplier"


def test_generic_timeout():
    result = classify("page.waitForTimeout: timeout 5000ms exceeded")
    assert result.cause is ErrorCause.TIMEOUT
    assert result.stage is None


def test_element_not_found_uses_stage_hints():
    result = classify("Error: element not found: button 'Post'")
    assert result.cause is ErrorCause.ELEMENT_NOT_FOUND
    assert result.stage == "save"


def test_click_failure():
    result = classify("locator.click: element is not visible")
    assert result.cause is ErrorCause.CLICK_FAILED
    assert result.stage is None


@pytest.mark.parametrize(
    ("text", "cause", "message"),
    [
        ("Error: Target page, context or browser has been closed", ErrorCause.SESSION_LOST, SESSION_LOST_MESSAGE),
        ("net::ERR_CONNECTION_REFUSED at https://erp.example.com", ErrorCause.NETWORK, NETWORK_MESSAGE),
        ("connect ECONNREFUSED 10.0.0.1:443", ErrorCause.NETWORK, NETWORK_MESSAGE),
        ("PO number not generated", ErrorCause.PO_NOT_GENERATED, PO_NOT_GENERATED_MESSAGE),
        ("Execution cancelled by user", ErrorCause.CANCELLED, CANCELLED_MESSAGE),
    ],
)
def test_fixed_messages(text, cause, message):
    result = classify(text)
    assert result.cause is cause
    assert result.message == message


def test_unclassified_is_a_bounded_preview():
    result = classify("weird " * 100)
    assert result.cause is ErrorCause.UNCLASSIFIED
    assert result.message.startswith("Automation failed: weird")
    assert result.message.endswith("...")
    assert len(result.message) <= len("Automation failed: ") + 200 + 3


def test_empty_input_still_yields_a_message():
    result = classify("")
    assert result.cause is ErrorCause.UNCLASSIFIED
    assert result.message


def test_classification_is_deterministic():
    text = "locator.click: Timeout 30000ms exceeded for invoice"
    assert classify(text) == classify(text)
