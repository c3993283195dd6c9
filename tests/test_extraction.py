import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from p2pflow.core.document_identifier import DEFAULT_TABLE
from p2pflow.core.extraction import extract_output_id, extract_reference, has_number, prefix_pattern
from p2pflow.domain import DocumentKind

PO = DocumentKind.PURCHASE_ORDER
INVOICE = DocumentKind.SUPPLIER_INVOICE
MATDOC = DocumentKind.MATERIAL_DOCUMENT


def test_has_number_needs_ten_digits():
    assert has_number("Post GR for PO 4500001075")
    assert not has_number("Create PO quantity 5 price 1200")


def test_reference_prefers_doctype_context_over_bare_number():
    text = "Create invoice with 5105600001 for PO 4500001234"
    assert extract_reference(text, PO, DEFAULT_TABLE) == "4500001234"
    assert extract_reference(text, INVOICE, DEFAULT_TABLE) == "5105600001"


def test_reference_context_and_bare_fallbacks():
    assert extract_reference("goods receipt against this 4500000042", PO, DEFAULT_TABLE) == "4500000042"
    assert extract_reference("document number: 4500000043 please", PO, DEFAULT_TABLE) == "4500000043"
    assert extract_reference("receipt 9900000001", PO, DEFAULT_TABLE) == "9900000001"
    assert extract_reference("nothing to see", PO, DEFAULT_TABLE) is None


def test_prefix_pattern_is_anchored_to_ten_digits():
    pattern = prefix_pattern(PO, DEFAULT_TABLE)
    assert pattern.search("id 4500001234 ok").group(1) == "4500001234"
    assert pattern.search("id 145000012345") is None


def test_output_label_beats_prefix_fallback():
    output = "Found 4500000001 in list\nPO Number: 4500000777\n"
    assert extract_output_id(output, PO, DEFAULT_TABLE) == "4500000777"


def test_output_label_skips_candidates_of_another_kind():
    output = "Invoice reference number: 4500000777\nInvoice Number: 5105600042"
    assert extract_output_id(output, INVOICE, DEFAULT_TABLE) == "5105600042"


def test_output_posted_document_and_prefix_fallback():
    assert extract_output_id("Document 5000001122 was posted", MATDOC, DEFAULT_TABLE) == "5000001122"
    assert extract_output_id("Document 5000001122 was posted", INVOICE, DEFAULT_TABLE) is None
    assert extract_output_id("created 5105600099 ok", INVOICE, DEFAULT_TABLE) == "5105600099"
    assert extract_output_id("", PO, DEFAULT_TABLE) is None
