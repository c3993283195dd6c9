"""Turn free-text procurement commands into work items.

Intent detection is a fixed-priority list of :class:`IntentRule` values.
Each rule owns a predicate (phrase list, keyword plus number heuristics and a
fuzzy keyword fallback) and a builder that resolves the parameters the
intent needs.  The first rule whose predicate accepts the command wins:

* procure-to-pay
* purchase order creation (never when the command carries a document number)
* supplier invoice
* goods receipt
* payment

Commands that match no rule become an ``Intent.UNKNOWN`` work item carrying
example phrasings.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable

from p2pflow.core.document_identifier import PrefixTable, get_prefix_table, identify
from p2pflow.core.extraction import extract_reference, has_number
from p2pflow.domain import DocumentKind, DocumentReference, Intent, ValidationIssue, WorkItem

logger = logging.getLogger(__name__)

CONVERSATIONAL_PREFIXES: tuple[str, ...] = (
    "can you ", "could you ", "would you ", "will you ", "shall we ",
    "please ", "pls ", "plz ", "kindly ",
    "i want to ", "i need to ", "i would like to ", "i'd like to ",
    "let's ", "lets ", "let us ", "we need to ", "we want to ",
    "help me ", "help me to ", "help us ",
    "i want ", "i need ", "we need ", "we want ",
)

TRAILING_SUFFIXES: tuple[str, ...] = (" please", " now", " for me")

P2P_PHRASES: tuple[str, ...] = (
    "p2p", "p-p", "p 2 p", "p to p",
    "procure to pay", "procure-to-pay", "procuretopay", "procedure to pay",
    "purchase to pay", "purchase-to-pay", "purchasetopay",
    "purchase to payment", "purchase-to-payment",
    "full flow", "complete flow", "entire flow", "whole flow",
    "full process", "complete process", "entire process", "whole process",
    "end to end", "end-to-end", "e2e", "endtoend",
    "run all", "execute all", "start all", "do all",
    "run full", "execute full", "run complete", "execute complete",
    "run entire", "execute entire", "start full", "start complete",
    "full sap", "complete sap", "entire sap", "whole sap",
    "procurement flow", "procurement process",
    "sap flow", "sap automation", "sap process",
    "run sap", "execute sap", "start sap",
    "full procedure", "complete procedure", "entire procedure",
    "run the full", "execute the full", "run the complete",
    "run the entire", "start the full", "start the complete",
)

PO_PHRASES: tuple[str, ...] = (
    "purchase order", "purchaseorder",
    "create po", "create a po", "create new po", "create a new po",
    "generate po", "generate a po", "generate purchase order",
    "start po", "start a po", "start purchase order",
    "new po", "new purchase order", "make po", "make a po",
    "po with company", "po for company", "po with vendor", "po for vendor",
    "po with default", "po default values",
    "run po", "execute po", "po creation", "po process", "po flow",
    "want a po", "need a po", "want po", "need po", "get po", "get a po",
    "purshase order", "purchse order", "puchase order", "purchas order",
    "purchese order", "purhcase order", "pruchase order",
    "purchasing order", "purchasng order",
    "creat po", "crate po", "craete po",
)

PO_VERB_STEMS: tuple[str, ...] = ("creat", "new", "make", "generat", "start", "run", "execut")

INVOICE_PHRASES: tuple[str, ...] = (
    "invoice", "invocie", "invioce", "invoce", "invice", "inoice", "incoice",
    "supplier invoice", "vendor invoice", "supplier inv", "vendor inv",
    "invoice for po", "invoice with po", "invoice against po", "invoice using po",
    "invoice linked to", "invoice creation", "invoice process", "invoice flow",
    "suppliar invoice", "suplier invoice", "suppiler invoice", "supp invoice",
    "supplyer invoice", "suppllier invoice",
    "invoic for", "invice for", "invocie for",
)

GOODS_RECEIPT_PHRASES: tuple[str, ...] = (
    "goods receipt", "goods reciept", "goods recept", "goods recipt",
    "good receipt", "good reciept", "good recept",
    "goods", "create gr", "post gr", "generate gr", "new gr", "make gr",
    "gr for", "gr with", "gr using", "gr against",
    "run gr", "execute gr", "start gr", "gr flow", "gr process", "gr creation",
    "goods movement", "goods movment", "goods mvmt",
    "material receipt", "material reciept", "material document",
    "migo", "grn", "goods note",
    "receive goods", "recieve goods", "receiving goods", "received goods",
    "want gr", "need gr",
    "goods reciet", "goods recipet", "godds receipt",
    "creat gr", "crate gr",
)

PAYMENT_PHRASES: tuple[str, ...] = (
    "payment", "payemnt", "paymnt", "paymet", "paymnet", "payement",
    "pay for invoice", "pay for this invoice", "pay this invoice",
    "pay invoice", "pay the invoice", "pay inv",
    "automatic payment", "auto payment", "f110", "f-110",
    "vendor payment", "supplier payment",
    "pay for", "pay with", "pay using", "paying",
)

_PAYMENT_WORD = re.compile(r"\b(?:pay|pays|paying|payment|payments|payemnt|paymnt|paymet|paymnet|payement|f-?110)\b")
_GR_WORD = re.compile(r"\bgr\b")
_OTHER_STAGE_WORD = re.compile(r"\b(?:goods?|gr|grn|receipt|migo|invoice|pay|payment)\b")

PARAMETER_PATTERNS: dict[str, re.Pattern[str]] = {
    "material": re.compile(r"\bmaterial\s*:?\s*([A-Za-z0-9][\w-]*)", re.IGNORECASE),
    "quantity": re.compile(r"\b(?:quantity|qty)\s*:?\s*(\d+(?:\.\d+)?)", re.IGNORECASE),
    "price": re.compile(r"\b(?:price|net\s*price)\s*:?\s*(\d+(?:\.\d+)?)", re.IGNORECASE),
    "supplier": re.compile(r"\b(?:supplier|vendor)\s*:?\s*(\d+)\b", re.IGNORECASE),
}

UNKNOWN_DESCRIPTION = (
    "Unknown command. Try:\n"
    '• "Create PO" or "Create purchase order"\n'
    '• "Create goods for PO 4500001075" or "Post GR for PO 4500001075"\n'
    '• "Create invoice for PO 4500001075"\n'
    '• "Process payment for invoice 5105600001"\n'
    '• "Run P2P" or "Procedure to pay"'
)


@dataclass(slots=True, frozen=True)
class CommandText:
    raw: str
    normalized: str
    has_number: bool

    @property
    def words(self) -> list[str]:
        return self.normalized.split()


def normalize_command(command: str) -> str:
    normalized = (command or "").strip().lower()
    for prefix in CONVERSATIONAL_PREFIXES:
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix):]
    normalized = re.sub(r"\?+$", "", normalized).strip()
    for suffix in TRAILING_SUFFIXES:
        if normalized.endswith(suffix):
            normalized = normalized[: -len(suffix)].strip()
    return normalized


def matches_any(text: str, phrases: tuple[str, ...]) -> bool:
    return any(phrase in text for phrase in phrases)


def fuzzy_match(text: str, target: str) -> bool:
    """Tolerate typos of a single keyword.

    A word matches when it shares the target's first three letters and its
    length is within two characters, or when at least ``min_len - 2`` (and
    never fewer than three) character positions agree.
    """

    if target in text:
        return True
    if len(target) < 3:
        return False
    for word in text.split():
        if len(word) < 3:
            continue
        if word[:3] == target[:3] and abs(len(word) - len(target)) <= 2:
            return True
        min_len = min(len(word), len(target))
        matches = sum(1 for left, right in zip(word, target) if left == right)
        if matches >= min_len - 2 and matches >= 3:
            return True
    return False


# ----------------------------------------------------------------------
# predicates
# ----------------------------------------------------------------------
def _is_procure_to_pay(cmd: CommandText) -> bool:
    return matches_any(cmd.normalized, P2P_PHRASES)


def _is_purchase_order(cmd: CommandText) -> bool:
    if cmd.has_number or _OTHER_STAGE_WORD.search(cmd.normalized):
        return False
    if matches_any(cmd.normalized, PO_PHRASES):
        return True
    return bool(re.search(r"\bpo\b", cmd.normalized)) and matches_any(cmd.normalized, PO_VERB_STEMS)


def _mentions_payment(cmd: CommandText) -> bool:
    return bool(_PAYMENT_WORD.search(cmd.normalized))


def _is_supplier_invoice(cmd: CommandText) -> bool:
    text = cmd.normalized
    if _mentions_payment(cmd):
        return False
    return (
        matches_any(text, INVOICE_PHRASES)
        or ("invoice" in text and cmd.has_number)
        or ("supplier" in text and cmd.has_number and "goods" not in text)
        or fuzzy_match(text, "invoice")
    )


def _is_goods_receipt(cmd: CommandText) -> bool:
    text = cmd.normalized
    return (
        matches_any(text, GOODS_RECEIPT_PHRASES)
        or ("goods" in text and cmd.has_number)
        or (bool(_GR_WORD.search(text)) and cmd.has_number)
        or ("receipt" in text and cmd.has_number and "supplier" not in text and "invoice" not in text)
        or fuzzy_match(text, "goods")
    )


def _is_payment(cmd: CommandText) -> bool:
    text = cmd.normalized
    return (
        matches_any(text, PAYMENT_PHRASES)
        or ("pay" in text and cmd.has_number)
        or fuzzy_match(text, "payment")
    )


@dataclass(slots=True, frozen=True)
class IntentRule:
    intent: Intent
    predicate: Callable[[CommandText], bool]
    builder: Callable[["CommandInterpreter", CommandText], WorkItem]


class CommandInterpreter:
    """Parse commands against an injected document prefix table."""

    def __init__(self, prefix_table: PrefixTable | None = None) -> None:
        self._table = prefix_table or get_prefix_table()

    @property
    def prefix_table(self) -> PrefixTable:
        return self._table

    def parse(self, raw_text: str) -> WorkItem:
        cmd = CommandText(
            raw=raw_text or "",
            normalized=normalize_command(raw_text or ""),
            has_number=has_number(raw_text or ""),
        )
        for rule in INTENT_RULES:
            if rule.predicate(cmd):
                item = rule.builder(self, cmd)
                logger.debug("Command %r resolved to %s", cmd.raw, item.intent.value)
                return item
        return WorkItem(
            intent=Intent.UNKNOWN,
            command=cmd.raw,
            normalized=cmd.normalized,
            description=UNKNOWN_DESCRIPTION,
            errors=[ValidationIssue(code="unknown_command", message=UNKNOWN_DESCRIPTION)],
        )

    # ------------------------------------------------------------------
    # builders
    # ------------------------------------------------------------------
    def _build_procure_to_pay(self, cmd: CommandText) -> WorkItem:
        return WorkItem(
            intent=Intent.PROCURE_TO_PAY,
            command=cmd.raw,
            normalized=cmd.normalized,
            description="Running complete Procure-to-Pay flow",
            parameters=parse_po_parameters(cmd.raw),
        )

    def _build_purchase_order(self, cmd: CommandText) -> WorkItem:
        return WorkItem(
            intent=Intent.CREATE_PURCHASE_ORDER,
            command=cmd.raw,
            normalized=cmd.normalized,
            description="Creating Purchase Order",
            parameters=parse_po_parameters(cmd.raw),
        )

    def _build_supplier_invoice(self, cmd: CommandText) -> WorkItem:
        return self._build_referenced(
            cmd,
            intent=Intent.CREATE_SUPPLIER_INVOICE,
            required=DocumentKind.PURCHASE_ORDER,
            code_prefix="invoice",
            missing_code="invoice_missing_po",
            parameter="po_number",
            example='Create invoice for PO 4500001075',
            description="Creating Supplier Invoice for PO {id}",
        )

    def _build_goods_receipt(self, cmd: CommandText) -> WorkItem:
        return self._build_referenced(
            cmd,
            intent=Intent.CREATE_GOODS_RECEIPT,
            required=DocumentKind.PURCHASE_ORDER,
            code_prefix="goods_receipt",
            missing_code="goods_receipt_missing_po",
            parameter="po_number",
            example="Post GR for PO 4500001075",
            description="Posting Goods Receipt for PO {id}",
        )

    def _build_payment(self, cmd: CommandText) -> WorkItem:
        return self._build_referenced(
            cmd,
            intent=Intent.CREATE_PAYMENT,
            required=DocumentKind.SUPPLIER_INVOICE,
            code_prefix="payment",
            missing_code="payment_missing_invoice",
            parameter="invoice_number",
            example="Process payment for invoice 5105600001",
            description="Processing Payment for Invoice {id}",
        )

    def _build_referenced(
        self,
        cmd: CommandText,
        *,
        intent: Intent,
        required: DocumentKind,
        code_prefix: str,
        missing_code: str,
        parameter: str,
        example: str,
        description: str,
    ) -> WorkItem:
        required_label = self._table.label_for(required)
        item = WorkItem(intent=intent, command=cmd.raw, normalized=cmd.normalized, description="")

        document_id = extract_reference(cmd.raw, required, self._table)
        if not document_id:
            message = f'ERROR: {required_label} Number is required. Example: "{example}"'
            item.description = message
            item.errors.append(ValidationIssue(code=missing_code, message=message, example=example))
            return item

        detected = identify(document_id, self._table)
        item.reference = DocumentReference(kind=detected.kind, document_id=document_id)
        item.parameters[parameter] = document_id

        if detected.kind is DocumentKind.UNKNOWN:
            message = (
                f"ERROR: {document_id} is not a recognised document number. "
                f'A {required_label} number is required. Example: "{example}"'
            )
            item.description = message
            item.errors.append(
                ValidationIssue(code=f"{code_prefix}_unknown_document_type", message=message, example=example)
            )
        elif detected.kind is not required:
            message = (
                f"ERROR: Wrong document type. {document_id} is a {detected.label}, "
                f'but a {required_label} is required. Example: "{example}"'
            )
            item.description = message
            item.errors.append(
                ValidationIssue(code=f"{code_prefix}_wrong_document_type", message=message, example=example)
            )
        else:
            item.description = description.format(id=document_id)
        return item


def parse_po_parameters(text: str) -> dict[str, str]:
    """Optional purchase-order fields written inline, e.g. ``material P-A2026-3 qty 5``."""

    params: dict[str, str] = {}
    for key, pattern in PARAMETER_PATTERNS.items():
        match = pattern.search(text or "")
        if match:
            params[key] = match.group(1)
    return params


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(Intent.PROCURE_TO_PAY, _is_procure_to_pay, CommandInterpreter._build_procure_to_pay),
    IntentRule(Intent.CREATE_PURCHASE_ORDER, _is_purchase_order, CommandInterpreter._build_purchase_order),
    IntentRule(Intent.CREATE_SUPPLIER_INVOICE, _is_supplier_invoice, CommandInterpreter._build_supplier_invoice),
    IntentRule(Intent.CREATE_GOODS_RECEIPT, _is_goods_receipt, CommandInterpreter._build_goods_receipt),
    IntentRule(Intent.CREATE_PAYMENT, _is_payment, CommandInterpreter._build_payment),
)
