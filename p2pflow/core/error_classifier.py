"""Map raw automation failures onto user-facing guidance.

Rules are evaluated strictly in ``RULES`` order and the first match wins,
so every input yields exactly one message.  Stage hints inside the timeout,
element-not-found and click families are ordered the same way: more specific
field names (``baseline``, ``supplier``) come before broad document words
(``invoice``, ``po``).  The ``supplier`` hint means the Purchase Order supplier
field only; "Supplier Invoice" belongs to the invoice hint.

Only sentences free of every known failure signal pass through verbatim, so a
bare application message such as "... does not contain any selectable items."
still maps to its fixed explanation.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable


class ErrorCause(str, Enum):
    PASS_THROUGH = "pass_through"
    GOODS_RECEIPT_ALREADY_EXISTS = "goods_receipt_already_exists"
    SUPPLIER_INVOICE_ALREADY_EXISTS = "supplier_invoice_already_exists"
    TIMEOUT = "timeout"
    ELEMENT_NOT_FOUND = "element_not_found"
    CLICK_FAILED = "click_failed"
    SESSION_LOST = "session_lost"
    NETWORK = "network"
    PO_NOT_GENERATED = "po_not_generated"
    CANCELLED = "cancelled"
    UNCLASSIFIED = "unclassified"


@dataclass(slots=True, frozen=True)
class UserMessage:
    cause: ErrorCause
    message: str
    stage: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"cause": self.cause.value, "message": self.message, "stage": self.stage}


PREVIEW_LIMIT = 200
PASS_THROUGH_LIMIT = 300

GOODS_RECEIPT_EXISTS_MESSAGE = (
    "Goods Receipt has already been posted for this Purchase Order. "
    "There are no open items left to receive, please continue with the Supplier Invoice."
)
SUPPLIER_INVOICE_EXISTS_MESSAGE = (
    "The Supplier Invoice has already been created for this Purchase Order (balance is zero). "
    "Please retry with a different Purchase Order or continue with the Payment."
)
SESSION_LOST_MESSAGE = (
    "The browser session was closed or lost its page while the automation was running. "
    "Please start the command again from the beginning."
)
NETWORK_MESSAGE = (
    "Could not reach the enterprise application. Check the network connection and VPN, then try again."
)
PO_NOT_GENERATED_MESSAGE = (
    "The Purchase Order was not generated. The document was not saved, please check the entered "
    "supplier, material and price and try again."
)
CANCELLED_MESSAGE = "The execution was cancelled by the user."

# (hint pattern, stage, timeout text, not-found text, click text)
_STAGE_HINTS: tuple[tuple[re.Pattern[str], str, str, str, str], ...] = (
    (
        re.compile(r"supplier(?![\s_-]*invoice)", re.IGNORECASE),
        "supplier",
        "Timed out waiting for the Supplier field. The Purchase Order screen took too long to load.",
        "The Supplier field could not be found on the Purchase Order screen.",
        "Could not select the Supplier. The value help did not respond.",
    ),
    (
        re.compile(r"baseline|baselinedt", re.IGNORECASE),
        "baseline",
        "Timed out filling the Baseline Date on the Supplier Invoice payment tab.",
        "The Baseline Date field could not be found on the Supplier Invoice payment tab.",
        "Could not open the payment tab to set the Baseline Date.",
    ),
    (
        re.compile(r"payment|pmt meths|run date|identification|automatic payments", re.IGNORECASE),
        "payment",
        "Timed out while scheduling the payment run. The payment screen took too long to respond.",
        "A field on the payment run screen could not be found.",
        "Could not interact with the payment run screen.",
    ),
    (
        re.compile(r"invoice|amount|balance", re.IGNORECASE),
        "invoice",
        "Timed out while creating the Supplier Invoice. The invoice screen took too long to respond.",
        "A field on the Supplier Invoice screen could not be found.",
        "Could not interact with the Supplier Invoice screen.",
    ),
    (
        re.compile(r"goods|item ok|post goods movement|material document", re.IGNORECASE),
        "goods",
        "Timed out while posting the Goods Receipt. The goods movement screen took too long to respond.",
        "A field on the Goods Receipt screen could not be found.",
        "Could not confirm the Goods Receipt items.",
    ),
    (
        re.compile(r"purchasing document|purchase order|\bpo\b", re.IGNORECASE),
        "purchase_order",
        "Timed out while entering the Purchase Order. The screen took too long to respond.",
        "The Purchase Order field could not be found.",
        "Could not interact with the Purchase Order screen.",
    ),
    (
        re.compile(r"\bsave\b|\bpost\b|emphasized", re.IGNORECASE),
        "save",
        "Timed out while saving the document. The application did not confirm the save in time.",
        "The Save/Post button could not be found.",
        "Could not click Save/Post. The document may not have been saved.",
    ),
    (
        re.compile(r"button", re.IGNORECASE),
        "button",
        "Timed out waiting for a button to become available.",
        "A button the automation needs could not be found.",
        "A button could not be clicked.",
    ),
    (
        re.compile(r"textbox|input|field", re.IGNORECASE),
        "textbox",
        "Timed out waiting for an input field to become available.",
        "An input field the automation needs could not be found.",
        "An input field could not be selected.",
    ),
)

_GENERIC_TIMEOUT = "The operation timed out. The enterprise application is responding slowly, please try again."
_GENERIC_NOT_FOUND = "An expected screen element could not be found. The application layout may have changed."
_GENERIC_CLICK = "The automation could not click an element on the screen. Please try again."

_TIMEOUT = re.compile(r"timeout|timed out|exceeded", re.IGNORECASE)
_NOT_FOUND = re.compile(
    r"not found|no element|unable to find|could not find|waiting for (?:locator|selector)|strict mode violation",
    re.IGNORECASE,
)
_CLICK = re.compile(r"click|not clickable|intercepts pointer events|element is not (?:visible|enabled)", re.IGNORECASE)
_SESSION = re.compile(
    r"target (?:page, context or browser )?(?:has been )?closed|browser (?:has been )?closed|page crashed|"
    r"browser has disconnected|navigation (?:failed|interrupted)|execution context was destroyed|session (?:lost|closed)",
    re.IGNORECASE,
)
_NETWORK = re.compile(r"econnrefused|econnreset|enotfound|net::err|network error|socket hang up", re.IGNORECASE)
_PO_NOT_GENERATED = re.compile(r"po number not generated|purchase order (?:number )?not generated", re.IGNORECASE)
_CANCELLED = re.compile(r"cancelled by user|canceled by user|execution cancelled|aborted by user|\bsigterm\b", re.IGNORECASE)
_GR_EXISTS = re.compile(r"does not contain any selectable items|no selectable items", re.IGNORECASE)
_INVOICE_EXISTS = re.compile(r"supplier_invoice_already_exists|balance is zero|zero balance", re.IGNORECASE)
_MACHINE_MARKERS = re.compile(r"\bat\s+\S+\s*\(|locator\(|getByRole|Error:|\n\s+at |=====|\{|\}|\[\d+m")
_SIGNALS = (
    _GR_EXISTS,
    _INVOICE_EXISTS,
    _TIMEOUT,
    _NOT_FOUND,
    _CLICK,
    _SESSION,
    _NETWORK,
    _PO_NOT_GENERATED,
    _CANCELLED,
)


def _is_human_sentence(text: str) -> bool:
    if len(text) > PASS_THROUGH_LIMIT or "\n" in text:
        return False
    if _MACHINE_MARKERS.search(text):
        return False
    if any(signal.search(text) for signal in _SIGNALS):
        return False
    return bool(re.match(r"^[A-Z][^_]*[.!]$", text))


def _staged(text: str, cause: ErrorCause, slot: int, generic: str) -> UserMessage:
    for pattern, stage, *messages in _STAGE_HINTS:
        if pattern.search(text):
            return UserMessage(cause=cause, message=messages[slot], stage=stage)
    return UserMessage(cause=cause, message=generic)


def _preview(text: str) -> str:
    flat = " ".join(text.split())
    if len(flat) > PREVIEW_LIMIT:
        return flat[:PREVIEW_LIMIT] + "..."
    return flat


@dataclass(slots=True, frozen=True)
class ClassifierRule:
    name: str
    applies: Callable[[str], bool]
    build: Callable[[str], UserMessage]


RULES: tuple[ClassifierRule, ...] = (
    ClassifierRule(
        "pass_through",
        _is_human_sentence,
        lambda text: UserMessage(ErrorCause.PASS_THROUGH, text),
    ),
    ClassifierRule(
        "goods_receipt_exists",
        lambda text: bool(_GR_EXISTS.search(text)),
        lambda text: UserMessage(ErrorCause.GOODS_RECEIPT_ALREADY_EXISTS, GOODS_RECEIPT_EXISTS_MESSAGE, "goods"),
    ),
    ClassifierRule(
        "supplier_invoice_exists",
        lambda text: bool(_INVOICE_EXISTS.search(text)),
        lambda text: UserMessage(ErrorCause.SUPPLIER_INVOICE_ALREADY_EXISTS, SUPPLIER_INVOICE_EXISTS_MESSAGE, "invoice"),
    ),
    ClassifierRule(
        "timeout",
        lambda text: bool(_TIMEOUT.search(text)),
        lambda text: _staged(text, ErrorCause.TIMEOUT, 0, _GENERIC_TIMEOUT),
    ),
    ClassifierRule(
        "element_not_found",
        lambda text: bool(_NOT_FOUND.search(text)),
        lambda text: _staged(text, ErrorCause.ELEMENT_NOT_FOUND, 1, _GENERIC_NOT_FOUND),
    ),
    ClassifierRule(
        "click_failed",
        lambda text: bool(_CLICK.search(text)),
        lambda text: _staged(text, ErrorCause.CLICK_FAILED, 2, _GENERIC_CLICK),
    ),
    ClassifierRule(
        "session_lost",
        lambda text: bool(_SESSION.search(text)),
        lambda text: UserMessage(ErrorCause.SESSION_LOST, SESSION_LOST_MESSAGE),
    ),
    ClassifierRule(
        "network",
        lambda text: bool(_NETWORK.search(text)),
        lambda text: UserMessage(ErrorCause.NETWORK, NETWORK_MESSAGE),
    ),
    ClassifierRule(
        "po_not_generated",
        lambda text: bool(_PO_NOT_GENERATED.search(text)),
        lambda text: UserMessage(ErrorCause.PO_NOT_GENERATED, PO_NOT_GENERATED_MESSAGE, "purchase_order"),
    ),
    ClassifierRule(
        "cancelled",
        lambda text: bool(_CANCELLED.search(text)),
        lambda text: UserMessage(ErrorCause.CANCELLED, CANCELLED_MESSAGE),
    ),
)


def classify(raw_error: str | BaseException | None) -> UserMessage:
    text = str(raw_error or "").strip()
    if not text:
        return UserMessage(ErrorCause.UNCLASSIFIED, "The automation failed without reporting an error.")
    for rule in RULES:
        if rule.applies(text):
            return rule.build(text)
    return UserMessage(ErrorCause.UNCLASSIFIED, f"Automation failed: {_preview(text)}")
