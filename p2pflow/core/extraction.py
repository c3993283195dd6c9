"""Ordered regular-expression patterns for pulling document numbers out of text.

Two audiences use them: free-text commands typed by a user, and the combined
stdout/stderr of an automation step.  In both cases the first pattern that
matches wins, contextual patterns come before the bare-number fallback.
"""
from __future__ import annotations

import re
from typing import Iterable

from p2pflow.core.document_identifier import PrefixTable, identify
from p2pflow.domain import DocumentKind

TEN_DIGITS = re.compile(r"\d{10}")
BARE_NUMBER = re.compile(r"\b(\d{10})\b")

_CONTEXT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bwith\s+(?:this\s+)?(\d{10})", re.IGNORECASE),
    re.compile(r"\bfor\s+(?:this\s+)?(\d{10})", re.IGNORECASE),
    re.compile(r"\bagainst\s+(?:this\s+)?(\d{10})", re.IGNORECASE),
    re.compile(r"\bnumber\s*:?\s*(\d{10})", re.IGNORECASE),
)

_DOCTYPE_PATTERNS: dict[DocumentKind, tuple[re.Pattern[str], ...]] = {
    DocumentKind.PURCHASE_ORDER: (
        re.compile(r"\bpo\s*#?\s*(\d{10})", re.IGNORECASE),
        re.compile(r"\bpo\s*number\s*:?\s*(\d{10})", re.IGNORECASE),
        re.compile(r"\bpurchase\s*order\s*(?:number\s*:?\s*)?#?\s*(\d{10})", re.IGNORECASE),
        re.compile(r"\bpo\s+(\d+)", re.IGNORECASE),
    ),
    DocumentKind.SUPPLIER_INVOICE: (
        re.compile(r"\binvoice\s*#?\s*(\d{10})", re.IGNORECASE),
        re.compile(r"\binvoice\s*number\s*:?\s*(\d{10})", re.IGNORECASE),
        re.compile(r"\binvoice\s+(\d+)", re.IGNORECASE),
    ),
}

_OUTPUT_LABEL_PATTERNS: dict[DocumentKind, tuple[re.Pattern[str], ...]] = {
    DocumentKind.PURCHASE_ORDER: (
        re.compile(r"PO Number[:\s]+(\d+)", re.IGNORECASE),
        re.compile(r"Purchase Order Created[:\s]+(\d+)", re.IGNORECASE),
        re.compile(r"PO Created[:\s]+(\d+)", re.IGNORECASE),
        re.compile(r"Purchase Order (?:No\.?|Number)[:\s]+(\d+)", re.IGNORECASE),
    ),
    DocumentKind.MATERIAL_DOCUMENT: (
        re.compile(r"Material Document(?: Number)?[:\s]+(\d+)", re.IGNORECASE),
        re.compile(r"Mat\.? Doc\.?[:\s]+(\d+)", re.IGNORECASE),
        re.compile(r"Goods Receipt Created[:\s]+(\d+)", re.IGNORECASE),
    ),
    DocumentKind.SUPPLIER_INVOICE: (
        re.compile(r"Invoice Created[:\s]+(\d+)", re.IGNORECASE),
        re.compile(r"Invoice[^\n]*?Number[:\s]+(\d+)", re.IGNORECASE),
    ),
}

_POSTED_DOCUMENT = re.compile(r"Document (\d+) was posted", re.IGNORECASE)


def has_number(text: str) -> bool:
    return bool(TEN_DIGITS.search(text or ""))


def prefix_pattern(kind: DocumentKind, table: PrefixTable) -> re.Pattern[str] | None:
    """Build a pattern matching 10-digit numbers carrying one of ``kind``'s prefixes."""

    codes = table.codes_for(kind)
    if not codes:
        return None
    alternatives = "|".join(
        f"{re.escape(code)}\\d{{{10 - len(code)}}}" for code in sorted(codes, key=len, reverse=True) if len(code) < 10
    )
    if not alternatives:
        return None
    return re.compile(rf"(?<!\d)({alternatives})(?!\d)")


def _first_group(patterns: Iterable[re.Pattern[str] | None], text: str) -> str | None:
    for pattern in patterns:
        if pattern is None:
            continue
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_reference(text: str, kind: DocumentKind, table: PrefixTable) -> str | None:
    """Find the document number a command refers to.

    ``kind`` is the kind the command needs; it only selects which doctype
    words and which prefix are tried.  The caller validates the result.
    """

    if not text:
        return None
    patterns: list[re.Pattern[str] | None] = [
        *_DOCTYPE_PATTERNS.get(kind, ()),
        *_CONTEXT_PATTERNS,
        prefix_pattern(kind, table),
        BARE_NUMBER,
    ]
    return _first_group(patterns, text)


def extract_output_id(output: str, kind: DocumentKind, table: PrefixTable) -> str | None:
    """Pull the id of a freshly created document out of automation output.

    Label-based matches are preferred, then a number carrying the kind's
    prefix.  Candidates whose prefix maps to another kind are skipped.
    """

    if not output:
        return None
    for pattern in _OUTPUT_LABEL_PATTERNS.get(kind, ()):
        for match in pattern.finditer(output):
            candidate = match.group(1)
            if identify(candidate, table).kind in (kind, DocumentKind.UNKNOWN):
                return candidate
    for match in _POSTED_DOCUMENT.finditer(output):
        if identify(match.group(1), table).kind is kind:
            return match.group(1)
    fallback = prefix_pattern(kind, table)
    if fallback is not None:
        match = fallback.search(output)
        if match:
            return match.group(1)
    return None
