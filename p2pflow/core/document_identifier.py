"""Classify bare document numbers by their leading digits.

The prefix table lives in ``config/document_prefixes.yaml`` (or the file
named by ``DOCUMENT_PREFIXES_PATH``).  It is loaded once, cached for the
process and handed to the interpreter and orchestrator explicitly, so that
``identify`` stays a pure function of its two arguments.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from p2pflow.domain import DocumentKind

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


@dataclass(slots=True, frozen=True)
class PrefixRule:
    kind: DocumentKind
    codes: tuple[str, ...]
    label: str
    short_label: str


@dataclass(slots=True, frozen=True)
class PrefixTable:
    rules: tuple[PrefixRule, ...]

    def codes_for(self, kind: DocumentKind) -> tuple[str, ...]:
        for rule in self.rules:
            if rule.kind is kind:
                return rule.codes
        return ()

    def label_for(self, kind: DocumentKind) -> str:
        for rule in self.rules:
            if rule.kind is kind:
                return rule.label
        return "Unknown Document Type"


@dataclass(slots=True, frozen=True)
class DocumentTypeResult:
    kind: DocumentKind
    label: str
    short_label: str
    is_valid: bool


DEFAULT_TABLE = PrefixTable(
    rules=(
        PrefixRule(DocumentKind.PURCHASE_ORDER, ("45",), "Purchase Order", "PO"),
        PrefixRule(DocumentKind.MATERIAL_DOCUMENT, ("50",), "Material Document", "Mat Doc"),
        PrefixRule(DocumentKind.SUPPLIER_INVOICE, ("51",), "Supplier Invoice", "Invoice"),
    )
)

UNKNOWN_RESULT = DocumentTypeResult(
    kind=DocumentKind.UNKNOWN,
    label="Unknown Document Type",
    short_label="Unknown",
    is_valid=False,
)


def _config_path() -> Path:
    env_path = os.getenv("DOCUMENT_PREFIXES_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return CONFIG_DIR / "document_prefixes.yaml"


def parse_prefix_table(data: dict) -> PrefixTable:
    rules: list[PrefixRule] = []
    for key, entry in (data.get("prefixes") or {}).items():
        try:
            kind = DocumentKind(key)
        except ValueError:
            logger.warning("Ignoring unknown document kind %r in prefix table", key)
            continue
        entry = entry or {}
        codes = tuple(str(code).strip() for code in entry.get("codes") or [] if str(code).strip())
        rules.append(
            PrefixRule(
                kind=kind,
                codes=codes,
                label=str(entry.get("label") or key),
                short_label=str(entry.get("shortLabel") or entry.get("label") or key),
            )
        )
    return PrefixTable(rules=tuple(rules))


def load_prefix_table(path: Path | None = None) -> PrefixTable:
    """Read a prefix table from YAML, falling back to the built-in defaults."""

    path = path or _config_path()
    if not path.exists():
        logger.warning("Document prefix config %s not found, using defaults", path)
        return DEFAULT_TABLE
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    table = parse_prefix_table(data)
    if not table.rules:
        logger.warning("Document prefix config %s is empty, using defaults", path)
        return DEFAULT_TABLE
    return table


_table: PrefixTable | None = None


def get_prefix_table() -> PrefixTable:
    """Return the process-wide prefix table, loading it on first use."""

    global _table
    if _table is None:
        _table = load_prefix_table()
    return _table


def clear_prefix_cache() -> None:
    """Forget the cached table so the next lookup re-reads the config file."""

    global _table
    _table = None


def identify(document_id: str | None, table: PrefixTable | None = None) -> DocumentTypeResult:
    if not document_id or not document_id.strip():
        return UNKNOWN_RESULT

    table = table or get_prefix_table()
    candidate = document_id.strip()
    for rule in table.rules:
        for code in rule.codes:
            if candidate.startswith(code):
                return DocumentTypeResult(
                    kind=rule.kind,
                    label=rule.label,
                    short_label=rule.short_label,
                    is_valid=True,
                )
    return UNKNOWN_RESULT


def list_document_types(table: PrefixTable | None = None) -> list[dict[str, object]]:
    table = table or get_prefix_table()
    return [
        {"type": rule.kind.value, "label": rule.label, "shortLabel": rule.short_label, "codes": list(rule.codes)}
        for rule in table.rules
    ]
