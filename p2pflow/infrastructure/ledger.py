"""Append-only, file-backed record of completed procurement documents.

Every stage has its own CSV file whose first column is the document id.
Rows are only ever appended; lookups are linear scans.  The files are meant
to stay human readable and human appendable, so blank lines and a header row
are tolerated anywhere.
"""
from __future__ import annotations

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Protocol

from p2pflow.core.storage import ledger_root
from p2pflow.domain import LedgerEntry, PODetails, Stage, StageSummary

logger = logging.getLogger(__name__)

LEDGER_FILES: dict[Stage, str] = {
    Stage.PURCHASE_ORDER: "purchase_orders.csv",
    Stage.GOODS_RECEIPT: "goods_receipts.csv",
    Stage.SUPPLIER_INVOICE: "supplier_invoices.csv",
    Stage.PAYMENT: "payments.csv",
}
LEDGER_HEADER = ["document_id", "parent_id", "created_at"]

PO_DETAILS_FILE = "po_details.csv"
PO_DETAILS_HEADER = ["po_number", "material", "quantity", "price", "created_at"]


class DocumentLedger(Protocol):
    """Persistence contract for completed documents."""

    def record_completion(self, stage: Stage, document_id: str, parent_id: str | None = None) -> LedgerEntry: ...

    def exists(self, stage: Stage, document_id: str) -> bool: ...

    def entries(self, stage: Stage) -> list[LedgerEntry]: ...

    def find_by_parent(self, stage: Stage, parent_id: str) -> LedgerEntry | None: ...

    def record_po_details(self, po_number: str, material: str, quantity: str, price: str) -> PODetails: ...

    def po_details(self, po_number: str) -> PODetails | None: ...

    def stage_of(self, po_number: str) -> StageSummary: ...

    def list_purchase_orders(self) -> list[dict[str, str | None]]: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CsvDocumentLedger:
    """Ledger stored as one append-only CSV file per stage."""

    def __init__(self, root: Path | None = None) -> None:
        self._root = Path(root) if root is not None else ledger_root()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    def _path(self, stage: Stage) -> Path:
        return self._root / LEDGER_FILES[stage]

    @staticmethod
    def _append(path: Path, header: list[str], row: list[str]) -> None:
        is_new = not path.exists() or path.stat().st_size == 0
        with path.open("a", encoding="utf-8", newline="") as fp:
            writer = csv.writer(fp)
            if is_new:
                writer.writerow(header)
            writer.writerow(row)

    @staticmethod
    def _rows(path: Path, header: list[str]) -> Iterator[list[str]]:
        if not path.exists():
            return
        with path.open("r", encoding="utf-8", newline="") as fp:
            for row in csv.reader(fp):
                cells = [cell.strip() for cell in row]
                if not cells or not cells[0] or cells[0] == header[0]:
                    continue
                yield cells

    def _scan(self, stage: Stage) -> Iterator[LedgerEntry]:
        for cells in self._rows(self._path(stage), LEDGER_HEADER):
            parent = cells[1] if len(cells) > 1 and cells[1] else None
            created_at = cells[2] if len(cells) > 2 else ""
            yield LedgerEntry(document_id=cells[0], stage=stage, created_at=created_at, parent_id=parent)

    # ------------------------------------------------------------------
    # ledger operations
    # ------------------------------------------------------------------
    def record_completion(self, stage: Stage, document_id: str, parent_id: str | None = None) -> LedgerEntry:
        entry = LedgerEntry(document_id=str(document_id), stage=stage, created_at=_now(), parent_id=parent_id)
        self._append(
            self._path(stage),
            LEDGER_HEADER,
            [entry.document_id, entry.parent_id or "", entry.created_at],
        )
        logger.info("Recorded %s %s (parent=%s)", stage.value, entry.document_id, parent_id)
        return entry

    def exists(self, stage: Stage, document_id: str) -> bool:
        target = str(document_id).strip()
        return any(entry.document_id == target for entry in self._scan(stage))

    def entries(self, stage: Stage) -> list[LedgerEntry]:
        return list(self._scan(stage))

    def find(self, stage: Stage, document_id: str) -> LedgerEntry | None:
        target = str(document_id).strip()
        return next((entry for entry in self._scan(stage) if entry.document_id == target), None)

    def find_by_parent(self, stage: Stage, parent_id: str) -> LedgerEntry | None:
        target = str(parent_id).strip()
        return next((entry for entry in self._scan(stage) if entry.parent_id == target), None)

    def record_po_details(self, po_number: str, material: str, quantity: str, price: str) -> PODetails:
        details = PODetails(
            po_number=str(po_number),
            material=str(material),
            quantity=str(quantity),
            price=str(price),
            created_at=_now(),
        )
        self._append(
            self._root / PO_DETAILS_FILE,
            PO_DETAILS_HEADER,
            [details.po_number, details.material, details.quantity, details.price, details.created_at],
        )
        return details

    def po_details(self, po_number: str) -> PODetails | None:
        target = str(po_number).strip()
        latest: PODetails | None = None
        for cells in self._rows(self._root / PO_DETAILS_FILE, PO_DETAILS_HEADER):
            if cells[0] != target or len(cells) < 4:
                continue
            latest = PODetails(
                po_number=cells[0],
                material=cells[1],
                quantity=cells[2],
                price=cells[3],
                created_at=cells[4] if len(cells) > 4 else "",
            )
        return latest

    def stage_of(self, po_number: str) -> StageSummary:
        summary = StageSummary(po_number=str(po_number).strip())

        po_entry = self.find(Stage.PURCHASE_ORDER, summary.po_number)
        if po_entry is not None:
            summary.po_created = True
            summary.po_created_at = po_entry.created_at

        invoice = self.find_by_parent(Stage.SUPPLIER_INVOICE, summary.po_number)
        if invoice is not None:
            summary.invoice_created = True
            summary.invoice_number = invoice.document_id
            summary.invoice_created_at = invoice.created_at
            summary.payment_completed = self.exists(Stage.PAYMENT, invoice.document_id)

        # an invoice can only be posted after the goods movement, so it implies the receipt
        summary.goods_receipt_completed = (
            summary.invoice_created
            or self.find_by_parent(Stage.GOODS_RECEIPT, summary.po_number) is not None
        )
        return summary

    def list_purchase_orders(self) -> list[dict[str, str | None]]:
        return [
            {"poNumber": entry.document_id, "createdAt": entry.created_at or None}
            for entry in self._scan(Stage.PURCHASE_ORDER)
        ]


def get_document_ledger() -> CsvDocumentLedger:
    """Ledger rooted at the current ``LEDGER_ROOT``."""

    return CsvDocumentLedger()
