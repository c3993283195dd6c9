"""Domain entities for procurement commands and the document ledger."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Intent(str, Enum):
    PROCURE_TO_PAY = "procure_to_pay"
    CREATE_PURCHASE_ORDER = "purchase_order"
    CREATE_GOODS_RECEIPT = "goods_receipt"
    CREATE_SUPPLIER_INVOICE = "supplier_invoice"
    CREATE_PAYMENT = "payment"
    UNKNOWN = "unknown"


class DocumentKind(str, Enum):
    PURCHASE_ORDER = "purchaseOrder"
    MATERIAL_DOCUMENT = "materialDocument"
    SUPPLIER_INVOICE = "supplierInvoice"
    UNKNOWN = "unknown"


class Stage(str, Enum):
    """Business step of the procure-to-pay chain, in execution order."""

    PURCHASE_ORDER = "purchase_order"
    GOODS_RECEIPT = "goods_receipt"
    SUPPLIER_INVOICE = "supplier_invoice"
    PAYMENT = "payment"


STAGE_LABELS: dict[Stage, str] = {
    Stage.PURCHASE_ORDER: "Purchase Order",
    Stage.GOODS_RECEIPT: "Goods Receipt",
    Stage.SUPPLIER_INVOICE: "Supplier Invoice",
    Stage.PAYMENT: "Payment",
}

INTENT_STAGES: dict[Intent, Stage] = {
    Intent.CREATE_PURCHASE_ORDER: Stage.PURCHASE_ORDER,
    Intent.CREATE_GOODS_RECEIPT: Stage.GOODS_RECEIPT,
    Intent.CREATE_SUPPLIER_INVOICE: Stage.SUPPLIER_INVOICE,
    Intent.CREATE_PAYMENT: Stage.PAYMENT,
}


@dataclass(slots=True, frozen=True)
class DocumentReference:
    kind: DocumentKind
    document_id: str


@dataclass(slots=True, frozen=True)
class ValidationIssue:
    """A reason why a command cannot be dispatched."""

    code: str
    message: str
    example: str | None = None


@dataclass(slots=True)
class WorkItem:
    """A resolved command, ready for the orchestrator when ``errors`` is empty."""

    intent: Intent
    command: str
    normalized: str
    description: str
    parameters: dict[str, str] = field(default_factory=dict)
    reference: DocumentReference | None = None
    errors: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.intent is not Intent.UNKNOWN and not self.errors


@dataclass(slots=True, frozen=True)
class LedgerEntry:
    document_id: str
    stage: Stage
    created_at: str
    parent_id: str | None = None


@dataclass(slots=True, frozen=True)
class PODetails:
    po_number: str
    material: str
    quantity: str
    price: str
    created_at: str


@dataclass(slots=True)
class StageSummary:
    """Ledger-derived view of how far a purchase order has progressed."""

    po_number: str
    po_created: bool = False
    po_created_at: str | None = None
    goods_receipt_completed: bool = False
    invoice_created: bool = False
    invoice_number: str | None = None
    invoice_created_at: str | None = None
    payment_completed: bool = False

    @property
    def next_step(self) -> str:
        if not self.po_created:
            return "PO not found - Create PO first"
        if not self.goods_receipt_completed:
            return "Ready for Goods Receipt"
        if not self.invoice_created:
            return "Ready for Supplier Invoice"
        if not self.payment_completed:
            return "Ready for Payment"
        return "Procure-to-Pay completed"

    @property
    def message(self) -> str:
        if self.po_created:
            return f"PO {self.po_number} found! Created at {self.po_created_at}"
        return f"PO {self.po_number} not found in records"

    def to_dict(self) -> dict[str, Any]:
        return {
            "poNumber": self.po_number,
            "exists": self.po_created,
            "status": {
                "poCreated": self.po_created,
                "poCreatedAt": self.po_created_at,
                "goodsReceiptCompleted": self.goods_receipt_completed,
                "invoiceCreated": self.invoice_created,
                "invoiceNumber": self.invoice_number,
                "invoiceCreatedAt": self.invoice_created_at,
                "paymentCompleted": self.payment_completed,
            },
            "nextStep": self.next_step,
            "message": self.message,
        }
