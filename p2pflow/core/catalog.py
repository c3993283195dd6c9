from __future__ import annotations

COMMAND_CATALOG: list[dict[str, object]] = [
    {
        "name": "Create Purchase Order",
        "intent": "purchase_order",
        "examples": [
            "Create a purchase order",
            "Create PO",
            "Generate a purchase order",
            "Can you create a purchase order?",
            "Create PO with material P-A2026-3 quantity 5 price 1200",
        ],
        "requiresInput": False,
    },
    {
        "name": "Create Goods Receipt",
        "intent": "goods_receipt",
        "examples": [
            "Create goods for PO 4500001234",
            "Post GR for PO 4500001075",
            "Create GR for purchase order 4500001234",
            "Run goods receipt flow for 4500001234",
        ],
        "requiresInput": True,
        "inputType": "PO_NUMBER",
    },
    {
        "name": "Create Supplier Invoice",
        "intent": "supplier_invoice",
        "examples": [
            "Create supplier invoice for PO 4500001234",
            "Generate invoice using PO number 4500001234",
            "Create invoice for purchase order 4500001234",
        ],
        "requiresInput": True,
        "inputType": "PO_NUMBER",
    },
    {
        "name": "Create Payment",
        "intent": "payment",
        "examples": [
            "Make payment for invoice 5105600001",
            "Process payment for invoice 5105600001",
            "Pay invoice 5105600001",
        ],
        "requiresInput": True,
        "inputType": "INVOICE_NUMBER",
    },
    {
        "name": "Procure to Pay (End-to-End)",
        "intent": "procure_to_pay",
        "examples": [
            "Run procedure to pay",
            "Run P2P process",
            "Can you run the full procedure to pay?",
            "Execute end-to-end SAP flow",
        ],
        "requiresInput": False,
    },
]
