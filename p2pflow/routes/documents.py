from __future__ import annotations

from fastapi import APIRouter, HTTPException

from p2pflow.infrastructure import get_document_ledger

router = APIRouter(tags=["documents"])


@router.get("/po-status/{po_number}")
async def po_status(po_number: str) -> dict:
    """Report how far a purchase order has progressed according to the ledger."""
    po_number = po_number.strip()
    if not po_number:
        raise HTTPException(status_code=400, detail="PO number is required")
    return get_document_ledger().stage_of(po_number).to_dict()


@router.get("/po-list")
async def po_list() -> dict:
    items = get_document_ledger().list_purchase_orders()
    if not items:
        return {"poNumbers": [], "total": 0, "message": "No PO records found"}
    return {"poNumbers": items, "total": len(items), "message": f"Found {len(items)} PO record(s)"}
