from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Body, File, HTTPException, UploadFile

from p2pflow.core.errors import BulkJobBusyError, UnsupportedUploadError
from p2pflow.core.storage import save_upload
from p2pflow.extractors.bulk_records import parse_bulk_file
from p2pflow.workers.bulk import get_bulk_worker

router = APIRouter(tags=["bulk"])


@router.post("/bulk-upload")
async def bulk_upload(file: UploadFile = File(...)) -> dict:
    """Store an uploaded PO list and start a bulk job for it."""
    worker = get_bulk_worker()
    try:
        if not file.filename:
            raise HTTPException(status_code=400, detail="Uploaded file must have a filename")
        if worker.is_busy():
            raise HTTPException(status_code=409, detail="A bulk job is already running")

        safe_name = Path(file.filename).name
        stored = save_upload(safe_name, file.file)
        try:
            records = parse_bulk_file(stored, file.content_type)
        except UnsupportedUploadError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        try:
            submission = worker.submit(records, safe_name)
        except BulkJobBusyError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
    finally:
        await file.close()

    return {
        "success": True,
        "jobId": submission.job_id,
        "totalItems": submission.total_items,
        "message": f"Bulk job started with {submission.total_items} record(s)",
    }


@router.get("/bulk-status/{job_id}")
async def bulk_status(job_id: str) -> dict:
    snapshot = get_bulk_worker().jobs.snapshot(job_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="job not found")
    return snapshot


@router.get("/bulk-jobs")
async def bulk_jobs() -> dict:
    return {"items": get_bulk_worker().jobs.list_jobs()}


@router.post("/bulk-cancel")
async def bulk_cancel(payload: dict | None = Body(default=None)) -> dict:
    job_id = (payload or {}).get("jobId")
    job = get_bulk_worker().cancel(job_id)
    if job is None:
        if job_id:
            raise HTTPException(status_code=404, detail="job not found")
        return {"success": False, "jobId": None, "status": None, "message": "No bulk job is running"}
    return {"success": True, "jobId": job.job_id, "status": job.status}
