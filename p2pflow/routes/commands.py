from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Body, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from p2pflow.application import get_workflow_orchestrator
from p2pflow.core.catalog import COMMAND_CATALOG
from p2pflow.core.document_identifier import get_prefix_table, list_document_types
from p2pflow.core.interpreter import CommandInterpreter

router = APIRouter(tags=["commands"])


class ExecuteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    command: str = ""
    run_id: str | None = Field(default=None, alias="runId")


@router.post("/execute")
async def execute_command(payload: ExecuteRequest) -> dict:
    """Interpret a free-text command and run the matching automation flow."""
    command = payload.command.strip()
    if not command:
        raise HTTPException(status_code=400, detail="Command is required")

    item = CommandInterpreter(get_prefix_table()).parse(command)
    result = await get_workflow_orchestrator().execute(item, payload.run_id)
    return result.to_dict()


@router.get("/commands")
async def list_commands() -> dict:
    return {"commands": COMMAND_CATALOG}


@router.post("/cancel")
async def cancel_command(payload: dict | None = Body(default=None)) -> dict:
    """Cancel the run named by ``runId``, or the latest running command."""
    run_id = (payload or {}).get("runId")
    cancelled = get_workflow_orchestrator().cancel(run_id)
    message = "Cancellation requested" if cancelled else "No command is currently running"
    return {"success": True, "cancelled": cancelled, "runId": run_id, "message": message}


@router.get("/document-types")
async def document_types() -> dict:
    return {"items": list_document_types(get_prefix_table())}


@router.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "message": "Backend is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
