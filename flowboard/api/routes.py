from __future__ import annotations

import logging
from importlib import resources
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse

from .. import __version__
from ..driver import error_message
from ..errors import FlowboardError
from ..service import WorkflowService

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_service(request: Request) -> WorkflowService:
    return request.app.state.service


def _not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Workflow not found"})


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def dashboard() -> HTMLResponse:
    page = resources.files("flowboard").joinpath("static/dashboard.html").read_text(
        encoding="utf-8"
    )
    return HTMLResponse(page)


@router.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


@router.get("/api/stream")
async def stream(
    request: Request,
    instance_id: Optional[str] = Query(default=None, alias="instanceId"),
    service: WorkflowService = Depends(get_service),
):
    if not instance_id:
        return JSONResponse(status_code=400, content={"detail": "Missing instanceId"})
    keepalive = request.app.state.config.stream.keepalive_seconds
    return StreamingResponse(
        service.event_stream(instance_id, keepalive=keepalive),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/api/workflows")
async def list_workflows(service: WorkflowService = Depends(get_service)):
    instances = await service.list_instances()
    return [instance.to_wire() for instance in instances]


@router.get("/api/workflow/{instance_id}")
async def get_workflow(instance_id: str, service: WorkflowService = Depends(get_service)):
    instance = await service.get_instance(instance_id)
    if instance is None:
        return _not_found()
    return instance.to_wire()


@router.post("/api/workflow")
async def start_workflow(
    params: Optional[Dict[str, Any]] = Body(default=None),
    service: WorkflowService = Depends(get_service),
):
    instance = await service.start_workflow(params)
    return instance.to_wire()


@router.post("/api/workflow/{instance_id}/continue")
async def continue_workflow(
    instance_id: str, service: WorkflowService = Depends(get_service)
):
    try:
        await service.continue_workflow(instance_id)
    except FlowboardError as exc:
        logger.warning(
            "Approval could not be delivered",
            extra={"instance_id": instance_id, "error": error_message(exc)},
        )
        return JSONResponse(status_code=500, content={"detail": error_message(exc)})
    return {"success": True}


@router.post("/api/workflow/{instance_id}/retry")
async def retry_workflow(instance_id: str, service: WorkflowService = Depends(get_service)):
    instance = await service.retry_workflow(instance_id)
    if instance is None:
        return _not_found()
    return instance.to_wire()
