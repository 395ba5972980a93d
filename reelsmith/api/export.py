"""Export API endpoints - jobs run asynchronously inside the engine."""

import logging

from fastapi import APIRouter, WebSocket, status
from starlette.websockets import WebSocketDisconnect

from reelsmith.api.deps import Engine
from reelsmith.api.websocket import message_for_status, websocket_manager
from reelsmith.exceptions import JobNotFoundError
from reelsmith.schemas.export import ExportAccepted, ExportRequest, ExportStatusResponse
from reelsmith.services.job_store import JobStatus

router = APIRouter()
logger = logging.getLogger(__name__)

WS_CLOSE_NOT_FOUND = 4404


def _status_response(job: JobStatus) -> ExportStatusResponse:
    return ExportStatusResponse(
        job_id=job.job_id,
        status=job.status,
        stage=job.state.value,
        progress=job.progress,
        download_url=job.download_url,
        error=job.error,
        error_type=job.error_type,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )


@router.post(
    "/exports",
    response_model=ExportAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_export(export_request: ExportRequest, engine: Engine) -> ExportAccepted:
    """
    Start an export job.

    Returns as soon as the job is registered; poll the status endpoint or
    subscribe to the WebSocket for progress.
    """
    job_id = engine.submit(export_request)
    return ExportAccepted(job_id=job_id, status="processing")


@router.get("/exports/{job_id}", response_model=ExportStatusResponse, response_model_exclude_none=True)
async def get_export_status(job_id: str, engine: Engine) -> ExportStatusResponse:
    """Get the current status of an export job."""
    job = engine.get_status(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return _status_response(job)


@router.websocket("/ws/exports/{job_id}")
async def export_progress_ws(websocket: WebSocket, job_id: str) -> None:
    """Push progress, completion and error messages for one job."""
    engine = websocket.app.state.engine
    job = engine.get_status(job_id)
    if job is None:
        await websocket.close(code=WS_CLOSE_NOT_FOUND)
        return

    await websocket_manager.connect(websocket, job_id)
    try:
        # Current state first so late subscribers are not left waiting
        await websocket.send_json(message_for_status(job))
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"[WS] Client left job {job_id}")
    finally:
        websocket_manager.disconnect(websocket, job_id)
