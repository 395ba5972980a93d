"""WebSocket support for real-time export progress notifications.

This module provides:
- WebSocketManager: Manages WebSocket connections per export job
- ExportProgressNotifier: Engine listener that pushes status updates
- Message creation helpers: Standardized message formats
"""

import logging
from typing import Any, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from reelsmith.services.job_store import JobState, JobStatus

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Manages WebSocket connections for export progress updates.

    Supports multiple clients watching the same job.
    """

    def __init__(self):
        # job_id -> list of connected websockets
        self._connections: dict[str, list[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, job_id: str) -> None:
        """Accept and register a WebSocket connection for a job."""
        await websocket.accept()
        self._connections.setdefault(job_id, []).append(websocket)

    def disconnect(self, websocket: WebSocket, job_id: str) -> None:
        """Remove a WebSocket connection."""
        if job_id in self._connections:
            if websocket in self._connections[job_id]:
                self._connections[job_id].remove(websocket)
            if not self._connections[job_id]:
                del self._connections[job_id]

    async def broadcast(self, job_id: str, message: dict[str, Any]) -> None:
        """Broadcast a message to all clients watching a job."""
        disconnected = []
        for websocket in list(self._connections.get(job_id, [])):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                disconnected.append(websocket)

        for ws in disconnected:
            self.disconnect(ws, job_id)

    def get_connection_count(self, job_id: str) -> int:
        """Get the number of connected clients for a job."""
        return len(self._connections.get(job_id, []))


class ExportProgressNotifier:
    """Turns engine status updates into WebSocket messages."""

    def __init__(self, manager: WebSocketManager):
        self._manager = manager

    async def __call__(self, status: JobStatus) -> None:
        if self._manager.get_connection_count(status.job_id) == 0:
            return
        await self._manager.broadcast(status.job_id, message_for_status(status))


def message_for_status(status: JobStatus) -> dict[str, Any]:
    if status.state == JobState.COMPLETED:
        return create_complete_message(status.job_id, status.download_url or "")
    if status.state == JobState.FAILED:
        return create_error_message(status.job_id, status.error or "Export failed", status.error_type)
    return create_progress_message(
        job_id=status.job_id,
        stage=status.state.value,
        percent=status.progress,
        current_step=status.message or None,
    )


def create_progress_message(
    job_id: str,
    stage: str,
    percent: float,
    current_step: Optional[str] = None,
) -> dict[str, Any]:
    """Create a standardized progress message."""
    return {
        "type": "progress",
        "jobId": job_id,
        "status": "processing",
        "stage": stage,
        "percent": percent,
        "currentStep": current_step,
    }


def create_complete_message(job_id: str, download_url: str) -> dict[str, Any]:
    """Create a standardized completion message."""
    return {
        "type": "complete",
        "jobId": job_id,
        "status": "completed",
        "percent": 100,
        "downloadUrl": download_url,
    }


def create_error_message(
    job_id: str,
    error_message: str,
    error_type: Optional[str] = None,
) -> dict[str, Any]:
    """Create a standardized error message."""
    return {
        "type": "error",
        "jobId": job_id,
        "status": "failed",
        "error": error_message,
        "errorType": error_type,
    }


# Global WebSocket manager instance
websocket_manager = WebSocketManager()
progress_notifier = ExportProgressNotifier(websocket_manager)
