"""Serves published exports from local storage during development."""

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from reelsmith.config import get_settings
from reelsmith.services.result_publisher import content_type_for
from reelsmith.services.storage_service import LocalStorageService, get_storage_service

router = APIRouter()


@router.get("/files/{storage_key:path}")
async def get_file(storage_key: str) -> FileResponse:
    """Serve a file from local storage."""
    if not get_settings().use_local_storage:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Local storage not enabled",
        )

    storage = get_storage_service()
    if not isinstance(storage, LocalStorageService):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Local storage not enabled")
    try:
        file_path = storage.get_file_path(storage_key)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if not file_path.exists():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )

    return FileResponse(
        path=file_path,
        media_type=content_type_for(file_path),
        filename=file_path.name,
    )
