import logging
import mimetypes
from pathlib import Path
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse
from app.api.deps import get_settings
from app.core.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/{file_name}")
async def get_file(file_name: str, settings: Settings = Depends(get_settings)):
    """
    GET /files/{file_name} - Download a finalized upload
    """
    if Path(file_name).name != file_name or file_name in ("", ".", ".."):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found.")

    file_path = Path(settings.UPLOAD_DIR) / file_name
    if not file_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found.")

    media_type, _ = mimetypes.guess_type(file_name)
    return FileResponse(
        path=file_path,
        filename=file_name,
        media_type=media_type or "application/octet-stream"
    )
