import logging
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile
from app.api.deps import get_settings, get_upload_service
from app.core.config import Settings
from app.core.errors import CallerError
from app.schemas.upload import (
    ChunkUploadResponse, ErrorResponse, FinalizeRequest, FinalizeResponse, InitSessionResponse,
    SessionStatusResponse
)
from app.services.upload_service import UploadService

logger = logging.getLogger(__name__)

router = APIRouter(
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    }
)


def _parse_int(name: str, raw: Optional[str], minimum: int, session_id: Optional[str] = None) -> int:
    if raw is None or not str(raw).strip():
        raise CallerError(f"{name} is required", session_id)
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise CallerError(f"{name} must be an integer, got {raw!r}", session_id)
    if value < minimum:
        raise CallerError(f"{name} must be >= {minimum}, got {value}", session_id)
    return value


async def _receive_chunk(
    service: UploadService,
    settings: Settings,
    session: Optional[str],
    chunk_index: Optional[str],
    total_chunks: Optional[str],
    file_name: Optional[str],
    video_chunk: Optional[UploadFile],
    require_total: bool,
) -> ChunkUploadResponse:
    try:
        if not session or not session.strip():
            raise CallerError("session is required")
        index = _parse_int("chunkIndex", chunk_index, 0, session)
        total = None
        if require_total or (total_chunks is not None and str(total_chunks).strip()):
            total = _parse_int("totalChunks", total_chunks, 1, session)
            if total > settings.MAX_TOTAL_CHUNKS:
                raise CallerError(
                    f"totalChunks {total} exceeds the limit of {settings.MAX_TOTAL_CHUNKS}", session
                )
        if video_chunk is None:
            raise CallerError("videoChunk file is required", session)

        payload = await video_chunk.read()
        result = await service.accept_chunk(session, index, total, payload, file_name)
    finally:
        # the temporary upload is released for duplicates and errors alike
        if video_chunk is not None:
            await video_chunk.close()

    logger.info(f"Chunk {index} for session {session}: {result.status.value}")
    return ChunkUploadResponse(
        status=result.status,
        session=session,
        chunk_index=index,
        url=result.artifact.url if result.artifact else None,
        file_name=result.artifact.name if result.artifact else None,
    )


@router.post("/upload/init", response_model=InitSessionResponse)
async def init_session(service: UploadService = Depends(get_upload_service)):
    """Issue a server-generated session id. Client-generated ids are accepted as well."""
    return InitSessionResponse(session=service.new_session_id())


@router.post("/upload", response_model=ChunkUploadResponse, response_model_exclude_none=True)
async def upload_chunk(
    session: Optional[str] = Form(None),
    chunkIndex: Optional[str] = Form(None),
    totalChunks: Optional[str] = Form(None),
    fileName: Optional[str] = Form(None),
    videoChunk: Optional[UploadFile] = File(None),
    service: UploadService = Depends(get_upload_service),
    settings: Settings = Depends(get_settings),
):
    """
    Upload one chunk of a file whose chunk count is known up front.
    The response for the chunk that completes the session carries the artifact url.
    """
    return await _receive_chunk(
        service, settings, session, chunkIndex, totalChunks, fileName, videoChunk, require_total=True
    )


@router.post("/upload-screen-recording", response_model=ChunkUploadResponse, response_model_exclude_none=True)
async def upload_recording_chunk(
    session: Optional[str] = Form(None),
    chunkIndex: Optional[str] = Form(None),
    totalChunks: Optional[str] = Form(None),
    fileName: Optional[str] = Form(None),
    videoChunk: Optional[UploadFile] = File(None),
    service: UploadService = Depends(get_upload_service),
    settings: Settings = Depends(get_settings),
):
    """
    Upload one chunk of a live recording. The total is unknown until the
    recording stops and is declared by POST /finalize.
    """
    return await _receive_chunk(
        service, settings, session, chunkIndex, totalChunks, fileName, videoChunk, require_total=False
    )


@router.post("/finalize", response_model=FinalizeResponse)
async def finalize_upload(
    req: FinalizeRequest,
    service: UploadService = Depends(get_upload_service),
    settings: Settings = Depends(get_settings),
):
    if req.total_chunks > settings.MAX_TOTAL_CHUNKS:
        raise CallerError(f"totalChunks {req.total_chunks} exceeds the limit of {settings.MAX_TOTAL_CHUNKS}", req.session)
    artifact = await service.finalize(req.session, req.total_chunks)
    return FinalizeResponse(url=artifact.url, file_name=artifact.name, size=artifact.size)


@router.get("/upload/{session}/status", response_model=SessionStatusResponse)
async def get_session_status(session: str, service: UploadService = Depends(get_upload_service)):
    """Accepted chunk indices, so an interrupted client can resume with only the missing ones."""
    return SessionStatusResponse(**await service.session_status(session))


@router.delete("/upload/{session}")
async def abort_session(session: str, service: UploadService = Depends(get_upload_service)):
    await service.abort(session)
    return {"status": "success", "message": f"Upload session {session} aborted."}
