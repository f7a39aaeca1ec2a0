from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from app.core.errors import ChunkStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class InitSessionResponse(CamelModel):
    session: str


class ChunkUploadResponse(CamelModel):
    status: ChunkStatus
    session: str
    chunk_index: int = Field(alias="chunkIndex")
    url: Optional[str] = None
    file_name: Optional[str] = Field(default=None, alias="fileName")


class FinalizeRequest(CamelModel):
    session: str = Field(min_length=1)
    total_chunks: int = Field(alias="totalChunks", gt=0)


class FinalizeResponse(CamelModel):
    status: ChunkStatus = ChunkStatus.ACCEPTED
    message: str = "Upload complete"
    url: str
    file_name: str = Field(alias="fileName")
    size: int


class SessionStatusResponse(CamelModel):
    session: str
    status: str
    total_chunks: Optional[int] = Field(default=None, alias="totalChunks")
    accepted_chunks: List[int] = Field(default_factory=list, alias="acceptedChunks")
    bytes_written: int = Field(default=0, alias="bytesWritten")


class ErrorResponse(BaseModel):
    status: ChunkStatus
    detail: str
    missing: Optional[List[int]] = None
