from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from codes import format_file_size
from errors import ShareStatus
from share_store import ShareRecord


class CreateShareRequest(BaseModel):
    filename: str = Field(..., min_length=1)
    size: int = Field(..., ge=0)
    type: Optional[str] = None
    blob_key: str = Field(..., min_length=1)


class ShareMetadata(BaseModel):
    filename: str
    file_size: int
    file_size_label: str
    file_type: str
    expires_at: datetime

    @classmethod
    def from_record(cls, record: ShareRecord) -> "ShareMetadata":
        return cls(
            filename=record.filename,
            file_size=record.file_size,
            file_size_label=format_file_size(record.file_size),
            file_type=record.file_type,
            expires_at=record.expires_at,
        )


class CreateShareResponse(BaseModel):
    code: str
    expires_at: datetime
    metadata: ShareMetadata


class ResolveResponse(BaseModel):
    status: ShareStatus
    metadata: Optional[ShareMetadata] = None


class DownloadFailure(BaseModel):
    status: ShareStatus


class CleanupResult(BaseModel):
    id: str
    storage_path: str
    status: str
    reason: Optional[str] = None
    error: Optional[str] = None


class CleanupResponse(BaseModel):
    message: str
    results: List[CleanupResult]
