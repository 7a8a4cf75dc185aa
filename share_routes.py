# share_routes.py

import io
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from coordinator import TransferCoordinator
from database import get_db
from errors import ShareStatus
from schemas import (
    CreateShareRequest,
    CreateShareResponse,
    DownloadFailure,
    ResolveResponse,
    ShareMetadata,
)
from share_store import ShareRecord
from storage import get_storage


router = APIRouter(tags=["Shares"])

STATUS_HTTP_CODES = {
    ShareStatus.FOUND: 200,
    ShareStatus.NOT_FOUND: 404,
    ShareStatus.EXPIRED: 410,
    ShareStatus.ALREADY_DOWNLOADED: 410,
    ShareStatus.INVALID_CODE: 400,
    ShareStatus.STORAGE_ERROR: 502,
}

_coordinator = None


def get_coordinator() -> TransferCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = TransferCoordinator(blobs=get_storage())
    return _coordinator


def _created(record: ShareRecord) -> JSONResponse:
    body = CreateShareResponse(
        code=record.code,
        expires_at=record.expires_at,
        metadata=ShareMetadata.from_record(record),
    )
    return JSONResponse(status_code=201, content=body.model_dump(mode="json"))


# ─── CREATE ──────────────────────────────────────────────

@router.post("/shares", response_model=CreateShareResponse, status_code=201)
def create_share(
    req: CreateShareRequest,
    db: Session = Depends(get_db),
    coordinator: TransferCoordinator = Depends(get_coordinator),
):
    """Issue a code for a blob the caller has already stored."""
    record = coordinator.create_share(
        db,
        filename=req.filename,
        file_size=req.size,
        file_type=req.type,
        storage_key=req.blob_key,
    )
    return _created(record)


@router.post("/upload", response_model=CreateShareResponse, status_code=201)
def upload_file(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    coordinator: TransferCoordinator = Depends(get_coordinator),
):
    # One byte past the limit is enough for the size check to reject it.
    content = file.file.read(coordinator.max_file_size + 1)

    record = coordinator.upload_and_share(
        db,
        filename=file.filename or "",
        file_type=file.content_type,
        data=content,
    )
    return _created(record)


# ─── RESOLVE ─────────────────────────────────────────────

@router.get("/shares/{code}", response_model=ResolveResponse)
def resolve_share(
    code: str,
    db: Session = Depends(get_db),
    coordinator: TransferCoordinator = Depends(get_coordinator),
):
    result = coordinator.resolve(db, code)
    body = ResolveResponse(status=result.status)
    if result.status is ShareStatus.FOUND:
        body.metadata = ShareMetadata.from_record(result.record)
    return JSONResponse(
        status_code=STATUS_HTTP_CODES[result.status],
        content=body.model_dump(mode="json"),
    )


# ─── DOWNLOAD ────────────────────────────────────────────

@router.post("/shares/{code}/download")
def download_share(
    code: str,
    db: Session = Depends(get_db),
    coordinator: TransferCoordinator = Depends(get_coordinator),
):
    result = coordinator.complete_download(db, code)
    if result.status is not ShareStatus.FOUND:
        return JSONResponse(
            status_code=STATUS_HTTP_CODES[result.status],
            content=DownloadFailure(status=result.status).model_dump(mode="json"),
        )

    record = result.record
    ascii_name = record.filename.encode("ascii", "ignore").decode() or "download"
    disposition = (
        f'attachment; filename="{ascii_name.replace(chr(34), "")}"; '
        f"filename*=UTF-8''{quote(record.filename)}"
    )
    return StreamingResponse(
        io.BytesIO(result.data),
        media_type=record.file_type or "application/octet-stream",
        headers={
            "Content-Disposition": disposition,
            "Content-Length": str(len(result.data)),
        },
    )
