import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import config
import models  # noqa: F401
from database import Base, SessionLocal, engine, get_db
from errors import (
    CodeSpaceExhaustedError,
    FileTooLargeError,
    InvalidInputError,
    ShareError,
    StorageError,
)
from coordinator import TransferCoordinator
from reaper import Reaper
from schemas import CleanupResponse, CleanupResult
from share_routes import router as share_router, get_coordinator
from storage import get_storage

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_reaper = None


def get_reaper() -> Reaper:
    global _reaper
    if _reaper is None:
        _reaper = Reaper(session_factory=SessionLocal, blobs=get_storage())
    return _reaper


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    reaper_task = None
    if config.REAPER_ENABLED and config.REAPER_INTERVAL_SECONDS > 0:
        reaper_task = asyncio.create_task(get_reaper().run_forever(config.REAPER_INTERVAL_SECONDS))
        logger.info(f"Reaper enabled (every {config.REAPER_INTERVAL_SECONDS}s)")
    yield
    if reaper_task is not None:
        reaper_task.cancel()
        try:
            await reaper_task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="QuickDrop API",
    description="One-time, self-destructing file transfers addressed by a 6-digit code",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(share_router)


# ─── Exception handlers ───────────────────────────────────────────────────────

@app.exception_handler(ShareError)
async def share_error_handler(request: Request, exc: ShareError):
    if isinstance(exc, FileTooLargeError):
        status_code = 413
    elif isinstance(exc, InvalidInputError):
        status_code = 400
    elif isinstance(exc, CodeSpaceExhaustedError):
        status_code = 503
    elif isinstance(exc, StorageError):
        logger.error(f"Storage failure on {request.url.path}: {exc}")
        status_code = 502
    else:
        status_code = 500
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"detail": f"{type(exc).__name__}: {str(exc)}"}
    )


# ─── Health ───────────────────────────────────────────────────────────────────

@app.get("/health", tags=["System"])
def health(
    db: Session = Depends(get_db),
    coordinator: TransferCoordinator = Depends(get_coordinator),
):
    return {
        "status": "ok",
        "service": "QuickDrop",
        "version": "1.0.0",
        "storage": coordinator.blobs.get_health(),
        "active_shares": coordinator.store.count_active(db, coordinator.clock()),
    }


# ─── Cleanup ──────────────────────────────────────────────────────────────────

@app.post("/cleanup-expired-files", response_model=CleanupResponse, tags=["System"])
def cleanup_expired_files(reaper: Reaper = Depends(get_reaper)):
    report = reaper.sweep()
    if not report.results:
        return CleanupResponse(message="No expired files to clean up", results=[])
    return CleanupResponse(
        message=f"Cleaned up {report.deleted} files",
        results=[CleanupResult(**asdict(r)) for r in report.results],
    )
