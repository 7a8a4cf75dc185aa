"""
coordinator.py — Ephemeral transfer coordinator.

Owns the share lifecycle: Active -> Downloaded | Expired -> Deleted.
Logical visibility is decided here by comparing ``expires_at`` against the
shared clock; physical deletion of expired and downloaded shares belongs
to the reaper.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

import config
from codes import format_file_size, generate_code, is_valid_code
from errors import (
    CodeCollisionError,
    CodeSpaceExhaustedError,
    FileTooLargeError,
    InvalidInputError,
    ShareStatus,
    StorageError,
)
from share_store import ShareRecord, ShareRecordStore, share_store
from storage import StorageBackend
from time_utils import utc_now

logger = logging.getLogger(__name__)

UPLOAD_PREFIX = "uploads"


@dataclass(frozen=True)
class ResolveResult:
    status: ShareStatus
    record: Optional[ShareRecord] = None


@dataclass(frozen=True)
class DownloadResult:
    status: ShareStatus
    record: Optional[ShareRecord] = None
    data: Optional[bytes] = None


class TransferCoordinator:
    """Creates shares and serves each one to at most one receiver."""

    def __init__(
        self,
        blobs: StorageBackend,
        store: ShareRecordStore = share_store,
        clock: Callable[[], datetime] = utc_now,
        ttl: timedelta = timedelta(minutes=config.SHARE_TTL_MINUTES),
        code_length: int = config.CODE_LENGTH,
        max_attempts: int = config.CODE_MAX_ATTEMPTS,
        max_file_size: int = config.MAX_FILE_SIZE,
        code_factory: Callable[[int], str] = generate_code,
    ) -> None:
        self.blobs = blobs
        self.store = store
        self.clock = clock
        self.ttl = ttl
        self.code_length = code_length
        self.max_attempts = max(1, max_attempts)
        self.max_file_size = max_file_size
        self._code_factory = code_factory

    # ─── Create ─────────────────────────────────────────────

    def _validate_file(self, filename: str, file_size: int) -> None:
        if not filename or not filename.strip():
            raise InvalidInputError("filename is required")
        if file_size is None or file_size < 0:
            raise InvalidInputError("file size must be a non-negative integer")
        if file_size > self.max_file_size:
            raise FileTooLargeError(
                f"File size must be at most {format_file_size(self.max_file_size)}"
            )

    def create_share(
        self,
        db: Session,
        *,
        filename: str,
        file_size: int,
        file_type: Optional[str],
        storage_key: str,
    ) -> ShareRecord:
        """Register an already stored blob and issue a code for it."""
        self._validate_file(filename, file_size)
        if not storage_key or not storage_key.strip():
            raise InvalidInputError("storage key is required")

        share_id = str(uuid.uuid4())
        for attempt in range(1, self.max_attempts + 1):
            now = self.clock()
            candidate = ShareRecord(
                id=share_id,
                code=self._code_factory(self.code_length),
                filename=filename.strip(),
                file_size=int(file_size),
                file_type=file_type or "application/octet-stream",
                storage_path=storage_key,
                created_at=now,
                expires_at=now + self.ttl,
            )
            try:
                record = self.store.insert(db, candidate)
            except CodeCollisionError:
                logger.debug(f"Code collision on attempt {attempt}, retrying")
                continue
            logger.info(f"Share {record.id} created, expires {record.expires_at.isoformat()}")
            return record

        raise CodeSpaceExhaustedError(
            f"No free share code after {self.max_attempts} attempts"
        )

    def upload_and_share(
        self,
        db: Session,
        *,
        filename: str,
        file_type: Optional[str],
        data: bytes,
    ) -> ShareRecord:
        """Store the bytes, then create the share that points at them."""
        self._validate_file(filename, len(data))

        storage_key = f"{UPLOAD_PREFIX}/{uuid.uuid4()}"
        self.blobs.put(storage_key, data, content_type=file_type or "application/octet-stream")
        try:
            return self.create_share(
                db,
                filename=filename,
                file_size=len(data),
                file_type=file_type,
                storage_key=storage_key,
            )
        except Exception:
            # No record will ever point at this blob, so the reaper can't find it.
            try:
                self.blobs.delete(storage_key)
            except StorageError as e:
                logger.error(f"Orphaned blob {storage_key} could not be removed: {e}")
            raise

    # ─── Resolve ────────────────────────────────────────────

    def _classify(self, record: Optional[ShareRecord], now: datetime) -> ShareStatus:
        if record is None:
            return ShareStatus.NOT_FOUND
        if record.downloaded:
            return ShareStatus.ALREADY_DOWNLOADED
        if record.is_expired(now):
            return ShareStatus.EXPIRED
        return ShareStatus.FOUND

    def resolve(self, db: Session, code: str) -> ResolveResult:
        """Look a code up for display. Never mutates state."""
        if not is_valid_code(code, self.code_length):
            return ResolveResult(ShareStatus.INVALID_CODE)

        record = self.store.find_by_code(db, code)
        status = self._classify(record, self.clock())
        if status is ShareStatus.EXPIRED:
            logger.debug(f"Share {record.id} resolved after expiry; left for the reaper")
        return ResolveResult(status, record)

    # ─── Download ───────────────────────────────────────────

    def complete_download(self, db: Session, code: str) -> DownloadResult:
        """Consume the share and return its bytes.

        The downloaded flag is set before the blob is read, so the share is
        spent even when the read fails. The blob is deleted afterwards in
        every case; the record stays flagged until the reaper removes it.
        """
        if not is_valid_code(code, self.code_length):
            return DownloadResult(ShareStatus.INVALID_CODE)

        record = self.store.find_by_code(db, code)
        now = self.clock()
        status = self._classify(record, now)
        if status is not ShareStatus.FOUND:
            return DownloadResult(status, record)

        if not self.store.mark_downloaded(db, record.id, now):
            # Lost the race, or the row vanished or expired in between.
            latest = self.store.find_by_code(db, code)
            status = self._classify(latest, self.clock())
            if status is ShareStatus.FOUND:
                status = ShareStatus.ALREADY_DOWNLOADED
            return DownloadResult(status, latest)

        consumed = replace(record, downloaded=True, download_count=1)
        try:
            data = self.blobs.get(record.storage_path)
        except StorageError as e:
            logger.error(f"Share {record.id} consumed but blob read failed: {e}")
            self._discard_blob(record)
            return DownloadResult(ShareStatus.STORAGE_ERROR, consumed)

        self._discard_blob(record)
        logger.info(f"Share {record.id} downloaded ({record.file_size} bytes)")
        return DownloadResult(ShareStatus.FOUND, consumed, data)

    def _discard_blob(self, record: ShareRecord) -> None:
        try:
            self.blobs.delete(record.storage_path)
        except StorageError as e:
            logger.warning(f"Inline cleanup of {record.storage_path} failed, reaper will retry: {e}")
