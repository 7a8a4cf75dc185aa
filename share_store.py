"""Database-backed store for ephemeral share records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import BlobKeyInUseError, CodeCollisionError
from models import FileShare
from time_utils import ensure_aware


@dataclass(frozen=True)
class ShareRecord:
    """Immutable snapshot of a file share row."""

    id: str
    code: str
    filename: str
    file_size: int
    file_type: str
    storage_path: str
    created_at: datetime
    expires_at: datetime
    downloaded: bool = False
    download_count: int = 0

    def is_expired(self, reference: datetime) -> bool:
        return reference >= self.expires_at


class ShareRecordStore:
    """Persistence operations for share records.

    Stateless: every method receives the session to work in and commits its
    own writes, so each call is one transaction.
    """

    @staticmethod
    def _to_record(entry: FileShare) -> ShareRecord:
        return ShareRecord(
            id=entry.id,
            code=entry.code,
            filename=entry.filename,
            file_size=entry.file_size,
            file_type=entry.file_type,
            storage_path=entry.storage_path,
            created_at=ensure_aware(entry.created_at),
            expires_at=ensure_aware(entry.expires_at),
            downloaded=bool(entry.downloaded),
            download_count=entry.download_count or 0,
        )

    def insert(self, db: Session, record: ShareRecord) -> ShareRecord:
        """Persist a new record.

        Raises BlobKeyInUseError if another record already owns the storage
        path, and CodeCollisionError if only the code is taken.
        """
        entry = FileShare(
            id=record.id,
            code=record.code,
            filename=record.filename,
            file_size=record.file_size,
            file_type=record.file_type,
            storage_path=record.storage_path,
            created_at=record.created_at,
            expires_at=record.expires_at,
            downloaded=False,
            download_count=0,
        )
        db.add(entry)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if self._storage_path_taken(db, record.storage_path):
                raise BlobKeyInUseError(
                    f"Blob {record.storage_path} is already shared"
                ) from exc
            raise CodeCollisionError(f"Code {record.code} is already in use") from exc
        db.refresh(entry)
        return self._to_record(entry)

    @staticmethod
    def _storage_path_taken(db: Session, storage_path: str) -> bool:
        return db.execute(
            select(FileShare.id).where(FileShare.storage_path == storage_path).limit(1)
        ).first() is not None

    def find_by_code(self, db: Session, code: str) -> Optional[ShareRecord]:
        # populate_existing: read the committed row, not a stale identity-map copy
        entry = db.execute(
            select(FileShare)
            .where(FileShare.code == code)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            return None
        return self._to_record(entry)

    def mark_downloaded(self, db: Session, share_id: str, now: datetime) -> bool:
        """Atomically flip an active record to downloaded.

        Succeeds only when the row exists, is not yet downloaded and has not
        expired at ``now``. The check and the write are one UPDATE statement,
        so of several concurrent callers exactly one sees True.
        """
        result = db.execute(
            update(FileShare)
            .where(
                FileShare.id == share_id,
                FileShare.downloaded == False,  # noqa: E712
                FileShare.expires_at > now,
            )
            .values(downloaded=True, download_count=1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def delete(self, db: Session, share_id: str) -> bool:
        """Delete one record. Returns False if it was already gone."""
        return self.delete_all(db, [share_id]) > 0

    def delete_all(self, db: Session, ids: Iterable[str]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        result = db.execute(
            delete(FileShare)
            .where(FileShare.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount

    def list_overdue(self, db: Session, now: datetime) -> List[ShareRecord]:
        """Records that are expired or already downloaded, oldest first."""
        entries = db.execute(
            select(FileShare)
            .where(or_(FileShare.expires_at <= now, FileShare.downloaded == True))  # noqa: E712
            .order_by(FileShare.expires_at.asc())
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [self._to_record(e) for e in entries]

    def count_active(self, db: Session, now: datetime) -> int:
        return db.execute(
            select(func.count(FileShare.id)).where(
                FileShare.downloaded == False,  # noqa: E712
                FileShare.expires_at > now,
            )
        ).scalar_one()


share_store = ShareRecordStore()
