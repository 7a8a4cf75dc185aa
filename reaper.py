"""
reaper.py — Periodic sweep that physically deletes spent shares.

A share is overdue once it has expired or has been downloaded. For each
overdue share the blob goes first, then the record; if the blob can't be
deleted the record is kept so the next pass retries. Every delete is
idempotent, so sweeps may overlap with each other and with downloads.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from errors import StorageError
from share_store import ShareRecordStore, share_store
from storage import StorageBackend
from time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReapResult:
    id: str
    storage_path: str
    status: str  # deleted | error
    reason: Optional[str] = None  # expired | downloaded
    error: Optional[str] = None


@dataclass
class ReapReport:
    results: List[ReapResult] = field(default_factory=list)

    @property
    def deleted(self) -> int:
        return sum(1 for r in self.results if r.status == "deleted")

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == "error")


class Reaper:

    def __init__(
        self,
        session_factory: sessionmaker,
        blobs: StorageBackend,
        store: ShareRecordStore = share_store,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.blobs = blobs
        self.store = store
        self.clock = clock

    def sweep(self, now: Optional[datetime] = None) -> ReapReport:
        """Run one pass. Never raises for a single share's failure."""
        now = now or self.clock()
        report = ReapReport()

        db: Session = self.session_factory()
        try:
            overdue = self.store.list_overdue(db, now)
            for record in overdue:
                reason = "expired" if record.is_expired(now) else "downloaded"
                try:
                    self.blobs.delete(record.storage_path)
                except StorageError as e:
                    logger.error(f"Failed to delete blob {record.storage_path}: {e}")
                    report.results.append(ReapResult(
                        id=record.id, storage_path=record.storage_path,
                        status="error", reason=reason, error=str(e),
                    ))
                    continue

                try:
                    self.store.delete(db, record.id)
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.error(f"Failed to delete share record {record.id}: {e}")
                    report.results.append(ReapResult(
                        id=record.id, storage_path=record.storage_path,
                        status="error", reason=reason, error=str(e),
                    ))
                    continue

                report.results.append(ReapResult(
                    id=record.id, storage_path=record.storage_path,
                    status="deleted", reason=reason,
                ))
        finally:
            db.close()

        if report.results:
            logger.info(f"Reaper pass: deleted={report.deleted} failed={report.failed}")
        return report

    async def run_forever(self, interval_seconds: int) -> None:
        """Sweep every ``interval_seconds`` until cancelled."""
        while True:
            try:
                await asyncio.to_thread(self.sweep)
            except Exception as exc:
                logger.exception(f"Reaper tick failed: {exc}")
            await asyncio.sleep(interval_seconds)
