"""Shared fixtures: isolated SQLite database, local blob store, fake clock."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

# Must be set before any project module reads config at import time.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("USE_MINIO", "false")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="quickdrop-test-"))
os.environ.setdefault("REAPER_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from coordinator import TransferCoordinator
from database import Base
from reaper import Reaper
from storage import StorageBackend

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)

    def at(self, seconds: float) -> None:
        """Jump to ``seconds`` after the start time."""
        self.now = T0 + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'shares.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def blobs(tmp_path):
    return StorageBackend(use_minio=False, upload_dir=str(tmp_path / "blobs"))


@pytest.fixture
def coordinator(blobs, clock):
    return TransferCoordinator(blobs=blobs, clock=clock)


@pytest.fixture
def reaper(session_factory, blobs, clock):
    return Reaper(session_factory=session_factory, blobs=blobs, clock=clock)


@pytest.fixture
def stored_blob(blobs):
    """Put a 10-byte blob and return its key."""
    key = "uploads/test-blob"
    blobs.put(key, b"0123456789")
    return key
