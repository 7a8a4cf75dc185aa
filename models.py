import uuid

from sqlalchemy import Column, String, DateTime, BigInteger, Integer, Boolean, Index

from database import Base


# ─────────────────────────────────────────────────────────────
# Ephemeral File Share
# ─────────────────────────────────────────────────────────────
class FileShare(Base):
    __tablename__ = "file_shares"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column(String(16), nullable=False)
    filename = Column(String, nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0)
    file_type = Column(String, nullable=False, default="application/octet-stream")
    storage_path = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    downloaded = Column(Boolean, nullable=False, default=False, index=True)
    download_count = Column(Integer, nullable=False, default=0)

    # A row stays in the table until the reaper removes it, so the code is
    # held until then and lookups by code are never ambiguous. Each blob
    # backs exactly one row.
    __table_args__ = (
        Index("ix_file_shares_code", "code", unique=True),
        Index("ix_file_shares_storage_path", "storage_path", unique=True),
    )

    def __repr__(self):
        return f"<FileShare(id={self.id}, code={self.code}, downloaded={self.downloaded})>"
