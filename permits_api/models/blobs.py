from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, LargeBinary, String, UniqueConstraint

from .base import Base
from .permits import utcnow


class StoredBlob(Base):
    """File header for chunked uploads, one row per stored image."""

    __tablename__ = "blob_files"

    id = Column(String(32), primary_key=True)
    filename = Column(String, nullable=False)
    content_type = Column(String, nullable=False, default="application/octet-stream")
    length = Column(Integer, nullable=False)
    chunk_size = Column(Integer, nullable=False)
    upload_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class BlobChunk(Base):
    __tablename__ = "blob_chunks"
    __table_args__ = (UniqueConstraint("file_id", "n", name="uq_blob_chunks_file_n"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(String(32), ForeignKey("blob_files.id", ondelete="CASCADE"), nullable=False, index=True)
    n = Column(Integer, nullable=False)
    data = Column(LargeBinary, nullable=False)
