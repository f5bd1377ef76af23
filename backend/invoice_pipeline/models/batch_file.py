"""BatchFile ORM model — one uploaded document within a batch."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from invoice_pipeline.db import Base, utcnow


class FileStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class FileType(StrEnum):
    PDF = "PDF"
    HTML = "HTML"


class BatchFile(Base):
    __tablename__ = "batch_files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("processing_batches.id", ondelete="CASCADE"), nullable=False
    )
    # Non-null exactly when status == processed.
    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("invoices.id"), nullable=True
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_type: Mapped[str] = mapped_column(String(10), nullable=False)
    # status: pending | processing | processed | failed
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=FileStatus.PENDING)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_time_ms: Mapped[int | None] = mapped_column(nullable=True)
    # Upload index within the batch; breaks created_at ties.
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("idx_batch_files_batch", "batch_id"),
        Index("idx_batch_files_status", "status"),
    )
