"""ProcessingBatch ORM model — one bulk run over a vendor's uploaded documents."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from invoice_pipeline.db import Base, utcnow


class BatchStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


RESUMABLE_STATUSES = frozenset({BatchStatus.FAILED, BatchStatus.PARTIAL})


class ProcessingBatch(Base):
    __tablename__ = "processing_batches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vendors.id"), nullable=False, index=True
    )
    folder_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    total_files: Mapped[int] = mapped_column(nullable=False, default=0)
    processed_files: Mapped[int] = mapped_column(nullable=False, default=0)
    failed_files: Mapped[int] = mapped_column(nullable=False, default=0)
    # status: pending | processing | completed | partial | failed
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=BatchStatus.PENDING, index=True
    )
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Set only when the whole run aborts; per-file errors live on batch_files.
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
