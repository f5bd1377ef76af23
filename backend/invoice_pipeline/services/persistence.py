"""Persistence gateway — the queries the batch pipeline runs against its tables.

Functions here never commit; the caller owns transaction boundaries. Status
updates are bulk UPDATE statements keyed by id, so they never touch loaded ORM
objects.
"""

import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy import Row, and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_pipeline.db import utcnow
from invoice_pipeline.models.batch import BatchStatus, ProcessingBatch
from invoice_pipeline.models.batch_file import BatchFile, FileStatus
from invoice_pipeline.models.extraction_prompt import ExtractionPrompt
from invoice_pipeline.models.invoice import Invoice
from invoice_pipeline.models.line_item import LineItem
from invoice_pipeline.models.vendor import Vendor
from invoice_pipeline.schemas.batch import BatchFileCreate
from invoice_pipeline.schemas.invoice import ExtractionCandidate, LineItemData
from invoice_pipeline.services.errors import (
    BatchNotFoundError,
    InvalidStateError,
    VendorNotFoundError,
)
from invoice_pipeline.services.types import BatchContext, PendingFile

# ── Batches ───────────────────────────────────────────────────────────────────


async def get_batch(db: AsyncSession, batch_id: uuid.UUID) -> ProcessingBatch | None:
    return await db.get(ProcessingBatch, batch_id, populate_existing=True)


async def get_batch_context(db: AsyncSession, batch_id: uuid.UUID) -> BatchContext | None:
    """Load the batch with its vendor name and the vendor's active prompt text, if any."""
    stmt = (
        select(
            ProcessingBatch.id,
            ProcessingBatch.vendor_id,
            Vendor.name,
            ExtractionPrompt.prompt_text,
        )
        .join(Vendor, Vendor.id == ProcessingBatch.vendor_id)
        .outerjoin(
            ExtractionPrompt,
            and_(
                ExtractionPrompt.id == Vendor.extraction_prompt_id,
                ExtractionPrompt.is_active.is_(True),
            ),
        )
        .where(ProcessingBatch.id == batch_id)
    )
    row = (await db.execute(stmt)).first()
    if row is None:
        return None
    return BatchContext(
        batch_id=row.id,
        vendor_id=row.vendor_id,
        vendor_name=row.name,
        prompt_text=row.prompt_text,
    )


async def find_vendor_id(db: AsyncSession, name: str) -> uuid.UUID | None:
    return await db.scalar(select(Vendor.id).where(Vendor.name == name))


async def create_batch(
    db: AsyncSession, vendor_id: uuid.UUID, folder_path: str | None = None
) -> ProcessingBatch:
    """Create an empty pending batch; raises VendorNotFoundError for unknown vendors."""
    if await db.get(Vendor, vendor_id) is None:
        raise VendorNotFoundError(f"Vendor {vendor_id} not found")
    batch = ProcessingBatch(
        vendor_id=vendor_id,
        folder_path=folder_path,
        total_files=0,
        status=BatchStatus.PENDING,
    )
    db.add(batch)
    await db.flush()
    return batch


async def add_files(
    db: AsyncSession, batch_id: uuid.UUID, files: Iterable[BatchFileCreate]
) -> list[BatchFile]:
    """Attach pending files to a pending batch, preserving the given order."""
    batch = await get_batch(db, batch_id)
    if batch is None:
        raise BatchNotFoundError(f"Batch {batch_id} not found")
    if batch.status != BatchStatus.PENDING:
        raise InvalidStateError(
            f"Cannot add files to batch {batch_id} in status {batch.status!r}"
        )

    offset = await db.scalar(
        select(func.count()).select_from(BatchFile).where(BatchFile.batch_id == batch_id)
    )
    created = [
        BatchFile(
            batch_id=batch_id,
            filename=f.filename,
            file_path=f.file_path,
            file_type=f.file_type,
            status=FileStatus.PENDING,
            position=(offset or 0) + i,
        )
        for i, f in enumerate(files)
    ]
    db.add_all(created)
    await db.execute(
        update(ProcessingBatch)
        .where(ProcessingBatch.id == batch_id)
        .values(total_files=ProcessingBatch.total_files + len(created))
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return created


async def list_batches(
    db: AsyncSession,
    page: int = 1,
    limit: int = 10,
    vendor_id: uuid.UUID | None = None,
    status: str | None = None,
) -> tuple[list[Row[tuple[ProcessingBatch, str]]], int]:
    """Return (rows of (batch, vendor_name), total_count), newest first."""
    filters = []
    if vendor_id is not None:
        filters.append(ProcessingBatch.vendor_id == vendor_id)
    if status:
        filters.append(ProcessingBatch.status == status)

    total = await db.scalar(select(func.count()).select_from(ProcessingBatch).where(*filters))
    stmt = (
        select(ProcessingBatch, Vendor.name)
        .outerjoin(Vendor, Vendor.id == ProcessingBatch.vendor_id)
        .where(*filters)
        .order_by(ProcessingBatch.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = list((await db.execute(stmt)).all())
    return rows, total or 0


async def mark_batch_processing(db: AsyncSession, batch_id: uuid.UUID) -> None:
    await db.execute(
        update(ProcessingBatch)
        .where(ProcessingBatch.id == batch_id)
        .values(
            status=BatchStatus.PROCESSING,
            started_at=utcnow(),
            completed_at=None,
            error_message=None,
        )
        .execution_options(synchronize_session=False)
    )


async def update_batch_counts(
    db: AsyncSession, batch_id: uuid.UUID, processed: int, failed: int
) -> int:
    """Write running counters; returns the number of batch rows touched (0 if it vanished)."""
    result: Any = await db.execute(
        update(ProcessingBatch)
        .where(ProcessingBatch.id == batch_id)
        .values(processed_files=processed, failed_files=failed)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount)


async def finish_batch(
    db: AsyncSession, batch_id: uuid.UUID, status: str, processed: int, failed: int
) -> int:
    result: Any = await db.execute(
        update(ProcessingBatch)
        .where(ProcessingBatch.id == batch_id)
        .values(
            status=status,
            processed_files=processed,
            failed_files=failed,
            completed_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount)


async def fail_batch(db: AsyncSession, batch_id: uuid.UUID, message: str) -> None:
    await db.execute(
        update(ProcessingBatch)
        .where(ProcessingBatch.id == batch_id)
        .values(status=BatchStatus.FAILED, error_message=message, completed_at=utcnow())
        .execution_options(synchronize_session=False)
    )


async def find_interrupted_batches(db: AsyncSession) -> list[uuid.UUID]:
    """Ids of batches recorded as processing."""
    result = await db.scalars(
        select(ProcessingBatch.id).where(ProcessingBatch.status == BatchStatus.PROCESSING)
    )
    return list(result.all())


# ── Batch files ───────────────────────────────────────────────────────────────


async def list_pending_files(db: AsyncSession, batch_id: uuid.UUID) -> list[PendingFile]:
    """Pending files of the batch in upload order (FIFO)."""
    stmt = (
        select(BatchFile.id, BatchFile.filename, BatchFile.file_path, BatchFile.file_type)
        .where(BatchFile.batch_id == batch_id, BatchFile.status == FileStatus.PENDING)
        .order_by(BatchFile.created_at.asc(), BatchFile.position.asc())
    )
    return [
        PendingFile(id=r.id, filename=r.filename, file_path=r.file_path, file_type=r.file_type)
        for r in (await db.execute(stmt)).all()
    ]


async def list_batch_files(
    db: AsyncSession, batch_id: uuid.UUID
) -> list[Row[tuple[BatchFile, str | None, str | None]]]:
    """All files of the batch in upload order, with their invoice number and customer."""
    stmt = (
        select(BatchFile, Invoice.invoice_number, Invoice.customer_name)
        .outerjoin(Invoice, Invoice.id == BatchFile.invoice_id)
        .where(BatchFile.batch_id == batch_id)
        .order_by(BatchFile.created_at.asc(), BatchFile.position.asc())
        .execution_options(populate_existing=True)
    )
    return list((await db.execute(stmt)).all())


async def count_file_statuses(db: AsyncSession, batch_id: uuid.UUID) -> dict[str, int]:
    stmt = (
        select(BatchFile.status, func.count())
        .where(BatchFile.batch_id == batch_id)
        .group_by(BatchFile.status)
    )
    counts = {status.value: 0 for status in FileStatus}
    for status, n in (await db.execute(stmt)).all():
        counts[status] = n
    return counts


async def _update_file(db: AsyncSession, file_id: uuid.UUID, **values: object) -> None:
    await db.execute(
        update(BatchFile)
        .where(BatchFile.id == file_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def mark_file_processing(db: AsyncSession, file_id: uuid.UUID) -> None:
    await _update_file(db, file_id, status=FileStatus.PROCESSING, error_message=None)


async def mark_file_processed(
    db: AsyncSession, file_id: uuid.UUID, invoice_id: uuid.UUID, elapsed_ms: int
) -> None:
    await _update_file(
        db,
        file_id,
        status=FileStatus.PROCESSED,
        invoice_id=invoice_id,
        processing_time_ms=elapsed_ms,
        error_message=None,
        processed_at=utcnow(),
    )


async def mark_file_failed(
    db: AsyncSession, file_id: uuid.UUID, message: str, elapsed_ms: int
) -> None:
    await _update_file(
        db,
        file_id,
        status=FileStatus.FAILED,
        invoice_id=None,
        processing_time_ms=elapsed_ms,
        error_message=message,
        processed_at=utcnow(),
    )


async def reset_failed_files(db: AsyncSession, batch_id: uuid.UUID) -> int:
    """Move failed (and orphaned processing) files back to pending. Processed files are untouched."""
    result: Any = await db.execute(
        update(BatchFile)
        .where(
            BatchFile.batch_id == batch_id,
            BatchFile.status.in_([FileStatus.FAILED, FileStatus.PROCESSING]),
        )
        .values(
            status=FileStatus.PENDING,
            error_message=None,
            invoice_id=None,
            processing_time_ms=None,
            processed_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount)


async def fail_orphaned_files(db: AsyncSession, batch_id: uuid.UUID, message: str) -> int:
    """Mark files stuck in processing as failed so a later resume picks them up."""
    result: Any = await db.execute(
        update(BatchFile)
        .where(BatchFile.batch_id == batch_id, BatchFile.status == FileStatus.PROCESSING)
        .values(status=FileStatus.FAILED, error_message=message, processed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount)


# ── Invoices ──────────────────────────────────────────────────────────────────


async def insert_invoice(
    db: AsyncSession,
    context: BatchContext,
    file: PendingFile,
    candidate: ExtractionCandidate,
    confidence_score: float,
) -> uuid.UUID:
    """Insert the invoice header row and return its id."""
    invoice = Invoice(
        **candidate.invoice_header.model_dump(),
        vendor_id=context["vendor_id"],
        batch_id=context["batch_id"],
        file_path=file["file_path"],
        file_type=file["file_type"],
        original_filename=file["filename"],
        processing_status="processed",
        confidence_score=confidence_score,
        line_item_count=len(candidate.line_items),
        processed_at=utcnow(),
    )
    db.add(invoice)
    await db.flush()
    return invoice.id


async def replace_line_items(
    db: AsyncSession, invoice_id: uuid.UUID, items: list[LineItemData]
) -> int:
    """Replace every line item of the invoice with *items* inside the caller's transaction."""
    await db.execute(
        delete(LineItem)
        .where(LineItem.invoice_id == invoice_id)
        .execution_options(synchronize_session=False)
    )
    db.add_all(LineItem(invoice_id=invoice_id, **item.model_dump()) for item in items)
    await db.flush()
    return len(items)
