"""Batch processing API router."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_pipeline.db import get_session
from invoice_pipeline.models.batch import BatchStatus
from invoice_pipeline.schemas.batch import (
    BatchCreateRequest,
    BatchDetail,
    BatchFilesRequest,
    BatchFileSummary,
    BatchList,
    BatchProgress,
    BatchRunAccepted,
    BatchSummary,
)
from invoice_pipeline.services import persistence
from invoice_pipeline.services.errors import (
    AlreadyProcessingError,
    BatchNotFoundError,
    InvalidStateError,
    VendorNotFoundError,
)
from invoice_pipeline.services.orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


def get_orchestrator(request: Request) -> BatchOrchestrator:
    return request.app.state.orchestrator  # type: ignore[no-any-return]


async def _summary(db: AsyncSession, batch_id: uuid.UUID) -> BatchSummary:
    batch = await persistence.get_batch(db, batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    context = await persistence.get_batch_context(db, batch_id)
    return BatchSummary.model_validate(batch).model_copy(
        update={"vendor_name": context["vendor_name"] if context else None}
    )


@router.post("", status_code=201)
async def create_batch(
    body: BatchCreateRequest, db: AsyncSession = Depends(get_session)
) -> BatchSummary:
    """Create an empty pending batch for a vendor."""
    try:
        batch = await persistence.create_batch(db, body.vendor_id, body.folder_path)
    except VendorNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    await db.commit()
    logger.info("Created batch %s for vendor %s", batch.id, body.vendor_id)
    return await _summary(db, batch.id)


@router.post("/{batch_id}/files", status_code=201)
async def add_files(
    batch_id: uuid.UUID, body: BatchFilesRequest, db: AsyncSession = Depends(get_session)
) -> BatchDetail:
    """Attach uploaded documents to a pending batch."""
    try:
        await persistence.add_files(db, batch_id, body.files)
    except BatchNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    await db.commit()
    return await get_batch(batch_id, db)


@router.get("")
async def list_batches(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    vendor_id: uuid.UUID | None = None,
    status: BatchStatus | None = None,
    db: AsyncSession = Depends(get_session),
) -> BatchList:
    """List batches newest first."""
    rows, total = await persistence.list_batches(db, page, limit, vendor_id, status)
    return BatchList(
        items=[
            BatchSummary.model_validate(batch).model_copy(update={"vendor_name": name})
            for batch, name in rows
        ],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{batch_id}")
async def get_batch(batch_id: uuid.UUID, db: AsyncSession = Depends(get_session)) -> BatchDetail:
    """Return a batch with its files in processing order."""
    summary = await _summary(db, batch_id)
    files = [
        BatchFileSummary.model_validate(f).model_copy(
            update={"invoice_number": number, "customer_name": customer}
        )
        for f, number, customer in await persistence.list_batch_files(db, batch_id)
    ]
    return BatchDetail(batch=summary, files=files)


@router.post("/{batch_id}/process", status_code=202)
async def process_batch(
    batch_id: uuid.UUID, orchestrator: BatchOrchestrator = Depends(get_orchestrator)
) -> BatchRunAccepted:
    """Start processing a pending batch in the background."""
    try:
        await orchestrator.schedule_start(batch_id)
    except BatchNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (AlreadyProcessingError, InvalidStateError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return BatchRunAccepted(
        batch_id=batch_id, status=BatchStatus.PROCESSING, message="Batch processing started"
    )


@router.post("/{batch_id}/resume", status_code=202)
async def resume_batch(
    batch_id: uuid.UUID, orchestrator: BatchOrchestrator = Depends(get_orchestrator)
) -> BatchRunAccepted:
    """Retry the failed files of a failed or partial batch in the background."""
    try:
        await orchestrator.schedule_resume(batch_id)
    except BatchNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (AlreadyProcessingError, InvalidStateError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return BatchRunAccepted(
        batch_id=batch_id, status=BatchStatus.PROCESSING, message="Batch processing resumed"
    )


@router.get("/{batch_id}/progress")
async def batch_progress(
    batch_id: uuid.UUID,
    include_files: bool = False,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> BatchProgress:
    try:
        return await orchestrator.get_progress(batch_id, include_files=include_files)
    except BatchNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
