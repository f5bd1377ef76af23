"""Batch orchestrator — owns the batch/file state machines and the drive loop.

A run claims the batch id in an in-process registry, moves the batch to
``processing`` and then walks its pending files strictly in upload order. Every
file transition is committed as soon as it happens, and the running counters
are recomputed through a separate session after each file so progress stays
visible while the main session is busy. Per-file failures are recorded and the
loop moves on; only database loss or a vanished batch aborts the run.
"""

import asyncio
import logging
import math
import time
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoice_pipeline.db import is_connectivity_error
from invoice_pipeline.models.batch import RESUMABLE_STATUSES, BatchStatus
from invoice_pipeline.models.batch_file import FileStatus
from invoice_pipeline.schemas.batch import BatchFileSummary, BatchProgress
from invoice_pipeline.services import persistence
from invoice_pipeline.services.errors import (
    AlreadyProcessingError,
    BatchNotFoundError,
    DocumentProcessingError,
    FatalOrchestratorError,
    InvalidStateError,
)
from invoice_pipeline.services.file_processor import FileProcessor
from invoice_pipeline.services.types import (
    BatchContext,
    BatchRunResult,
    FileOutcome,
    PendingFile,
)

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Processing interrupted before completion"


class InFlightRegistry:
    """Ids of batches with a run in progress in this process.

    claim() and release() never await, so a check-and-insert cannot interleave
    with another coroutine's.
    """

    def __init__(self) -> None:
        self._ids: set[uuid.UUID] = set()

    def claim(self, batch_id: uuid.UUID) -> None:
        if batch_id in self._ids:
            raise AlreadyProcessingError(f"Batch {batch_id} is already being processed")
        self._ids.add(batch_id)

    def release(self, batch_id: uuid.UUID) -> None:
        self._ids.discard(batch_id)

    def __contains__(self, batch_id: object) -> bool:
        return batch_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


def derive_batch_status(processed: int, failed: int) -> BatchStatus:
    """Terminal status of a batch whose pending files are exhausted."""
    if failed > 0 and processed == 0:
        return BatchStatus.FAILED
    if failed > 0:
        return BatchStatus.PARTIAL
    return BatchStatus.COMPLETED


def completion_percentage(total: int, processed: int, failed: int) -> int:
    if total <= 0:
        return 0
    return min(100, math.floor((processed + failed) / total * 100 + 0.5))


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class BatchOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        processor: FileProcessor | None = None,
        registry: InFlightRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._processor = processor or FileProcessor()
        self._registry = registry or InFlightRegistry()
        self._tasks: set[asyncio.Task[BatchRunResult | None]] = set()

    def is_processing(self, batch_id: uuid.UUID) -> bool:
        return batch_id in self._registry

    # ── Trigger operations ────────────────────────────────────────────────────

    async def start_batch(self, batch_id: uuid.UUID) -> BatchRunResult:
        """Run a pending batch to completion and return the per-file outcomes.

        Raises AlreadyProcessingError, BatchNotFoundError or InvalidStateError
        before touching any state, and FatalOrchestratorError if the run aborts.
        """
        await self._begin(batch_id, resume=False)
        return await self._drive(batch_id)

    async def resume_batch(self, batch_id: uuid.UUID) -> BatchRunResult:
        """Re-drive the failed files of a failed or partial batch."""
        await self._begin(batch_id, resume=True)
        return await self._drive(batch_id)

    async def schedule_start(self, batch_id: uuid.UUID) -> None:
        """Validate and start the batch, then run the loop in a background task."""
        await self._begin(batch_id, resume=False)
        self._spawn(batch_id)

    async def schedule_resume(self, batch_id: uuid.UUID) -> None:
        await self._begin(batch_id, resume=True)
        self._spawn(batch_id)

    async def get_progress(self, batch_id: uuid.UUID, include_files: bool = False) -> BatchProgress:
        async with self._session_factory() as db:
            batch = await persistence.get_batch(db, batch_id)
            if batch is None:
                raise BatchNotFoundError(f"Batch {batch_id} not found")
            counts = await persistence.count_file_statuses(db, batch_id)
            files = None
            if include_files:
                files = [
                    BatchFileSummary.model_validate(f).model_copy(
                        update={"invoice_number": number, "customer_name": customer}
                    )
                    for f, number, customer in await persistence.list_batch_files(db, batch_id)
                ]

        processed = counts[FileStatus.PROCESSED]
        failed = counts[FileStatus.FAILED]
        return BatchProgress(
            batch_id=batch.id,
            status=batch.status,
            total_files=batch.total_files,
            processed_files=processed,
            failed_files=failed,
            pending_files=counts[FileStatus.PENDING],
            processing_files=counts[FileStatus.PROCESSING],
            completion_percentage=completion_percentage(batch.total_files, processed, failed),
            started_at=batch.started_at,
            completed_at=batch.completed_at,
            error_message=batch.error_message,
            files=files,
        )

    async def recover_interrupted_batches(self) -> list[uuid.UUID]:
        """Fail batches left in ``processing`` by a previous process.

        Only safe at startup, before this orchestrator has claimed anything.
        """
        async with self._session_factory() as db:
            stale = [
                batch_id
                for batch_id in await persistence.find_interrupted_batches(db)
                if batch_id not in self._registry
            ]
            for batch_id in stale:
                await persistence.fail_orphaned_files(db, batch_id, INTERRUPTED_MESSAGE)
                counts = await persistence.count_file_statuses(db, batch_id)
                await persistence.update_batch_counts(
                    db, batch_id, counts[FileStatus.PROCESSED], counts[FileStatus.FAILED]
                )
                await persistence.fail_batch(db, batch_id, INTERRUPTED_MESSAGE)
            await db.commit()
        for batch_id in stale:
            logger.warning("Batch %s was interrupted; marked failed", batch_id)
        return stale

    async def drain(self) -> None:
        """Wait for every background run started by this orchestrator."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ── Run lifecycle ─────────────────────────────────────────────────────────

    async def _begin(self, batch_id: uuid.UUID, resume: bool) -> None:
        """Claim the batch and move it to ``processing``; release the claim on failure."""
        # Must happen before the first await.
        self._registry.claim(batch_id)
        try:
            async with self._session_factory() as db:
                batch = await persistence.get_batch(db, batch_id)
                if batch is None:
                    raise BatchNotFoundError(f"Batch {batch_id} not found")
                if resume:
                    if batch.status not in RESUMABLE_STATUSES:
                        raise InvalidStateError(
                            f"Batch {batch_id} is {batch.status}; only failed or partial "
                            "batches can be resumed"
                        )
                    reset = await persistence.reset_failed_files(db, batch_id)
                    counts = await persistence.count_file_statuses(db, batch_id)
                    await persistence.update_batch_counts(
                        db, batch_id, counts[FileStatus.PROCESSED], counts[FileStatus.FAILED]
                    )
                    logger.info("Resuming batch %s: %d file(s) reset to pending", batch_id, reset)
                elif batch.status != BatchStatus.PENDING:
                    raise InvalidStateError(
                        f"Batch {batch_id} is {batch.status}; only pending batches can be started"
                    )
                else:
                    logger.info("Starting batch %s (%d files)", batch_id, batch.total_files)
                await persistence.mark_batch_processing(db, batch_id)
                await db.commit()
        except BaseException:
            self._registry.release(batch_id)
            raise

    def _spawn(self, batch_id: uuid.UUID) -> None:
        task = asyncio.create_task(self._run_in_background(batch_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_in_background(self, batch_id: uuid.UUID) -> BatchRunResult | None:
        try:
            return await self._drive(batch_id)
        except FatalOrchestratorError:
            # Already logged and recorded on the batch by _drive.
            return None

    async def _drive(self, batch_id: uuid.UUID) -> BatchRunResult:
        """Process pending files in FIFO order, then commit the terminal status.

        The caller must already hold the registry claim; it is released here.
        """
        results: list[FileOutcome] = []
        try:
            try:
                async with self._session_factory() as db:
                    context = await persistence.get_batch_context(db, batch_id)
                    if context is None:
                        raise FatalOrchestratorError(f"Batch {batch_id} no longer exists")

                    for file in await persistence.list_pending_files(db, batch_id):
                        results.append(await self._step(db, file, context))
                        await self._publish_progress(batch_id)

                    counts = await persistence.count_file_statuses(db, batch_id)
                    processed = counts[FileStatus.PROCESSED]
                    failed = counts[FileStatus.FAILED]
                    status = derive_batch_status(processed, failed)
                    if not await persistence.finish_batch(db, batch_id, status, processed, failed):
                        raise FatalOrchestratorError(f"Batch {batch_id} no longer exists")
                    await db.commit()
            except FatalOrchestratorError as exc:
                await self._fail_batch(batch_id, str(exc))
                raise
            except SQLAlchemyError as exc:
                message = f"Database error: {exc}"
                await self._fail_batch(batch_id, message)
                raise FatalOrchestratorError(message) from exc
            except Exception as exc:
                logger.exception("Batch %s: unexpected error in the drive loop", batch_id)
                message = f"Unexpected error: {exc}"
                await self._fail_batch(batch_id, message)
                raise FatalOrchestratorError(message) from exc
        finally:
            self._registry.release(batch_id)

        logger.info(
            "Batch %s finished: %s (%d processed, %d failed)", batch_id, status, processed, failed
        )
        return BatchRunResult(
            batch_id=batch_id,
            status=status,
            processed_count=processed,
            failed_count=failed,
            results=results,
        )

    async def _step(self, db: AsyncSession, file: PendingFile, context: BatchContext) -> FileOutcome:
        """Drive one file from pending to processed or failed, committing each transition."""
        started = time.perf_counter()
        await persistence.mark_file_processing(db, file["id"])
        await db.commit()
        logger.info("Processing %s (batch %s)", file["filename"], context["batch_id"])

        try:
            processed = await self._processor.process(db, file, context)
        except DocumentProcessingError as exc:
            error = str(exc)
        except FatalOrchestratorError:
            raise
        except Exception as exc:
            if isinstance(exc, SQLAlchemyError) and is_connectivity_error(exc):
                raise
            error = f"Unexpected error: {exc}"
        else:
            elapsed = _elapsed_ms(started)
            await persistence.mark_file_processed(db, file["id"], processed["invoice_id"], elapsed)
            await db.commit()
            logger.info(
                "Processed %s in %d ms (confidence %.2f, %d line items)",
                file["filename"],
                elapsed,
                processed["confidence_score"],
                processed["line_item_count"],
            )
            return FileOutcome(
                file_id=file["id"],
                filename=file["filename"],
                status=FileStatus.PROCESSED,
                invoice_id=processed["invoice_id"],
                error=None,
                processing_time_ms=elapsed,
            )

        # Discard any invoice or line-item rows flushed before the failure.
        await db.rollback()
        elapsed = _elapsed_ms(started)
        await persistence.mark_file_failed(db, file["id"], error, elapsed)
        await db.commit()
        logger.warning("Failed %s: %s", file["filename"], error)
        return FileOutcome(
            file_id=file["id"],
            filename=file["filename"],
            status=FileStatus.FAILED,
            invoice_id=None,
            error=error,
            processing_time_ms=elapsed,
        )

    async def _publish_progress(self, batch_id: uuid.UUID) -> None:
        """Recount file statuses into the batch row through an independent session."""
        try:
            async with self._session_factory() as db:
                counts = await persistence.count_file_statuses(db, batch_id)
                processed = counts[FileStatus.PROCESSED]
                failed = counts[FileStatus.FAILED]
                touched = await persistence.update_batch_counts(db, batch_id, processed, failed)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.warning("Progress update for batch %s failed: %s", batch_id, exc)
            return
        if not touched:
            raise FatalOrchestratorError(f"Batch {batch_id} no longer exists")
        logger.info("Batch %s progress: %d processed, %d failed", batch_id, processed, failed)

    async def _fail_batch(self, batch_id: uuid.UUID, message: str) -> None:
        """Record a whole-run abort on the batch and its in-flight file."""
        logger.error("Batch %s aborted: %s", batch_id, message)
        try:
            async with self._session_factory() as db:
                await persistence.fail_orphaned_files(db, batch_id, message)
                counts = await persistence.count_file_statuses(db, batch_id)
                await persistence.update_batch_counts(
                    db, batch_id, counts[FileStatus.PROCESSED], counts[FileStatus.FAILED]
                )
                await persistence.fail_batch(db, batch_id, message)
                await db.commit()
        except SQLAlchemyError:
            logger.exception("Could not record failure of batch %s", batch_id)
