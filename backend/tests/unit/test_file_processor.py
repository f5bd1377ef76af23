"""Unit tests for FileProcessor."""

import uuid
from collections.abc import Awaitable, Callable
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_pipeline.models.invoice import Invoice
from invoice_pipeline.models.line_item import LineItem
from invoice_pipeline.schemas.invoice import ExtractionCandidate
from invoice_pipeline.services import persistence
from invoice_pipeline.services.errors import (
    EmptyDocumentError,
    ExtractionError,
    MalformedExtractionError,
    PersistenceError,
)
from invoice_pipeline.services.file_processor import FileProcessor
from invoice_pipeline.services.prompts import DEFAULT_EXTRACTION_PROMPT
from invoice_pipeline.services.types import BatchContext, PendingFile

BatchFactory = Callable[..., Awaitable[uuid.UUID]]


async def _first_file(
    db: AsyncSession, batch_id: uuid.UUID
) -> tuple[PendingFile, BatchContext]:
    context = await persistence.get_batch_context(db, batch_id)
    assert context is not None
    return (await persistence.list_pending_files(db, batch_id))[0], context


async def _count(db: AsyncSession, model: type) -> int:
    return await db.scalar(select(func.count()).select_from(model)) or 0


class TestFileProcessor:
    async def test_persists_invoice_and_line_items(
        self,
        db: AsyncSession,
        make_batch: BatchFactory,
        text_extractor: AsyncMock,
        extraction_service: AsyncMock,
    ) -> None:
        file, context = await _first_file(db, await make_batch("march.pdf"))

        result = await FileProcessor(text_extractor, extraction_service).process(db, file, context)
        await db.commit()

        assert result["confidence_score"] == 1.0
        assert result["line_item_count"] == 2
        invoice = await db.get(Invoice, result["invoice_id"])
        assert invoice is not None and invoice.original_filename == "march.pdf"
        assert await _count(db, LineItem) == 2
        text_extractor.extract_text.assert_awaited_once_with("/uploads/march.pdf", "PDF")

    async def test_uses_default_prompt_without_vendor_prompt(
        self,
        db: AsyncSession,
        make_batch: BatchFactory,
        text_extractor: AsyncMock,
        extraction_service: AsyncMock,
    ) -> None:
        file, context = await _first_file(db, await make_batch("march.pdf"))

        await FileProcessor(text_extractor, extraction_service).process(db, file, context)

        _, prompt = extraction_service.extract.call_args.args
        assert prompt == DEFAULT_EXTRACTION_PROMPT

    async def test_uses_vendor_prompt_when_active(
        self,
        db: AsyncSession,
        make_batch: BatchFactory,
        prompted_vendor_id: uuid.UUID,
        text_extractor: AsyncMock,
        extraction_service: AsyncMock,
    ) -> None:
        batch_id = await make_batch("march.pdf", vendor=prompted_vendor_id)
        file, context = await _first_file(db, batch_id)

        await FileProcessor(text_extractor, extraction_service).process(db, file, context)

        _, prompt = extraction_service.extract.call_args.args
        assert prompt == "ACME PROMPT"

    async def test_whitespace_only_text_is_empty_document(
        self,
        db: AsyncSession,
        make_batch: BatchFactory,
        extraction_service: AsyncMock,
    ) -> None:
        file, context = await _first_file(db, await make_batch("blank.pdf"))
        text_extractor = AsyncMock()
        text_extractor.extract_text.return_value = "  \n\t "

        with pytest.raises(EmptyDocumentError, match="^Could not read document"):
            await FileProcessor(text_extractor, extraction_service).process(db, file, context)
        extraction_service.extract.assert_not_awaited()

    @pytest.mark.parametrize(
        "error", [ExtractionError("timeout"), MalformedExtractionError("not JSON")]
    )
    async def test_extraction_failures_propagate_without_writes(
        self,
        db: AsyncSession,
        make_batch: BatchFactory,
        text_extractor: AsyncMock,
        error: Exception,
    ) -> None:
        file, context = await _first_file(db, await make_batch("march.pdf"))
        extraction_service = AsyncMock()
        extraction_service.extract.side_effect = error

        with pytest.raises(type(error)):
            await FileProcessor(text_extractor, extraction_service).process(db, file, context)
        assert await _count(db, Invoice) == 0

    async def test_constraint_violation_becomes_persistence_error(
        self,
        db: AsyncSession,
        make_batch: BatchFactory,
        text_extractor: AsyncMock,
        candidate_factory: Callable[..., ExtractionCandidate],
    ) -> None:
        file, context = await _first_file(db, await make_batch("a.pdf", "b.pdf"))
        extraction_service = AsyncMock()
        extraction_service.extract.return_value = candidate_factory(invoice_number="DUP-1")
        processor = FileProcessor(text_extractor, extraction_service)
        await processor.process(db, file, context)
        await db.commit()

        with pytest.raises(PersistenceError, match="^Database write failed"):
            await processor.process(db, file, context)
        await db.rollback()

        assert await _count(db, Invoice) == 1

    async def test_connectivity_error_is_not_converted(
        self,
        db: AsyncSession,
        make_batch: BatchFactory,
        text_extractor: AsyncMock,
        extraction_service: AsyncMock,
    ) -> None:
        file, context = await _first_file(db, await make_batch("march.pdf"))
        lost = OperationalError("INSERT INTO invoices", {}, Exception("server closed the connection"))

        with patch(
            "invoice_pipeline.services.file_processor.persistence.insert_invoice",
            AsyncMock(side_effect=lost),
        ):
            with pytest.raises(OperationalError):
                await FileProcessor(text_extractor, extraction_service).process(db, file, context)

    async def test_line_item_failure_is_persistence_error(
        self,
        db: AsyncSession,
        make_batch: BatchFactory,
        text_extractor: AsyncMock,
        extraction_service: AsyncMock,
    ) -> None:
        file, context = await _first_file(db, await make_batch("march.pdf"))
        broken = IntegrityError("INSERT INTO line_items", {}, Exception("NOT NULL constraint failed"))

        with patch(
            "invoice_pipeline.services.file_processor.persistence.replace_line_items",
            AsyncMock(side_effect=broken),
        ):
            with pytest.raises(PersistenceError, match="NOT NULL"):
                await FileProcessor(text_extractor, extraction_service).process(db, file, context)
        await db.rollback()

        assert await _count(db, Invoice) == 0
