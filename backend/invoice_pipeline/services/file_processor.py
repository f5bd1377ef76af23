"""Single-document processing: text → extraction → validation → persistence."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_pipeline.db import is_connectivity_error
from invoice_pipeline.services import persistence
from invoice_pipeline.services.errors import EmptyDocumentError, PersistenceError
from invoice_pipeline.services.extraction import GeminiExtractionService
from invoice_pipeline.services.prompts import resolve_prompt
from invoice_pipeline.services.text_extractor import TextExtractor
from invoice_pipeline.services.types import BatchContext, PendingFile, ProcessedFile
from invoice_pipeline.services.validation import score_confidence, validate_candidate

logger = logging.getLogger(__name__)


class FileProcessor:
    def __init__(
        self,
        text_extractor: TextExtractor | None = None,
        extraction_service: GeminiExtractionService | None = None,
    ) -> None:
        self._text = text_extractor or TextExtractor()
        self._extraction = extraction_service or GeminiExtractionService()

    async def process(
        self, db: AsyncSession, file: PendingFile, context: BatchContext
    ) -> ProcessedFile:
        """Turn one batch file into an invoice with line items.

        Rows are flushed but not committed; the caller owns the transaction and
        commits them together with the file's status change, or rolls back.
        Raises a DocumentProcessingError subclass for per-document failures.
        Database connectivity errors propagate unchanged.
        """
        text = await self._text.extract_text(file["file_path"], file["file_type"])
        if not text.strip():
            raise EmptyDocumentError(f"{file['filename']} contains no extractable text")

        prompt = resolve_prompt(context["prompt_text"])
        candidate = await self._extraction.extract(text, prompt)

        report = validate_candidate(candidate)
        score = score_confidence(candidate, report)
        for warning in report["warnings"]:
            logger.info("%s: %s", file["filename"], warning)
        if report["errors"]:
            logger.info("%s: validation errors %s", file["filename"], report["errors"])

        try:
            invoice_id = await persistence.insert_invoice(db, context, file, candidate, score)
            count = await persistence.replace_line_items(db, invoice_id, candidate.line_items)
        except SQLAlchemyError as exc:
            if is_connectivity_error(exc):
                raise
            raise PersistenceError(str(getattr(exc, "orig", None) or exc)) from exc

        return ProcessedFile(invoice_id=invoice_id, confidence_score=score, line_item_count=count)
