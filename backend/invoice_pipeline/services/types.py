"""Shared typed return types for backend services."""

import uuid
from typing import TypedDict


class BatchContext(TypedDict):
    batch_id: uuid.UUID
    vendor_id: uuid.UUID
    vendor_name: str
    prompt_text: str | None


class PendingFile(TypedDict):
    id: uuid.UUID
    filename: str
    file_path: str
    file_type: str


class ValidationReport(TypedDict):
    errors: list[str]
    warnings: list[str]
    date_errors: int
    amount_mismatch: bool


class ProcessedFile(TypedDict):
    invoice_id: uuid.UUID
    confidence_score: float
    line_item_count: int


class FileOutcome(TypedDict):
    file_id: uuid.UUID
    filename: str
    status: str
    invoice_id: uuid.UUID | None
    error: str | None
    processing_time_ms: int


class BatchRunResult(TypedDict):
    batch_id: uuid.UUID
    status: str
    processed_count: int
    failed_count: int
    results: list[FileOutcome]
