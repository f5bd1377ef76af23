"""Pydantic schemas for batch endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from invoice_pipeline.models.batch_file import FileType


class BatchCreateRequest(BaseModel):
    vendor_id: uuid.UUID
    folder_path: str | None = None


class BatchFileCreate(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    file_path: str = Field(..., min_length=1, max_length=1024)
    file_type: FileType

    @field_validator("file_type", mode="before")
    @classmethod
    def normalise_file_type(cls, v: object) -> object:
        return v.upper().lstrip(".") if isinstance(v, str) else v


class BatchFilesRequest(BaseModel):
    files: list[BatchFileCreate] = Field(..., min_length=1)


class BatchSummary(BaseModel):
    id: uuid.UUID
    vendor_id: uuid.UUID
    vendor_name: str | None = None
    folder_path: str | None
    status: str  # pending | processing | completed | partial | failed
    total_files: int
    processed_files: int
    failed_files: int
    started_at: datetime | None
    completed_at: datetime | None
    error_message: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class BatchList(BaseModel):
    items: list[BatchSummary]
    total: int
    page: int
    limit: int


class BatchFileSummary(BaseModel):
    id: uuid.UUID
    filename: str
    file_type: str
    status: str  # pending | processing | processed | failed
    invoice_id: uuid.UUID | None
    invoice_number: str | None = None
    customer_name: str | None = None
    error_message: str | None
    processing_time_ms: int | None
    processed_at: datetime | None

    model_config = {"from_attributes": True}


class BatchDetail(BaseModel):
    batch: BatchSummary
    files: list[BatchFileSummary]


class BatchProgress(BaseModel):
    batch_id: uuid.UUID
    status: str
    total_files: int
    processed_files: int
    failed_files: int
    pending_files: int
    processing_files: int
    completion_percentage: int
    started_at: datetime | None
    completed_at: datetime | None
    error_message: str | None
    files: list[BatchFileSummary] | None = None


class BatchRunAccepted(BaseModel):
    batch_id: uuid.UUID
    status: str
    message: str


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
