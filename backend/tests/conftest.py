"""Shared pytest fixtures."""

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from invoice_pipeline.db import create_tables, make_engine, make_session_factory
from invoice_pipeline.models.extraction_prompt import ExtractionPrompt
from invoice_pipeline.models.vendor import Vendor
from invoice_pipeline.schemas.batch import BatchFileCreate
from invoice_pipeline.schemas.invoice import ExtractionCandidate
from invoice_pipeline.services import persistence
from invoice_pipeline.services.file_processor import FileProcessor
from invoice_pipeline.services.orchestrator import BatchOrchestrator

BatchFactory = Callable[..., Awaitable[uuid.UUID]]


@pytest.fixture()
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Engine over a throwaway SQLite file, so separate sessions use separate connections."""
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path}/pipeline.db")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture()
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def vendor_id(session_factory: async_sessionmaker[AsyncSession]) -> uuid.UUID:
    """A vendor without an extraction prompt of its own."""
    async with session_factory() as session:
        vendor = Vendor(name="acme", display_name="ACME Telecom")
        session.add(vendor)
        await session.commit()
        return vendor.id


@pytest.fixture()
async def prompted_vendor_id(session_factory: async_sessionmaker[AsyncSession]) -> uuid.UUID:
    """A vendor whose active prompt is "ACME PROMPT"."""
    async with session_factory() as session:
        vendor = Vendor(name="acme-prompted")
        session.add(vendor)
        await session.flush()
        prompt = ExtractionPrompt(
            vendor_id=vendor.id, prompt_name="acme", prompt_text="ACME PROMPT", is_active=True
        )
        session.add(prompt)
        await session.flush()
        vendor.extraction_prompt_id = prompt.id
        await session.commit()
        return vendor.id


@pytest.fixture()
def make_batch(
    session_factory: async_sessionmaker[AsyncSession], vendor_id: uuid.UUID
) -> BatchFactory:
    """Return a coroutine that creates a pending batch with the given filenames.

    Filenames ending in .html are registered as HTML, everything else as PDF.
    """

    async def _make(*filenames: str, vendor: uuid.UUID | None = None) -> uuid.UUID:
        async with session_factory() as session:
            batch = await persistence.create_batch(session, vendor or vendor_id, "/uploads")
            if filenames:
                await persistence.add_files(
                    session,
                    batch.id,
                    [
                        BatchFileCreate(
                            filename=name,
                            file_path=f"/uploads/{name}",
                            file_type="HTML" if name.endswith(".html") else "PDF",
                        )
                        for name in filenames
                    ],
                )
            await session.commit()
            return batch.id

    return _make


def make_candidate(
    invoice_number: str | None = "INV-1",
    customer_name: str | None = "Globex",
    total_amount: object = "100.00",
    line_totals: list[object] | None = None,
    confidence_notes: str | None = None,
) -> ExtractionCandidate:
    items = line_totals if line_totals is not None else ["60.00", "40.00"]
    return ExtractionCandidate.model_validate(
        {
            "invoice_header": {
                "invoice_number": invoice_number,
                "customer_name": customer_name,
                "invoice_date": "2024-03-01",
                "due_date": "2024-03-31",
                "total_amount": total_amount,
                "currency": "USD",
            },
            "line_items": [
                {"line_number": i + 1, "description": f"Line {i + 1}", "total_amount": t}
                for i, t in enumerate(items)
            ],
            "confidence_notes": confidence_notes,
        }
    )


@pytest.fixture()
def candidate_factory() -> Callable[..., ExtractionCandidate]:
    return make_candidate


@pytest.fixture()
def text_extractor() -> AsyncMock:
    """Text extractor whose output names the document path."""
    mock = AsyncMock()
    mock.extract_text.side_effect = lambda path, file_type: f"Invoice text of {path}"
    return mock


@pytest.fixture()
def extraction_service() -> AsyncMock:
    """Extraction adapter returning a fresh, uniquely numbered candidate per call."""
    mock = AsyncMock()
    counter = iter(range(1, 10_000))
    mock.extract.side_effect = lambda text, prompt: make_candidate(
        invoice_number=f"INV-{next(counter)}"
    )
    return mock


@pytest.fixture()
def orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    text_extractor: AsyncMock,
    extraction_service: AsyncMock,
) -> BatchOrchestrator:
    return BatchOrchestrator(session_factory, FileProcessor(text_extractor, extraction_service))
