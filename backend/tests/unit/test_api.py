"""Unit tests for the batches API router."""

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoice_pipeline.db import get_session
from invoice_pipeline.main import app
from invoice_pipeline.services.orchestrator import BatchOrchestrator

BatchFactory = Callable[..., Awaitable[uuid.UUID]]


@pytest.fixture()
async def client(
    session_factory: async_sessionmaker[AsyncSession], orchestrator: BatchOrchestrator
) -> AsyncIterator[httpx.AsyncClient]:
    async def _session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.state.orchestrator = orchestrator
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await orchestrator.drain()
    app.dependency_overrides.clear()


class TestCreateBatch:
    async def test_creates_pending_batch(
        self, client: httpx.AsyncClient, vendor_id: uuid.UUID
    ) -> None:
        resp = await client.post(
            "/batches", json={"vendor_id": str(vendor_id), "folder_path": "/uploads/march"}
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "pending"
        assert body["total_files"] == 0
        assert body["vendor_name"] == "acme"

    async def test_unknown_vendor_returns_404(self, client: httpx.AsyncClient) -> None:
        resp = await client.post("/batches", json={"vendor_id": str(uuid.uuid4())})

        assert resp.status_code == 404


class TestAddFiles:
    async def test_adds_files_in_order(
        self, client: httpx.AsyncClient, make_batch: BatchFactory
    ) -> None:
        batch_id = await make_batch()

        resp = await client.post(
            f"/batches/{batch_id}/files",
            json={
                "files": [
                    {"filename": "b.pdf", "file_path": "/uploads/b.pdf", "file_type": "pdf"},
                    {"filename": "a.html", "file_path": "/uploads/a.html", "file_type": ".HTML"},
                ]
            },
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["batch"]["total_files"] == 2
        assert [f["filename"] for f in body["files"]] == ["b.pdf", "a.html"]
        assert [f["file_type"] for f in body["files"]] == ["PDF", "HTML"]
        assert all(f["status"] == "pending" for f in body["files"])

    @pytest.mark.parametrize(
        "payload",
        [
            {"files": []},
            {"files": [{"filename": "x.docx", "file_path": "/x.docx", "file_type": "DOCX"}]},
        ],
    )
    async def test_invalid_payload_returns_422(
        self, client: httpx.AsyncClient, make_batch: BatchFactory, payload: dict[str, object]
    ) -> None:
        batch_id = await make_batch()

        resp = await client.post(f"/batches/{batch_id}/files", json=payload)

        assert resp.status_code == 422

    async def test_started_batch_returns_409(
        self, client: httpx.AsyncClient, make_batch: BatchFactory, orchestrator: BatchOrchestrator
    ) -> None:
        batch_id = await make_batch("a.pdf")
        await orchestrator.start_batch(batch_id)

        resp = await client.post(
            f"/batches/{batch_id}/files",
            json={"files": [{"filename": "b.pdf", "file_path": "/b.pdf", "file_type": "PDF"}]},
        )

        assert resp.status_code == 409


class TestListAndDetail:
    async def test_lists_batches(self, client: httpx.AsyncClient, make_batch: BatchFactory) -> None:
        for name in ("a.pdf", "b.pdf", "c.pdf"):
            await make_batch(name)

        resp = await client.get("/batches", params={"page": 1, "limit": 2})

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 3
        assert len(body["items"]) == 2
        assert body["items"][0]["vendor_name"] == "acme"

    async def test_limit_is_capped(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/batches", params={"limit": 101})

        assert resp.status_code == 422

    async def test_detail_of_unknown_batch_returns_404(self, client: httpx.AsyncClient) -> None:
        resp = await client.get(f"/batches/{uuid.uuid4()}")

        assert resp.status_code == 404


class TestProcessing:
    async def test_process_runs_batch_in_background(
        self, client: httpx.AsyncClient, make_batch: BatchFactory, orchestrator: BatchOrchestrator
    ) -> None:
        batch_id = await make_batch("a.pdf", "b.html")

        resp = await client.post(f"/batches/{batch_id}/process")

        assert resp.status_code == 202
        assert resp.json()["status"] == "processing"
        await orchestrator.drain()

        progress = await client.get(f"/batches/{batch_id}/progress")
        assert progress.status_code == 200
        body = progress.json()
        assert body["status"] == "completed"
        assert body["processed_files"] == 2
        assert body["completion_percentage"] == 100
        assert body["files"] is None

    async def test_second_process_request_is_rejected(
        self, client: httpx.AsyncClient, make_batch: BatchFactory
    ) -> None:
        batch_id = await make_batch("a.pdf")

        first = await client.post(f"/batches/{batch_id}/process")
        second = await client.post(f"/batches/{batch_id}/process")

        assert first.status_code == 202
        assert second.status_code == 409

    async def test_process_unknown_batch_returns_404(self, client: httpx.AsyncClient) -> None:
        resp = await client.post(f"/batches/{uuid.uuid4()}/process")

        assert resp.status_code == 404

    async def test_resume_of_pending_batch_returns_409(
        self, client: httpx.AsyncClient, make_batch: BatchFactory
    ) -> None:
        batch_id = await make_batch("a.pdf")

        resp = await client.post(f"/batches/{batch_id}/resume")

        assert resp.status_code == 409

    async def test_progress_can_include_files(
        self, client: httpx.AsyncClient, make_batch: BatchFactory, orchestrator: BatchOrchestrator
    ) -> None:
        batch_id = await make_batch("a.pdf", "b.pdf")
        await orchestrator.start_batch(batch_id)

        resp = await client.get(f"/batches/{batch_id}/progress", params={"include_files": "true"})

        files = resp.json()["files"]
        assert [f["filename"] for f in files] == ["a.pdf", "b.pdf"]
        assert all(f["invoice_number"] for f in files)
        assert all(f["customer_name"] == "Globex" for f in files)

    async def test_progress_of_unknown_batch_returns_404(self, client: httpx.AsyncClient) -> None:
        resp = await client.get(f"/batches/{uuid.uuid4()}/progress")

        assert resp.status_code == 404
