"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")

# Apply the same format to Uvicorn's loggers so they also show timestamps.
for _uvicorn_logger in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    _log = logging.getLogger(_uvicorn_logger)
    _log.handlers.clear()
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"))
    _log.addHandler(_handler)
    _log.propagate = False

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from invoice_pipeline.db import create_tables, get_session_factory
from invoice_pipeline.schemas.batch import ErrorResponse
from invoice_pipeline.services.errors import (
    AlreadyProcessingError,
    InvalidStateError,
    NotFoundError,
)
from invoice_pipeline.services.orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await create_tables()
    orchestrator = BatchOrchestrator(get_session_factory())
    recovered = await orchestrator.recover_interrupted_batches()
    if recovered:
        logger.warning("Marked %d interrupted batch(es) as failed", len(recovered))
    app.state.orchestrator = orchestrator
    yield
    # Let in-flight runs reach a terminal status before the engine goes away.
    await orchestrator.drain()


app = FastAPI(title="Invoice Batch Pipeline", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, NotFoundError):
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(error="not_found", detail=str(exc)).model_dump(),
        )
    if isinstance(exc, AlreadyProcessingError):
        return JSONResponse(
            status_code=409,
            content=ErrorResponse(error="already_processing", detail=str(exc)).model_dump(),
        )
    if isinstance(exc, InvalidStateError):
        return JSONResponse(
            status_code=409,
            content=ErrorResponse(error="invalid_state", detail=str(exc)).model_dump(),
        )
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="internal_error", detail=str(exc)).model_dump(),
    )


# Import and register routers after app is defined to avoid circular imports.
from invoice_pipeline.api import batches  # noqa: E402

app.include_router(batches.router, prefix="/batches", tags=["batches"])
