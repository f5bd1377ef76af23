"""SQLAlchemy async engine and session factory."""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL environment variable is not set")
    return url


def make_engine(database_url: str | None = None) -> AsyncEngine:
    url = database_url or _get_database_url()
    if url.startswith("sqlite"):
        return create_async_engine(url)
    pool_size = int(os.environ.get("SESSION_POOL_SIZE", "5"))
    return create_async_engine(url, pool_size=pool_size, pool_pre_ping=True)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows are re-read explicitly after every commit, so nothing relies on expiry.
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


# Module-level singletons, created lazily on first access via get_engine().
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    global _engine, _session_factory
    if _engine is None:
        _engine = make_engine()
        _session_factory = make_session_factory(_engine)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session and close it when the request is done."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        await session.close()


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create all tables that do not exist yet."""
    # Import models so Base.metadata includes them before create_all().
    import invoice_pipeline.models.batch  # noqa: F401
    import invoice_pipeline.models.batch_file  # noqa: F401
    import invoice_pipeline.models.extraction_prompt  # noqa: F401
    import invoice_pipeline.models.invoice  # noqa: F401
    import invoice_pipeline.models.line_item  # noqa: F401
    import invoice_pipeline.models.vendor  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(tz=UTC).replace(tzinfo=None)


def is_connectivity_error(exc: BaseException) -> bool:
    """Return True if *exc* means the database itself is unusable, not just one statement."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated
