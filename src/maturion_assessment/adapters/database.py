"""Async database engine and session management.

``init_database`` is called once at startup; ``get_db_session`` is the
FastAPI dependency that yields a request-scoped session, committing on
success and rolling back on error. ``get_session_factory`` hands out the
factory for callers that need several independent sessions at once.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from maturion_assessment.observability import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_database(database_url: str, echo: bool = False) -> async_sessionmaker[AsyncSession]:
    """Create the async engine and session factory.

    Args:
        database_url: SQLAlchemy async URL, e.g. ``postgresql+asyncpg://...``.
        echo: Log emitted SQL when True.

    Returns:
        The session factory bound to the new engine.
    """
    global _engine, _session_factory

    _engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)

    logger.info("Database initialised", echo=echo)
    return _session_factory


async def close_database() -> None:
    """Dispose of the engine's connection pool."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connections closed")
    _engine = None
    _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory created at startup.

    Raises:
        RuntimeError: If init_database has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database is not initialised; call init_database() at startup")
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session.

    Yields:
        AsyncSession committed when the request succeeds.

    Raises:
        RuntimeError: If init_database has not been called.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
