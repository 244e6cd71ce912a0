"""Async SQLAlchemy engine and read-only sessions over the signal stores."""

import logging

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from keyword_selection.config import settings
from keyword_selection.core.db_retry import is_transient_connection_error

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.database_echo,
    pool_pre_ping=True,
    pool_recycle=300,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


def _has_pending_state(session: AsyncSession) -> bool:
    return bool(session.new or session.dirty or session.deleted)


async def end_read_transaction(session: AsyncSession) -> None:
    """Roll back the open read transaction; a dropped connection has nothing to end."""
    if not session.in_transaction():
        return
    try:
        await session.rollback()
    except Exception as exc:
        if not is_transient_connection_error(exc):
            raise
        logger.debug(
            "Read transaction connection already closed",
            extra={"error": repr(exc)},
        )


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Yield a short-lived session for one read; it never commits.

    ORM changes left on the session are discarded and reported as an error.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await end_read_transaction(session)
            raise

        pending = _has_pending_state(session)
        await end_read_transaction(session)
        if pending:
            raise RuntimeError("Read session has pending ORM changes; keyword selection never writes")


async def close_db() -> None:
    """Close database connections."""
    logger.info("Closing database connections")
    await engine.dispose()
