"""Async SQLAlchemy engine and session factory for PostgreSQL.

All database operations use the SQLAlchemy 2.0 async session pattern.
Driver errors surface to the API as typed errors:
  - unique / foreign-key violations (two webhooks racing on the same row,
    a provider message id recorded twice) -> ConflictingWriteError, 409
  - everything else from the driver -> DatabaseConnectionError, 503
"""

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings
from app.core.exceptions import (
    ConflictingWriteError,
    DatabaseConnectionError,
    DispatcherError,
)

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


engine: AsyncEngine = create_async_engine(
    settings.postgres_url,
    echo=False,
    pool_size=settings.postgres_pool_size,
    max_overflow=settings.postgres_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def translate_db_error(error: SQLAlchemyError) -> DispatcherError:
    """Map a driver error to the dispatcher error the API returns."""
    if isinstance(error, IntegrityError):
        constraint = getattr(getattr(error.orig, "__cause__", None), "constraint_name", None)
        logger.warning("postgres_integrity_error", constraint=constraint, error=str(error.orig))
        return ConflictingWriteError(
            f"Conflicting write on {constraint}" if constraint else "Conflicting concurrent write"
        )
    logger.error("postgres_session_error", error=str(error))
    return DatabaseConnectionError(f"Database operation failed: {error}")


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session.

    Commits on success, rolls back on exception, always closes.
    """
    try:
        async with async_session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise translate_db_error(e) from e
            except Exception:
                await session.rollback()
                raise
    except DispatcherError:
        raise
    except SQLAlchemyError as e:
        logger.error("postgres_connection_error", error=str(e))
        raise DatabaseConnectionError(f"Database connection failed: {e}") from e


async def close_postgres() -> None:
    """Gracefully dispose of the async engine connection pool."""
    logger.info("postgres_shutdown")
    await engine.dispose()
