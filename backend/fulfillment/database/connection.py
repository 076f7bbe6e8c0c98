"""
Database connection management with the SQLAlchemy async engine.

Provides the process-wide engine and session factory, the FastAPI
session dependency and health checks used by the readiness endpoint.
Each core operation runs inside a single session transaction: the
session commits when the request handler returns and rolls back when
it raises.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from fulfillment.core.config import get_settings
from fulfillment.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _convert_database_url_to_async(url: str) -> str:
    """Swap a plain PostgreSQL URL to the asyncpg driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine() -> AsyncEngine:
    """
    Create the async engine with connection pooling.

    Test environments use NullPool so every test gets a fresh connection.
    """
    settings = get_settings()
    database_url = _convert_database_url_to_async(settings.database_url)

    pool_kwargs = (
        {"poolclass": NullPool}
        if settings.is_test
        else {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }
    )

    engine = create_async_engine(
        database_url,
        echo=settings.debug,
        connect_args={
            "server_settings": {"application_name": settings.app_name},
            "command_timeout": 60,
            "timeout": 10,
        },
        **pool_kwargs,
    )

    logger.info(
        "Database engine created",
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        environment=settings.environment,
    )
    return engine


def get_engine() -> AsyncEngine:
    """Get or create the global async engine."""
    global _engine

    if _engine is None:
        try:
            _engine = create_engine()
        except (SQLAlchemyError, ValueError) as e:
            logger.error(
                "Failed to create database engine",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RuntimeError(f"Database engine initialization failed: {e}") from e

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the global session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database session factory created")

    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session whose transaction commits on success.

    Any exception rolls back every change made through the session,
    including row locks taken with SELECT ... FOR UPDATE.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.warning(
            "Database session rolled back",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a transactional session."""
    async with get_session() as session:
        yield session


async def check_database_health(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Check database connectivity with exponential backoff.

    Returns:
        True if a ``SELECT 1`` succeeds within the retry budget
    """
    for attempt in range(max_retries):
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, DBAPIError) as e:
            logger.warning(
                "Database health check failed",
                attempt=attempt + 1,
                max_retries=max_retries,
                error=str(e),
            )
            if attempt < max_retries - 1:
                await asyncio.sleep(retry_delay * (2**attempt))
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            logger.error(
                "Database health check failed - unexpected error",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    logger.error("Database health check failed after all retries", max_retries=max_retries)
    return False


async def close_database_connections() -> None:
    """Dispose of the engine during application shutdown."""
    global _engine, _session_factory

    if _engine is not None:
        try:
            await _engine.dispose()
            logger.info("Database connections closed and engine disposed")
        finally:
            _engine = None
            _session_factory = None


async def initialize_database() -> None:
    """
    Create the engine and verify connectivity at startup.

    Raises:
        RuntimeError: If the database is unreachable
    """
    logger.info("Initializing database connection")
    get_session_factory()
    if not await check_database_health(max_retries=5, retry_delay=2.0):
        raise RuntimeError("Database health check failed during initialization")
    logger.info("Database initialized successfully")
