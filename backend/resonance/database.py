"""Database configuration and session management."""

import asyncio
import logging

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from resonance.config import get_settings

settings = get_settings()

# Create async engine
engine = create_async_engine(
    settings.async_database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for models
Base = declarative_base()
logger = logging.getLogger(__name__)

_TRANSIENT_ERROR_NAMES = {
    "CannotConnectNowError",
    "ConnectionDoesNotExistError",
    "ConnectionFailureError",
    "ConnectionRefusedError",
    "TooManyConnectionsError",
}
_TRANSIENT_MESSAGE_MARKERS = (
    "starting up",
    "in recovery mode",
    "cannot connect now",
    "connection refused",
)


def _is_transient_database_startup_error(exc: BaseException) -> bool:
    """Return whether an exception is likely transient during DB startup."""
    if isinstance(exc, (ConnectionRefusedError, OperationalError)):
        return True

    if isinstance(exc, DBAPIError):
        original_error = getattr(exc, "orig", None)
        if original_error is None:
            return True
        if original_error.__class__.__name__ in _TRANSIENT_ERROR_NAMES:
            return True
        message = str(original_error).lower()
        return any(marker in message for marker in _TRANSIENT_MESSAGE_MARKERS)

    return False


async def init_db(max_attempts: int = 30, initial_retry_delay_seconds: float = 1.0) -> None:
    """Create tables, retrying while the database is still starting up."""
    for attempt in range(1, max_attempts + 1):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            return
        except (ConnectionRefusedError, OperationalError, DBAPIError) as exc:
            if not _is_transient_database_startup_error(exc) or attempt == max_attempts:
                raise

            retry_delay = initial_retry_delay_seconds * (2 ** (attempt - 1))
            logger.warning(
                "Database initialization attempt failed; retrying",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "exception_class": exc.__class__.__name__,
                    "retry_delay_seconds": retry_delay,
                },
            )
            await asyncio.sleep(retry_delay)


async def get_db() -> AsyncSession:
    """Get database session dependency."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
