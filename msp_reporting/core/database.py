"""Database connection and session management.

Transaction Guarantees:
- Each request gets its own session
- All operations within a request are atomic
- On any exception, the entire transaction is rolled back
- Sessions are properly closed after each request

The cron sync job opens its session through ``get_session_context``; the
in-process sync queue uses ``async_session_factory`` directly. Both commit
step by step.
"""

import logging
import ssl
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def _is_hosted_postgres(url: str) -> bool:
    return any(marker in url for marker in ("supabase", "neon", "pooler"))


def build_engine(url: str | None = None) -> AsyncEngine:
    """Create the async engine for the configured database."""
    db_url = url or settings.database_url_async
    connect_args: dict = {}
    engine_kwargs: dict = {"echo": settings.database_echo}

    if db_url.startswith("postgresql+asyncpg"):
        # Hosted Postgres (Supabase) sits behind pgbouncer and requires SSL
        if settings.environment == "production" or _is_hosted_postgres(db_url):
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
            connect_args["ssl"] = ssl_context
            connect_args["prepared_statement_cache_size"] = 0
            connect_args["statement_cache_size"] = 0
            logger.info("Using SSL for database connection with pgbouncer compatibility")

        engine_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=300,
            pool_timeout=30,
        )

    logger.info(f"Database URL (masked): {db_url[:30]}...")
    return create_async_engine(db_url, connect_args=connect_args, **engine_kwargs)


engine = build_engine()

# Session factory - creates new sessions for each request
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a transactional database session.

    Transaction Behavior:
    - Session starts in a transaction automatically
    - On successful completion: COMMIT
    - On any exception: ROLLBACK
    - Session is always closed properly
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise
        except Exception as e:
            await session.rollback()
            logger.error(f"Error during request, transaction rolled back: {e}")
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions (for use outside FastAPI)."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Initialize database (create tables if needed)."""
    from ..models import Base

    async with engine.begin() as conn:
        # In production the schema is managed by migrations
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
