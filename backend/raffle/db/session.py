"""
Engine and session construction.

The engine is built explicitly by the application lifespan and stored on
app.state; request handlers get sessions through the get_db dependency.
"""

import asyncio
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from raffle.core.config import Settings, get_settings
from raffle.core.errors import StoreUnavailable
from raffle.core.logging import get_logger

logger = get_logger(__name__)


def normalize_async_url(url: str) -> str:
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        # Heroku-style URLs
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


def make_engine(database_url: str, settings: Settings | None = None) -> AsyncEngine:
    settings = settings or get_settings()
    db_url = normalize_async_url(database_url)

    kw = dict(pool_pre_ping=True)
    if db_url.startswith("postgresql+asyncpg://"):
        kw.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
        )
    elif db_url.startswith("sqlite+aiosqlite://"):
        # Writers wait on each other instead of failing with "database is locked"
        kw.update(connect_args={"timeout": 15})

    engine = create_async_engine(db_url, **kw)

    if db_url.startswith("sqlite+aiosqlite://"):
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA busy_timeout=15000;")
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.close()

    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def wait_for_store(engine: AsyncEngine, settings: Settings | None = None) -> None:
    """
    Block until the store answers a trivial query.
    Backs off exponentially between attempts and gives up with
    StoreUnavailable after DB_CONNECT_ATTEMPTS.
    """
    settings = settings or get_settings()
    delay = settings.DB_CONNECT_BACKOFF_SECONDS

    for attempt in range(1, settings.DB_CONNECT_ATTEMPTS + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("store_connected", attempt=attempt)
            return
        except (SQLAlchemyError, OSError) as e:
            if attempt == settings.DB_CONNECT_ATTEMPTS:
                logger.error("store_connection_exhausted", attempts=attempt, error=str(e))
                raise StoreUnavailable(
                    f"Store unreachable after {attempt} attempts"
                ) from e
            logger.warning(
                "store_connection_retry",
                attempt=attempt,
                retry_in=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, settings.DB_CONNECT_BACKOFF_MAX_SECONDS)


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """One session per request. Services commit at their own atomic boundaries."""
    async with request.app.state.session_factory() as session:
        yield session
