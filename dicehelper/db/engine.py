"""SQLAlchemy async engine and session factory."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from dicehelper.config import Settings

logger = logging.getLogger("dicehelper.db")


def _build_engine_kwargs(settings: Settings) -> dict:
    """Return engine kwargs appropriate for the configured dialect."""
    if settings.is_postgres:
        kwargs = {
            "echo": settings.DEBUG,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
            "pool_pre_ping": True,   # ensure stale connections are recycled
            "pool_recycle": 1800,
        }
        ssl_ctx = settings.ssl_context()
        kwargs["connect_args"] = {"ssl": ssl_ctx} if ssl_ctx is not None else {"ssl": False}
        return kwargs
    # SQLite: single file, no pool tunables
    return {
        "echo": settings.DEBUG,
        "connect_args": {"check_same_thread": False},
    }


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the shared async engine (one pool per worker process)."""
    engine = create_async_engine(settings.DATABASE_URL, **_build_engine_kwargs(settings))

    if settings.is_sqlite:
        # WAL lets the producer read while a helper writes; busy_timeout makes
        # a contended writer wait instead of failing immediately.
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragmas(dbapi_conn, _conn_rec):  # type: ignore[misc]
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    @event.listens_for(engine.sync_engine, "connect")
    def _log_connect(_dbapi_conn, _conn_rec):  # type: ignore[misc]
        logger.debug("Pool client connected to %s", engine.url.get_backend_name())

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def wait_for_db(
    session_factory: async_sessionmaker[AsyncSession],
    max_retries: int = 5,
    delay: float = 2.0,
) -> None:
    """Block until the store answers ``SELECT 1``.

    Raises RuntimeError after *max_retries* failed attempts.
    """
    for attempt in range(1, max_retries + 1):
        try:
            async with session_factory() as db:
                await db.execute(text("SELECT 1"))
            logger.info("Database ready after %d attempt(s)", attempt)
            return
        except Exception as exc:
            logger.warning(
                "Database not ready (attempt %d/%d): %s", attempt, max_retries, exc
            )
            if attempt < max_retries:
                await asyncio.sleep(delay)

    raise RuntimeError(f"Database not accessible after {max_retries} attempts.")
