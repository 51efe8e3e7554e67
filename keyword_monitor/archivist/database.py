"""
Database session management for async SQLAlchemy operations.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

from ..config.settings import settings

logger = logging.getLogger(__name__)


def _enable_sqlite_immediate_transactions(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite/aiosqlite defer BEGIN until the first write, which would let two
    lease transactions read the same due rows. BEGIN IMMEDIATE serialises
    them the way SELECT ... FOR UPDATE does on PostgreSQL.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Disable the driver's own implicit BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for_url(url: str) -> AsyncEngine:
    """Create an async engine with settings appropriate for the backend."""
    if url.startswith("sqlite"):
        sqlite_engine = create_async_engine(url, echo=False, connect_args={"timeout": 30})
        _enable_sqlite_immediate_transactions(sqlite_engine)
        return sqlite_engine

    return create_async_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=10,
        pool_pre_ping=True,   # Detect stale connections before use
        pool_recycle=3600,    # Recycle connections every hour
        pool_timeout=30,      # Wait max 30s for connection from pool
        connect_args={
            "command_timeout": 30,  # Timeout for individual queries (asyncpg)
            "server_settings": {
                "statement_timeout": "30000",  # PostgreSQL statement timeout (ms)
            },
        },
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine_for_url(settings.database_url)

# Session factory
async_session_factory = create_session_factory(engine)


async def init_db(bind: AsyncEngine = None):
    """Initialize database tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Commits on clean exit, rolls back and re-raises on error.
    PostgreSQL statement_timeout (30s) is configured in engine settings
    to handle stuck transactions at the database level.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database session error, rolling back: {e}")
            await session.rollback()
            raise
