"""
Async engine and session factory for the Zlink database

PostgreSQL (asyncpg) in production. SQLite via aiosqlite works for local
runs and tests; the schema itself is managed by Alembic.
"""

import logging

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from config.config import DATABASE_URL, ENVIRONMENT

logger = logging.getLogger(__name__)


# Created lazily so importing models never opens a pool
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def serialize_sqlite_writes(eng: AsyncEngine) -> AsyncEngine:
    """
    Start every SQLite transaction with BEGIN IMMEDIATE

    pysqlite defers BEGIN until the first write. Concurrent redemptions
    must queue on the database lock the way row locks queue them on
    PostgreSQL.
    """

    @event.listens_for(eng.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return eng


def _postgres_options() -> dict:
    is_production = ENVIRONMENT == "production"
    return dict(
        poolclass=AsyncAdaptedQueuePool,
        pool_size=10 if is_production else 5,
        max_overflow=20 if is_production else 10,
        pool_recycle=3600,
        connect_args={
            # pgbouncer in transaction mode breaks prepared statements
            "statement_cache_size": 0,
            "server_settings": {"application_name": "zlink_bridge"},
        },
    )


def get_engine() -> AsyncEngine:
    global engine

    if engine is None:
        options = _postgres_options() if DATABASE_URL.startswith("postgresql+asyncpg") else {}
        engine = create_async_engine(DATABASE_URL, pool_pre_ping=True, echo=False, **options)
        if engine.dialect.name == "sqlite":
            serialize_sqlite_writes(engine)

        logger.info(f"Database engine ready ({engine.dialect.name}, environment: {ENVIRONMENT})")

    return engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """
    Session factory shared by the bot middleware, the orchestrator and the API

    expire_on_commit is off: services hand rows back to callers after
    committing their conditional writes.
    """
    global AsyncSessionLocal

    if AsyncSessionLocal is None:
        AsyncSessionLocal = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return AsyncSessionLocal


async def dispose_engine() -> None:
    """Close every pooled connection; called on shutdown"""
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
        engine = None
        AsyncSessionLocal = None


async def check_connection() -> bool:
    """SELECT 1 against the configured database"""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (OSError, SQLAlchemyError) as e:
        logger.error(f"Database connection check failed: {e}", exc_info=True)
        return False
