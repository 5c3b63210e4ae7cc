"""VPS Control Database Configuration - Async SQLAlchemy.

Two databases are in play:
- the credential store (users, roles, permissions), normally PostgreSQL;
- the local session ledger, an embedded SQLite file owned by this process.

Engines and session factories are built by the application factory and kept
on ``app.state`` rather than created at import time.
"""

import logging
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

# Credential store models
Base = declarative_base()

# Session ledger models (separate metadata, separate database)
LedgerBase = declarative_base()

# Seconds SQLite waits on a locked database before failing a write
SQLITE_BUSY_TIMEOUT = 10


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def build_engine(url: str, echo: bool = False, **pool_options: Any) -> AsyncEngine:
    """Create an async engine, applying pool options only where they apply.

    SQLite engines get a busy timeout so concurrent writers queue instead of
    failing immediately with "database is locked".
    """
    if _is_sqlite(url):
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": SQLITE_BUSY_TIMEOUT},
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, connection_record):  # noqa: ARG001
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return engine

    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,  # Verify connection before use
        **pool_options,
    )


def build_ledger_engine(db_path: str, echo: bool = False) -> AsyncEngine:
    """Create the engine for the local session ledger, creating its directory."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True, mode=0o750)
    return build_engine(f"sqlite+aiosqlite:///{path}", echo=echo)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_ledger_schema(engine: AsyncEngine) -> None:
    """Create the session ledger tables and indexes if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(LedgerBase.metadata.create_all)
    logger.info(f"Session ledger ready: {engine.url.database}")


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get a credential store session."""
    session_maker: async_sessionmaker[AsyncSession] = request.app.state.db_session_maker
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except (Exception, BaseException):
            # Catch both regular exceptions and BaseExceptions (e.g., asyncio.CancelledError)
            # to ensure rollback happens even on cancellation
            await session.rollback()
            raise


async def check_db_connection(engine: AsyncEngine) -> bool:
    """Check if a database is reachable."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            return True
    except (OSError, ConnectionError) as e:
        logger.debug(f"Database connection check failed: {e}")
        return False
    except Exception as e:
        logger.warning(f"Unexpected error checking database connection: {e}")
        return False
