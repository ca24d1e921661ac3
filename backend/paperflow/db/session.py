"""
Database engine and session management.

Flow:
  1. A stage (or the batch job) calls create_engine(settings) once at startup.
  2. create_session_factory(engine) builds the async_sessionmaker it hands
     to its repositories.
  3. Every unit of work runs inside session_scope(factory): one session, one
     transaction, committed on clean exit and rolled back on any exception.

There is no module-level engine. Each process owns the objects it built and
disposes the engine on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from paperflow.core.config import Settings
from paperflow.core.exceptions import PersistenceFailure
from paperflow.models.documents import Base

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,          # detect stale connections before use
        pool_recycle=3600,           # recycle connections every hour
        echo=settings.db_echo_sql,   # log SQL in dev; disable in prod
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------

@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session inside one transaction.

    The begin() block commits on clean exit and rolls back if the body
    raises. Database errors from the body or the commit surface as
    PersistenceFailure; any other exception is re-raised unchanged.
    """
    async with factory() as session:
        try:
            async with session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.error("Transaction failed | error=%s", exc)
            raise PersistenceFailure(f"Transaction failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Schema helpers (local dev and tests; production schema is migration-owned)
# ---------------------------------------------------------------------------

async def create_all(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_db_health(engine: AsyncEngine) -> dict:
    """Ping the database; used by worker startup checks."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
