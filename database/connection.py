"""
Async database connection management.

Exposes the shared engine, the session factory and helpers for the
transaction discipline used by admission and approval writes:
SERIALIZABLE isolation plus a transaction-scoped advisory lock on the
elevator resource (PostgreSQL only; other dialects skip both).
"""

import hashlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

ELEVATOR_RESOURCE = "elevator"


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """
    Yield a session from the shared factory.

    Usage:
        async with get_async_session() as session:
            ...
    """
    async with AsyncSessionLocal() as session:
        yield session


def _is_postgres(session: AsyncSession) -> bool:
    return session.bind is not None and session.bind.dialect.name == "postgresql"


def advisory_lock_key(resource: str) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.sha256(resource.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


async def begin_serializable(session: AsyncSession, resource: str | None = None) -> None:
    """
    Start the current transaction at SERIALIZABLE isolation.

    When `resource` is given, also take a transaction-scoped advisory lock so
    concurrent writers touching the same resource are queued instead of
    relying on serialization failures alone. Must be the first statement of
    the transaction.
    """
    if not _is_postgres(session):
        return

    await session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))
    if resource is not None:
        await session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": advisory_lock_key(resource)},
        )
        logger.debug(f"Advisory lock acquired for resource '{resource}'")
