"""Async SQLAlchemy engine, session management and the unit-of-work helper."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from hrops.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE codes PostgreSQL uses when a serializable transaction must be retried
SERIALIZATION_FAILURE_CODES = frozenset({"40001", "40P01"})

# Async engine for FastAPI
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)

# Async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncSession:
    """FastAPI dependency: yield an async database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency: the factory used by unit-of-work endpoints."""
    return async_session_factory


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in SERIALIZATION_FAILURE_CODES


async def run_in_transaction(
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    session_factory: Optional[async_sessionmaker] = None,
    retries: Optional[int] = None,
) -> T:
    """Run *work* inside one transaction and commit it.

    Every read and write *work* performs goes through the session it
    receives. On PostgreSQL the transaction runs at SERIALIZABLE isolation
    and is retried from scratch when the server reports a serialization
    failure or deadlock. Any other exception rolls back and propagates.
    """
    factory = session_factory or async_session_factory
    attempts = retries or settings.TRANSACTION_MAX_RETRIES

    for attempt in range(1, attempts + 1):
        async with factory() as session:
            try:
                async with session.begin():
                    options = {}
                    if session.bind is not None and session.bind.dialect.name == "postgresql":
                        options = {"isolation_level": "SERIALIZABLE"}
                    await session.connection(execution_options=options)
                    return await work(session)
            except DBAPIError as exc:
                if not is_serialization_failure(exc) or attempt == attempts:
                    raise
                logger.warning(
                    "Serialization failure (attempt %d/%d), retrying transaction",
                    attempt, attempts,
                )

    raise RuntimeError("unreachable")  # pragma: no cover
