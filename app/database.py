"""
Courtside — Async Database Engine & Session Factory

The engine connects through the Cloud SQL connector (IAM auth) when an
instance is configured and otherwise through ``DATABASE_URL`` (asyncpg, or
aiosqlite for local runs and tests).  Pool sizing comes from ``Settings``.

Column helpers shared by every model (JSON payloads, UTC timestamps) keep
the schema portable between PostgreSQL and the SQLite test database.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------ #
# Declarative base & shared column helpers
# ------------------------------------------------------------------ #

class Base(DeclarativeBase):
    """Declarative base for every Courtside table."""


# JSONB on PostgreSQL, plain JSON elsewhere.
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware "now" used as the Python-side column default."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps (SQLite hands them back without tz)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ------------------------------------------------------------------ #
# Engine construction
# ------------------------------------------------------------------ #

def normalize_database_url(url: str) -> str:
    """Route bare ``postgresql://`` URLs through the asyncpg driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def engine_options(url: str, settings: Settings) -> dict[str, Any]:
    """Keyword arguments for ``create_async_engine``.

    SQLite runs on its own connection handling, so queue-pool sizing is
    only applied to server databases.
    """
    options: dict[str, Any] = {"echo": settings.LOG_LEVEL.upper() == "DEBUG"}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
            pool_timeout=30,
            pool_pre_ping=True,
        )
    return options


def _create_engine(settings: Settings | None = None) -> AsyncEngine:
    """Cloud SQL connector when an instance is configured, else ``DATABASE_URL``."""
    settings = settings or get_settings()

    if settings.CLOUD_SQL_USE_UNIX_SOCKET and settings.CLOUD_SQL_INSTANCE_CONNECTION:
        from google.cloud.sql.connector import Connector

        connector = Connector()

        async def _connect():
            return await connector.connect_async(
                settings.CLOUD_SQL_INSTANCE_CONNECTION,
                "asyncpg",
                user=settings.DB_USER,
                password=settings.DB_PASSWORD,
                db=settings.DB_NAME,
                enable_iam_auth=True,
            )

        url = "postgresql+asyncpg://"
        logger.info(
            "Database engine using Cloud SQL instance %s",
            settings.CLOUD_SQL_INSTANCE_CONNECTION,
        )
        return create_async_engine(
            url, async_creator=_connect, **engine_options(url, settings)
        )

    url = normalize_database_url(settings.DATABASE_URL)
    logger.info("Database engine using %s", url.split("://", 1)[0])
    return create_async_engine(url, **engine_options(url, settings))


# ------------------------------------------------------------------ #
# Module-level engine & session factory
# ------------------------------------------------------------------ #

engine = _create_engine()

async_session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ------------------------------------------------------------------ #
# FastAPI dependency
# ------------------------------------------------------------------ #

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; routes commit explicitly, anything left over is
    committed here and errors roll back."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
