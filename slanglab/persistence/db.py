from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from slanglab.core.config import Settings, get_settings


def engine_options(settings: Settings) -> dict[str, Any]:
    # PostgreSQL gets a bounded pool and a server-side statement timeout; SQLite waits on its file lock.
    if settings.database_url.startswith("sqlite"):
        return {"connect_args": {"timeout": max(1.0, settings.backend_timeout_ms / 1000.0)}}
    options: dict[str, Any] = {
        "pool_pre_ping": True,
        "pool_size": max(1, int(settings.api_db_pool_size)),
        "max_overflow": max(0, int(settings.api_db_max_overflow)),
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }
    if settings.api_db_statement_timeout_ms > 0:
        options["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.api_db_statement_timeout_ms))}
        }
    return options


settings = get_settings()
engine = create_async_engine(settings.database_url, **engine_options(settings))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncSession:
    async with SessionLocal() as session:
        yield session


def dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def upsert_insert(session: AsyncSession):
    """Return the dialect's ``insert`` construct.

    Counters, terms, sightings and monitoring records are all written with
    ``INSERT ... ON CONFLICT``, which both PostgreSQL and SQLite support
    through their own ``insert`` variants.
    """
    if dialect_name(session) == "postgresql":
        return postgresql.insert
    return sqlite.insert


def supports_skip_locked(session: AsyncSession) -> bool:
    # SQLite has no row locks; callers fall back to in-process locking.
    return dialect_name(session) == "postgresql"
