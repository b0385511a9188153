from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from linkvault.core.config import Settings, get_settings


def _engine_options(settings: Settings) -> dict[str, Any]:
    # SQLite (tests, local runs) keeps SQLAlchemy's default pool; PostgreSQL gets a bounded asyncpg pool.
    if settings.database_url.startswith("sqlite"):
        return {}
    server_settings = {"application_name": settings.app_name}
    if settings.api_db_statement_timeout_ms > 0:
        server_settings["statement_timeout"] = str(int(settings.api_db_statement_timeout_ms))
    return {
        "pool_pre_ping": True,
        "pool_size": max(1, int(settings.api_db_pool_size)),
        "max_overflow": max(0, int(settings.api_db_max_overflow)),
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "connect_args": {"server_settings": server_settings},
    }


engine = create_async_engine(get_settings().database_url, **_engine_options(get_settings()))
# Rows stay readable after commit; link flips use core UPDATEs and refresh explicitly.
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncSession:
    async with SessionLocal() as session:
        yield session
