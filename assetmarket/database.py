"""Engines and session factories for the two stores.

The asset registry and the marketplace each own a separate database. There is
no engine, session or transaction that spans both; cross-store consistency is
the orchestrator's job (see ``services.orchestrator_service``).
"""

from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from assetmarket.config import settings


class RegistryBase(DeclarativeBase):
    """Declarative base for tables owned by the asset registry."""


class MarketplaceBase(DeclarativeBase):
    """Declarative base for tables owned by the marketplace."""


def _build_engine(url: str) -> AsyncEngine:
    is_sqlite = url.startswith("sqlite")

    # Engine config: PostgreSQL needs connection pool settings, SQLite does not
    engine_kwargs: dict = {"echo": False}
    if not is_sqlite:
        engine_kwargs.update({
            "pool_size": 5,
            "max_overflow": 10,
            "pool_timeout": 30,
            "pool_recycle": 1800,  # Recycle connections every 30 min (prevent stale connections)
        })

    engine = create_async_engine(url, **engine_kwargs)

    # SQLite-only: Enable WAL mode and busy_timeout for concurrent access.
    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine


def _ensure_sqlite_dir(url: str) -> None:
    if not url.startswith("sqlite") or ":memory:" in url:
        return
    db_path = url.split(":///", 1)[-1]
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)


registry_engine = _build_engine(settings.registry_database_url)
marketplace_engine = _build_engine(settings.marketplace_database_url)

registry_session = async_sessionmaker(registry_engine, class_=AsyncSession, expire_on_commit=False)
marketplace_session = async_sessionmaker(marketplace_engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    """Create all tables in both stores."""
    for url in (settings.registry_database_url, settings.marketplace_database_url):
        _ensure_sqlite_dir(url)
    async with registry_engine.begin() as conn:
        await conn.run_sync(RegistryBase.metadata.create_all)
    async with marketplace_engine.begin() as conn:
        await conn.run_sync(MarketplaceBase.metadata.create_all)


async def dispose_engines():
    """Dispose of both connection pools. Call on shutdown."""
    await registry_engine.dispose()
    await marketplace_engine.dispose()


def contains_pattern(q: str) -> str:
    """Lower-cased ``LIKE`` pattern matching ``q`` anywhere. Use with ``escape="\\\\"``."""
    escaped = q.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
