# health_explorer/db/session.py
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from health_explorer.config import get_settings
from . import models  # noqa: F401  ensure models are imported for metadata


# -------------------------
# Engine & session factory
# -------------------------

_settings = get_settings()

engine: AsyncEngine = create_async_engine(
    _settings.database_url,
    echo=_settings.sql_echo,
    pool_pre_ping=True,
)

SessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)


# -------------------------
# Schema management
# -------------------------

async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all tables if they do not exist (dev/local usage)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
