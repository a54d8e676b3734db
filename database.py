"""
Database Configuration and Session Management
============================================

Async engine, session factory and table creation for the ledger store.
The engine is built once at startup (api_server.build_services) and shared
by the store, the jobs and the HTTP routes.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base

logger = logging.getLogger(__name__)


def to_async_database_url(url: str) -> str:
    """Map a plain PostgreSQL URL onto the asyncpg driver"""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        # asyncpg uses 'ssl' instead of 'sslmode' parameter
        url = url.replace("sslmode=require", "ssl=require")
        url = url.replace("sslmode=prefer", "ssl=prefer")
        url = url.replace("sslmode=disable", "ssl=disable")
    return url


def build_async_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    url = to_async_database_url(database_url)

    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection across sessions
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs["poolclass"] = StaticPool
        return create_async_engine(url, echo=echo, **kwargs)

    return create_async_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,
        pool_timeout=30,
        echo=echo,
        connect_args={
            "server_settings": {
                "application_name": "jastip_reconciliation",
            },
            "timeout": 10,
            "command_timeout": 30,
        },
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,  # Rows are read after their session closes
    )


async def create_tables(engine: AsyncEngine, checkfirst: bool = True) -> None:
    """Create all ledger tables if they don't exist"""
    logger.info(f"🏗️ Creating database tables (if they don't exist): {len(Base.metadata.tables)} models")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=checkfirst)
    logger.info(f"✅ Database schema verified: {', '.join(sorted(Base.metadata.tables))}")


async def dispose_engine(engine: Optional[AsyncEngine]) -> None:
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
