"""
Database Configuration and Session Management
============================================

Builders for the async engine and session factory used by the trade escrow engine,
plus the managed-session context every lifecycle operation runs inside.

Nothing is created at import time: the server (or a test) builds the engine and
hands the session factory to the services that need it.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config import Config
from models import Base

logger = logging.getLogger(__name__)


def normalize_async_url(database_url: str) -> str:
    """Map plain PostgreSQL URLs onto the asyncpg driver"""
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    # asyncpg uses 'ssl' instead of 'sslmode'
    if "+asyncpg" in database_url and "sslmode=" in database_url:
        database_url = database_url.replace("sslmode=", "ssl=")
    return database_url


def build_async_engine(
    database_url: Optional[str] = None,
    echo: Optional[bool] = None,
    pool_size: Optional[int] = None,
) -> AsyncEngine:
    """Create the async engine from explicit arguments or Config defaults"""
    url = normalize_async_url(database_url or Config.DATABASE_URL)
    echo = Config.DATABASE_ECHO if echo is None else echo

    if url.startswith("sqlite"):
        # SQLite has no connection pool sizing
        engine = create_async_engine(url, echo=echo)
    else:
        engine = create_async_engine(
            url,
            pool_size=pool_size or Config.DATABASE_POOL_SIZE,
            max_overflow=15,
            pool_pre_ping=True,    # Validate connections before use
            pool_recycle=3600,     # Recycle connections every hour
            pool_timeout=30,
            echo=echo,
            connect_args={
                "server_settings": {"application_name": "p2p_trade_escrow"},
                "timeout": 10,
                "command_timeout": 30,
            },
        )

    logger.info(f"✅ DATABASE_ENGINE: created for {url.split('://', 1)[0]}")
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with attributes kept loaded after commit"""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def async_managed_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Async context manager for database sessions: commit on success, roll back on any error"""
    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.debug(f"Database session rolled back: {type(e).__name__}: {e}")
        await session.rollback()
        raise
    finally:
        await session.close()


async def create_tables(engine: AsyncEngine) -> None:
    """Create all database tables if they don't exist"""
    try:
        logger.info("🏗️ Creating database tables (if they don't exist)...")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ Database tables ready")
    except SQLAlchemyError as e:
        logger.error(f"❌ Failed to create database tables: {e}")
        raise


async def check_connection(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """Test database connection"""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"❌ DATABASE_CONNECTION_FAILED: {e}")
        return False
