# homeledger/db.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import NullPool
from homeledger import categories
from homeledger.config import settings
from homeledger.models import Base

logger = logging.getLogger(__name__)

# Engine: tune pool size via env/config (SQLAlchemy will pass through to asyncpg)
engine = create_async_engine(
    settings.database_url,
    echo=False,
)

# Use async_sessionmaker (SQLAlchemy 2.0 style for async)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models() -> None:
    """
    Development helper that creates tables from ORM metadata and seeds the
    system categories.
    In production, prefer Alembic migrations instead of create_all().
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        await categories.seed_system_categories(session)
    logger.info("Database tables created/checked")


async def close_engine() -> None:
    """Call this on app shutdown to cleanly dispose connection pool."""
    await engine.dispose()
    logger.info("Database engine disposed")


async def ping_database() -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


# FastAPI dependency
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Use in FastAPI routes like:
        async def endpoint(session: AsyncSession = Depends(get_async_session)):
            ...
    Ensures session is closed and rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def task_session() -> AsyncIterator[AsyncSession]:
    """
    Session for Celery workers. Each task runs its own event loop, so it gets
    a throwaway engine without pooling instead of the module-level one.
    """
    task_engine = create_async_engine(settings.database_url, poolclass=NullPool)
    try:
        async with async_sessionmaker(task_engine, expire_on_commit=False, class_=AsyncSession)() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
    finally:
        await task_engine.dispose()
