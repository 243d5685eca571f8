import asyncio
import os

# must be set before homeledger.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("AUTO_PROCESS", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DEEPINFRA_TOKEN", "test-token")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from homeledger.categories import seed_system_categories
from homeledger.models import Base


def memory_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
def run_with_session():
    """Run `scenario(session)` on a fresh, category-seeded in-memory database and return its result."""

    def _run(scenario):
        async def _main():
            engine = memory_engine()
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            try:
                async with async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)() as session:
                    await seed_system_categories(session)
                    return await scenario(session)
            finally:
                await engine.dispose()

        return asyncio.run(_main())

    return _run
