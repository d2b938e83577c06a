"""Async SQLAlchemy engine and the request-scoped session dependency."""

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storefront.core.config import settings

connect_args = {}
if settings.ASYNC_DATABASE_URL.startswith("sqlite"):
    # concurrent carts and callbacks wait for the single SQLite writer
    connect_args = {"timeout": 30}

async_engine: AsyncEngine = create_async_engine(
    settings.ASYNC_DATABASE_URL,
    pool_pre_ping=True,
    connect_args=connect_args,
)

# objects stay readable after commit; services refresh explicitly
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    expire_on_commit=False,
    autoflush=False,
)


async def get_async_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session
