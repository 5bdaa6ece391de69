from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from kilofly.core.config import settings


def make_engine(url: str | None = None) -> AsyncEngine:
    """Worker tasks build their own engine per event loop; the API shares `engine`."""
    return create_async_engine(url or settings.database_url, pool_pre_ping=True)


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


engine = make_engine()
SessionLocal = make_sessionmaker(engine)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session
