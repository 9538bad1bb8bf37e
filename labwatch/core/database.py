# labwatch/core/database.py
from typing import AsyncIterator
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from labwatch.core.config import settings


def build_engine(database_url: str, **overrides):
    """Create an async engine; pool sizing only applies to server databases"""
    options = {"echo": False, "future": True, "pool_pre_ping": True}
    if not database_url.startswith("sqlite") and "poolclass" not in overrides:
        options.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_timeout=60,
            pool_recycle=3600,  # Recycle connections every hour
        )
    options.update(overrides)
    return create_async_engine(database_url, **options)


def build_session_maker(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(settings.DATABASE_URL)

async_session_maker = build_session_maker(engine)


async def get_async_session() -> AsyncIterator[AsyncSession]:
    async with async_session_maker() as session:
        yield session
