from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from pick_alerts.config.settings import settings


def build_engine(database_url: str = settings.DATABASE_URL, **kwargs) -> AsyncEngine:
    """Create an async engine; SQLite URLs get the thread-check disabled."""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    elif "poolclass" not in kwargs:
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 20)
        kwargs.setdefault("pool_recycle", 3600)
    return create_async_engine(
        database_url,
        pool_pre_ping=True,
        echo=False,
        **kwargs,
    )


engine = build_engine()

AsyncSessionLocal = async_sessionmaker(
    bind=engine, class_=AsyncSession, expire_on_commit=False
)


async def get_async_session() -> AsyncIterator[AsyncSession]:
    """Dependency to get async database session"""
    async with AsyncSessionLocal() as db:
        try:
            yield db
        except Exception:
            await db.rollback()
            raise


@asynccontextmanager
async def task_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """
    Session factory for Celery tasks.

    Every task runs its own event loop through asyncio.run, so pooled
    connections cannot be shared between runs; a NullPool engine is created
    and disposed around each task.
    """
    task_engine = build_engine(poolclass=NullPool)
    try:
        yield async_sessionmaker(
            bind=task_engine, class_=AsyncSession, expire_on_commit=False
        )
    finally:
        await task_engine.dispose()
