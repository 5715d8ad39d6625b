from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession

from src.database.engine import async_session, engine


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a database session."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def task_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for one ``asyncio.run`` inside a Celery task.

    asyncpg connections are bound to the event loop that opened them, so the
    pool is disposed before the loop closes.
    """
    try:
        async with async_session() as session:
            yield session
    finally:
        await engine.dispose()
