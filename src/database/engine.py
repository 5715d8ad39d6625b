"""Async and sync engines for the galleries database."""

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings


def _engine_options(url: str, pool_size: int, max_overflow: int) -> dict:
    """Pool options for ``url``; SQLite (local runs) uses its default pool."""
    options: dict = {"echo": settings.database_echo}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    return options


engine = create_async_engine(
    settings.database_url,
    **_engine_options(
        settings.database_url,
        settings.database_pool_size,
        settings.database_max_overflow,
    ),
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Change-feed processor runs synchronously inside Celery workers
sync_engine = create_engine(
    settings.database_url_sync,
    **_engine_options(settings.database_url_sync, pool_size=5, max_overflow=0),
)
