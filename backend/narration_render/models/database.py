import asyncio
import logging
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from narration_render.config import get_settings
from narration_render.models.base import Base

logger = logging.getLogger(__name__)


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """Async engine; pool tuning only applies to server databases."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo, future=True)
    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
        pool_size=5,
        max_overflow=0,
        pool_pre_ping=True,  # Check connection health before use
        pool_recycle=300,
        pool_timeout=30,
    )


@lru_cache
def get_engine() -> AsyncEngine:
    settings = get_settings()
    return create_engine_for_url(settings.database_url, echo=settings.database_echo)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@lru_cache
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return create_session_maker(get_engine())


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create tables, retrying while the database comes up."""
    engine = engine or get_engine()
    max_retries = 5
    retry_delay = 2  # seconds

    for attempt in range(max_retries):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            return
        except Exception as e:
            if attempt < max_retries - 1:
                logger.warning(
                    "DB connection attempt %d/%d failed: %s. Retrying in %d seconds...",
                    attempt + 1,
                    max_retries,
                    e,
                    retry_delay,
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.error("Failed to connect to database after %d attempts", max_retries)
                raise

