"""Database connection and session management."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.orm import declarative_base

from leadintel.config import settings

# Base class for models
Base = declarative_base()


def normalize_database_url(url: str) -> str:
    """Force the asyncpg driver for plain postgres URLs."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine(url: str = None, echo: bool = None) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    url = normalize_database_url(url or settings.DATABASE_URL)
    kwargs = {
        "echo": settings.LOG_LEVEL == "DEBUG" if echo is None else echo,
    }
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def create_all(engine: AsyncEngine):
    """Create tables for every model (tests and local bootstrapping)."""
    # Import registers the mappers on Base.metadata
    import leadintel.models  # noqa: F401
    
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
