"""
Database Configuration Module
Async SQLAlchemy engine and session factory
"""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import DATABASE_URL

# Base for models
Base = declarative_base()


def build_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """Create an async engine; pooling options only apply to server databases."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,              # Verify connections before use
        pool_recycle=3600,               # Recycle connections after 1 hour
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False
    )


engine = build_engine()

# Async session factory
AsyncSessionLocal = build_session_factory(engine)


async def create_all(bind: AsyncEngine = engine) -> None:
    """Create tables for every model registered on Base."""
    import models  # noqa: F401  (registers tables)

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI to get database session.
    Automatically handles session lifecycle.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
