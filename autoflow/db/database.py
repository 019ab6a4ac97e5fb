"""Async SQLAlchemy engine and session factory."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from autoflow.config import config


def make_engine(url: str = None, echo: bool = None) -> AsyncEngine:
    return create_async_engine(url or config.database_url, echo=config.debug if echo is None else echo)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables. Called at startup."""
    from autoflow.db.models import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
