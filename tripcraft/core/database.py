from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from tripcraft.core.config import settings

# Base class for models
Base = declarative_base()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, making sure a file-backed SQLite directory exists"""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_async_engine(database_url, echo=echo, future=True)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# Create async engine
engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

# Create async session
async_session = build_session_factory(engine)


async def init_db(bind: AsyncEngine = None):
    """Create all tables"""
    # Registers the mapped classes on Base.metadata
    import tripcraft.models.db_models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Dependency for getting DB session
async def get_db():
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
