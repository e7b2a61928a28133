"""Database connection and session management."""

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from library_visibility.config import get_settings

settings = get_settings()


def _engine_kwargs(database_url: str) -> dict:
    """Pool options for the configured backend (SQLite does not take pool sizing)."""
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,  # Verify connections before use to avoid stale connections
        "pool_recycle": 300,    # Recycle connections after 5 minutes
    }


# Create async engine
# Always disable SQL echo - exclusion rebuilds issue a lot of statements
engine = create_async_engine(
    settings.database_url,
    echo=False,
    **_engine_kwargs(settings.database_url),
)

# Session factory
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Base class for models
Base = declarative_base()


async def init_db():
    """Initialize database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)


async def get_db() -> AsyncSession:
    """Dependency for getting database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def dialect_insert(session: AsyncSession):
    """
    Return the ``insert`` construct for the session's backend.

    Both the PostgreSQL and SQLite variants support
    ``on_conflict_do_nothing`` / ``on_conflict_do_update``, which the
    incremental exclusion paths rely on.
    """
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert
