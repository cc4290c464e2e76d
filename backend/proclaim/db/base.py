"""Shared SQLAlchemy base, engine construction and schema setup.

The engine and session factory are built once in the application lifespan
and handed to components explicitly; nothing here holds a module-level
connection.
"""

from datetime import UTC, datetime

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from proclaim.core.config import get_settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _connect_args(url: str, timeout: float) -> dict:
    """Driver-level timeouts so no datastore call blocks indefinitely."""
    driver = make_url(url).get_driver_name()
    if driver == "asyncpg":
        return {"timeout": timeout, "command_timeout": timeout}
    if driver == "aiosqlite":
        # sqlite busy timeout: how long a writer waits on another writer's lock
        return {"timeout": timeout}
    return {}


def create_engine(url: str | None = None) -> AsyncEngine:
    """Build the async engine for ``url`` (defaults to DATABASE_URL)."""
    settings = get_settings()
    db_url = url or settings.database_url
    kwargs: dict = {
        "echo": settings.debug,
        "connect_args": _connect_args(db_url, settings.database_timeout_seconds),
    }
    if make_url(db_url).get_backend_name() != "sqlite":
        kwargs["pool_pre_ping"] = True
        kwargs["pool_timeout"] = settings.database_timeout_seconds
    return create_async_engine(db_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables defined via Base.metadata."""
    # Import all models so metadata is populated before create_all
    import proclaim.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the engine and release all connections."""
    await engine.dispose()
