"""
Async database setup: declarative base, engine and session factories.

The engine is created lazily so importing models never requires a live
database driver connection.
"""
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine, applying pool settings where the driver supports them."""
    kwargs = {"pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["max_overflow"] = settings.db_max_overflow
    return create_async_engine(database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory used by services.

    expire_on_commit=False: services keep reading attributes after the
    per-row commits the ledger relies on.
    """
    return async_sessionmaker(engine, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url)
    return _engine


def async_session_maker() -> AsyncSession:
    """Open a new session on the application engine."""
    global _session_maker
    if _session_maker is None:
        _session_maker = create_session_factory(get_engine())
    return _session_maker()


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create tables that do not exist yet."""
    import app.models  # noqa: F401  (register mappers)

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None


def is_unique_violation(exc: IntegrityError) -> bool:
    """
    True when an IntegrityError came from a UNIQUE constraint.

    PostgreSQL reports SQLSTATE 23505; SQLite only has the message text.
    """
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate == "23505"
    text = str(orig if orig is not None else exc).lower()
    return "unique" in text or "duplicate key" in text
