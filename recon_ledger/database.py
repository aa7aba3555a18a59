"""
Reconciliation Ledger - Database Configuration

This module handles database connection setup using SQLAlchemy 2.0 async.
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from recon_ledger.config import settings


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, **overrides: Any) -> AsyncEngine:
    """
    Create an async engine configured for the target backend.

    SQLite gets no pool sizing and enforced foreign keys; server databases
    get a pre-pinged pool and the configured isolation level.
    """
    kwargs: Dict[str, Any] = {"echo": settings.debug}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(
            pool_pre_ping=True,   # Verify connections before use
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            isolation_level=settings.db_isolation_level,
        )
    kwargs.update(overrides)

    async_engine = create_async_engine(database_url, **kwargs)
    if database_url.startswith("sqlite"):
        event.listen(async_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return async_engine


def build_session_factory(async_engine: AsyncEngine) -> async_sessionmaker:
    """Session factory shared by the app and the test suite."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine(settings.database_url_async)

# Create async session factory
async_session_factory = build_session_factory(engine)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database session.
    Use with FastAPI's Depends().
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """
    Initialize database - create all tables.
    Use this for development/testing only.
    For production, use Alembic migrations.
    """
    # Register every model on Base.metadata before create_all
    import recon_ledger.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()
