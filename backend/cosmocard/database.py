"""
CosmoCard Backend — Registry Session Management
=================================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependency.
Why:   The registry is the indexed store keyed by card_id; it decides a card's
       stage, while the spreadsheet is kept as an export of the same fields.
How:   Creates an async engine with connection pooling, provides a session
       dependency that commits on success and rolls back on error.
Who:   Used by route handlers via FastAPI's dependency injection system, and
       by the batch sweep, which opens its own session outside a request.

Rollback semantics:
    Card creation flushes the card row early to claim the per-user sequence,
    then calls Drive and Sheets. If any of those fail, the exception escapes
    the route, get_db_session rolls the reservation back, and the card
    service unwinds the external side effects it had already made.
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from cosmocard.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool options for server databases; SQLite picks its own pool class."""
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# expire_on_commit=False keeps card attributes readable after the request commits
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all registry ORM models (shared metadata for Alembic)."""
    pass


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back the transaction and re-raises
        5. Always: closes the session (returns connection to pool)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_tables() -> None:
    """Create all registry tables; used by tests and local SQLite setups."""
    # Models must be imported so their tables are registered on Base.metadata
    from cosmocard.models import card, user  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close all pooled connections; called during application shutdown."""
    await engine.dispose()
