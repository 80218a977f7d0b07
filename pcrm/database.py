"""Async database engine and session factory for the local SQLite store."""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .errors import StorageError


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(url: str | None = None, *, echo: bool | None = None) -> AsyncEngine:
    """Create an engine; SQLite connections get foreign key enforcement."""
    url = url or settings.database_url
    eng = create_async_engine(url, echo=settings.echo_sql if echo is None else echo)
    if "sqlite" in url:
        event.listen(eng.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return eng


def make_session_factory(eng: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(eng, class_=AsyncSession, expire_on_commit=False)


engine = create_store_engine()
async_session_factory = make_session_factory(engine)


async def init_db(eng: AsyncEngine | None = None) -> None:
    """Create all tables. Called once at process start."""
    from .models import Base

    async with (eng or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def shutdown(eng: AsyncEngine | None = None) -> None:
    """Dispose the engine and drop the sync cycle locks."""
    from .sync.vault_engine import reset_cycle_locks

    reset_cycle_locks()
    await (eng or engine).dispose()


async def commit(db: AsyncSession) -> None:
    """Commit, rolling back and raising StorageError on failure."""
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StorageError(f"Commit failed: {exc}") from exc


async def flush(db: AsyncSession) -> None:
    """Flush pending writes without committing. A failure rolls the session back."""
    try:
        await db.flush()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StorageError(f"Flush failed: {exc}") from exc
