from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from allocation.core.config import settings


class Base(DeclarativeBase):
    pass


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {}
    options: dict = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_timeout": settings.db_pool_timeout_seconds,
    }
    if url.startswith("postgresql+asyncpg"):
        # Server-side guard in addition to the client-side bound in services.store
        timeout_ms = int(settings.store_timeout_seconds * 1000)
        options["connect_args"] = {
            "server_settings": {
                "statement_timeout": str(timeout_ms),
                "lock_timeout": str(timeout_ms),
            }
        }
    return options


def enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """Make pysqlite/aiosqlite emit BEGIN itself so SAVEPOINT and row-level
    ordering behave like a real transactional store."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str) -> AsyncEngine:
    engine = create_async_engine(url, **_engine_options(url))
    if url.startswith("sqlite"):
        enable_sqlite_transactions(engine)
    return engine


engine = build_engine(settings.database_url)
async_session = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session.  Commits on success, rolls back on any error;
    closing the session rolls back anything left uncommitted (e.g. a
    cancelled request)."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
