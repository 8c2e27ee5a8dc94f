from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine


def _normalize_db_url(url: str | None) -> str | None:
    # hosted postgres often hands out "postgres://..."; the async engine needs "postgresql+asyncpg://..."
    if not url:
        return None
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def install_sqlite_pragmas(engine: AsyncEngine, busy_timeout_ms: int = 5000) -> None:
    """WAL lets readers run beside the single writer; busy_timeout makes concurrent
    compare-and-set writers queue instead of failing with 'database is locked'."""

    @event.listens_for(engine.sync_engine, "connect")
    def sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)};")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()


def fresh(stmt):
    # sessions keep rows across commits (expire_on_commit=False); reads in the
    # reservation flows must always overwrite them with the current db state
    return stmt.execution_options(populate_existing=True)
