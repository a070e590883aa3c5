"""
SQLAlchemy connection scoping for the direct database paths.

The direct executor and the PostgreSQL log store accept either an
``AsyncEngine`` (built from ``ClientConfig.database_url``) or an
``AsyncConnection`` owned by the caller. ``execute_with_connection`` hides
the difference.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

DatabaseBind = AsyncConnection | AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: DatabaseBind,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection ready for ``execute()`` calls.

    Args:
        conn: Engine or caller-owned connection
        transactional: For engines, run inside ``begin()`` (commit on exit)
            rather than a bare ``connect()``. Ignored for connections; the
            caller owns their transaction.
    """
    if isinstance(conn, AsyncConnection):
        yield conn
        return

    scope = conn.begin() if transactional else conn.connect()
    async with scope as connection:
        yield connection


def create_engine_from_url(database_url: str) -> AsyncEngine:
    """
    Build an async engine for a direct Postgres DSN.

    Plain ``postgresql://`` and ``postgres://`` URLs are upgraded to the
    asyncpg driver.
    """
    for prefix in ("postgres://", "postgresql://"):
        if database_url.startswith(prefix):
            database_url = "postgresql+asyncpg://" + database_url[len(prefix) :]
            break
    return create_async_engine(database_url, pool_pre_ping=True)


__all__ = [
    "DatabaseBind",
    "execute_with_connection",
    "create_engine_from_url",
]
