"""
Connection handling helper for the SQLAlchemy backends.

Lets the PostgreSQL components accept either an AsyncEngine (they open
their own connection or transaction) or an AsyncConnection owned by the
caller (used as is, so the caller controls the transaction).
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection ready for ``execute()`` calls.

    Args:
        conn: Database connection or engine
        transactional: With an engine, wrap the work in ``begin()`` (commit
            on success, rollback on error) instead of a bare ``connect()``.
            Ignored for connections.

    Example:
        >>> async with execute_with_connection(self.conn) as conn:
        ...     await conn.execute(query, params)
    """
    if isinstance(conn, AsyncEngine):
        if transactional:
            async with conn.begin() as connection:
                yield connection
        else:
            async with conn.connect() as connection:
                yield connection
    else:
        # Caller is responsible for transaction management
        yield conn
