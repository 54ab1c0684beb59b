"""libsql access for the local backend.

``LocalRecordStore`` keeps the timeline, details and notes tables in one
libsql file at ``DATABASE_PATH`` and opens a short-lived connection per
operation.  Each blocking driver call runs in ``asyncio.to_thread()`` so a
slow disk never stalls slideshow ticks or image checks on the event loop.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import libsql

from src.config import settings

if TYPE_CHECKING:
    from pathlib import Path


class AsyncCursor:
    """Async view over a synchronous libsql cursor."""

    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    async def fetchone(self) -> tuple | None:
        return await asyncio.to_thread(self._cursor.fetchone)

    async def fetchall(self) -> list[tuple]:
        return await asyncio.to_thread(self._cursor.fetchall)

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


class AsyncConnection:
    """Async view over a synchronous libsql connection."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: tuple = ()) -> AsyncCursor:
        cursor = await asyncio.to_thread(self._conn.execute, sql, params)
        return AsyncCursor(cursor)

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _open(path: str) -> Any:
    """Open *path* in WAL mode so page reads don't block an upload's writes."""
    conn = libsql.connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


async def get_connection(path: Path | None = None) -> AsyncConnection:
    """Return an async-wrapped connection to *path* (default ``DATABASE_PATH``)."""
    target = path or settings.database_path
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = await asyncio.to_thread(_open, str(target))
    return AsyncConnection(conn)
