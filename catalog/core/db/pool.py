"""
Bounded connection pool for the primary (direct) backend.

The pool is constructed once at process start and shared by every request.
Connections are handed out through `acquire()`, an async context manager
that returns the connection to the pool on every exit path (normal return,
exception, cancellation).

Usage:
    pool = SqlitePool("catalog.sqlite3", size=5)
    await pool.open()
    async with pool.acquire() as conn:
        cursor = await conn.execute("SELECT 1")
    await pool.close()
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

import aiosqlite

from catalog.core.db.schema import ensure_schema as ensure_schema_sql
from catalog.core.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

OnConnect = Callable[[aiosqlite.Connection], Awaitable[None]]


class SqlitePool:
    """
    Fixed-size pool of aiosqlite connections.

    `on_connect` runs once per connection after the pragmas are applied.
    Deployments use it to register server-side functions (for example
    `get_artist_releases`), which SQLite scopes to a single connection.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        size: int = 5,
        on_connect: OnConnect | None = None,
    ) -> None:
        if size < 1:
            raise ValueError("Pool size must be at least 1")
        self._db_path = str(db_path)
        self._size = size
        self._on_connect = on_connect
        self._connections: list[aiosqlite.Connection] = []
        self._idle: asyncio.Queue[aiosqlite.Connection] | None = None

    @property
    def is_open(self) -> bool:
        return self._idle is not None

    @property
    def size(self) -> int:
        return self._size

    @property
    def db_path(self) -> str:
        return self._db_path

    async def open(self) -> None:
        if self._idle is not None:
            return

        idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=self._size)
        try:
            for _ in range(self._size):
                conn = await self._connect()
                self._connections.append(conn)
                idle.put_nowait(conn)
        except Exception:
            await self._close_all()
            raise

        self._idle = idle
        logger.info("Opened connection pool (%d connections) for %s", self._size, self._db_path)

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self._db_path)
        conn.row_factory = aiosqlite.Row

        # Pragmas: modern defaults without being clever.
        await conn.execute("PRAGMA foreign_keys = ON;")
        await conn.execute("PRAGMA journal_mode = WAL;")
        await conn.execute("PRAGMA synchronous = NORMAL;")
        await conn.execute("PRAGMA temp_store = MEMORY;")

        if self._on_connect is not None:
            await self._on_connect(conn)
        return conn

    async def close(self) -> None:
        if self._idle is None and not self._connections:
            return
        self._idle = None
        await self._close_all()
        logger.info("Closed connection pool for %s", self._db_path)

    async def _close_all(self) -> None:
        connections, self._connections = self._connections, []
        for conn in connections:
            try:
                await conn.close()
            except Exception as e:
                logger.warning("Error closing pooled connection: %s", e)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a connection; it is returned when the block exits."""
        idle = self._idle
        if idle is None:
            raise BackendUnavailableError("SqlitePool is not open. Call await pool.open() first.")

        conn = await idle.get()
        try:
            yield conn
        finally:
            idle.put_nowait(conn)

    async def ping(self) -> None:
        """Run a trivial query; raises if the store cannot be reached."""
        async with self.acquire() as conn:
            cursor = await conn.execute("SELECT 1;")
            await cursor.fetchone()

    async def ensure_schema(self) -> None:
        """Create or migrate the canonical schema."""
        async with self.acquire() as conn:
            await ensure_schema_sql(conn)
