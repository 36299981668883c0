"""
Schema introspection for the primary backend.

Deployments differ in which tables, columns and server-side functions they
carry; the resolver asks this module before it decides which strategies
can run.

Rules:
- Every metadata query can fail. A failure is reported as "unknown", which
  callers read as "not present" (False / empty). It is never reported as
  "exists" and never raised.
- Successful answers are cached for the lifetime of the inspector. Unknown
  answers are not cached, so a recovered backend is seen on the next call.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Hashable

from catalog.core.db.descriptor import is_identifier
from catalog.core.db.pool import SqlitePool

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True, slots=True)
class ColumnInfo:
    name: str
    type: str


class SchemaInspector:
    """
    Answers existence questions about tables, columns and functions.

    Args:
        pool: Primary backend pool
        cache: Cache successful answers (disable for diagnostics)
        timeout: Per-query timeout in seconds
    """

    def __init__(self, pool: SqlitePool, *, cache: bool = True, timeout: float | None = 5.0) -> None:
        self._pool = pool
        self._use_cache = cache
        self._timeout = timeout
        self._cache: dict[Hashable, Any] = {}

    def invalidate(self) -> None:
        """Forget every cached answer."""
        self._cache.clear()

    def uncached(self) -> SchemaInspector:
        """Return an inspector over the same pool that never caches."""
        return SchemaInspector(self._pool, cache=False, timeout=self._timeout)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def list_tables(self) -> set[str]:
        rows = await self._cached(
            ("tables",),
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%';",
            (),
        )
        if rows is None:
            return set()
        return {str(r["name"]) for r in rows}

    async def table_exists(self, name: str) -> bool:
        if not is_identifier(name):
            return False
        rows = await self._cached(
            ("table", name),
            "SELECT 1 FROM sqlite_master WHERE type IN ('table', 'view') AND name = ?;",
            (name,),
        )
        return bool(rows)

    async def describe_columns(self, table: str) -> list[ColumnInfo]:
        if not is_identifier(table):
            return []
        rows = await self._cached(
            ("columns", table),
            "SELECT name, type FROM pragma_table_info(?) ORDER BY cid;",
            (table,),
        )
        if rows is None:
            return []
        return [ColumnInfo(name=str(r["name"]), type=str(r["type"] or "")) for r in rows]

    async def column_exists(self, table: str, column: str) -> bool:
        if not is_identifier(column):
            return False
        return any(c.name == column for c in await self.describe_columns(table))

    async def function_exists(self, name: str) -> bool:
        if not is_identifier(name):
            return False
        rows = await self._cached(
            ("function", name),
            "SELECT 1 FROM pragma_function_list WHERE lower(name) = lower(?);",
            (name,),
        )
        return bool(rows)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _cached(self, key: Hashable, sql: str, params: tuple[Any, ...]) -> list[Any] | None:
        if self._use_cache:
            hit = self._cache.get(key, _MISSING)
            if hit is not _MISSING:
                return hit

        rows = await self._query(sql, params)
        if rows is not None and self._use_cache:
            self._cache[key] = rows
        return rows

    async def _query(self, sql: str, params: tuple[Any, ...]) -> list[Any] | None:
        try:
            if self._timeout is None:
                return await self._run(sql, params)
            return await asyncio.wait_for(self._run(sql, params), timeout=self._timeout)
        except Exception as e:
            logger.warning("Schema query failed, treating answer as unknown: %s", e)
            return None

    async def _run(self, sql: str, params: tuple[Any, ...]) -> list[Any]:
        async with self._pool.acquire() as conn:
            cursor = await conn.execute(sql, params)
            return list(await cursor.fetchall())
