"""
Dual-backend query execution.

The executor runs a backend-agnostic `QueryDescriptor` against either the
primary backend (pooled direct connection) or the secondary backend (REST
proxy over the same tables).

Failure policy:
- Backend errors never escape as exceptions. They are returned as a typed
  `Failure` value so callers can decide what to try next.
- `fetch()` / `call()` try the primary once and, on failure, the secondary
  once. The primary is never retried.
- Every backend call is bounded by a timeout; a timeout is a `Failure` of
  kind TIMEOUT, indistinguishable from other failures for the caller.

An empty result is *not* a failure: `fetch()` returns an empty `RowSet`
from the primary without consulting the secondary.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import aiosqlite
import httpx

from catalog.core.db.descriptor import QueryDescriptor, render_function_call, render_sql
from catalog.core.errors import BackendUnavailableError

if TYPE_CHECKING:
    from catalog.core.db.pool import SqlitePool
    from catalog.core.rest import RestProxyClient

logger = logging.getLogger(__name__)


class Backend(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class RowShape(str, Enum):
    """
    Declared shape of the rows a source produced.

    - PLAIN: one row per entity, no embedded collections
    - FLAT_JOINED: one row per (entity, embedded member); embedded columns
      are prefixed, e.g. `artist__id`
    - NESTED_REST: one row per entity with embedded arrays (`artists`, `tracks`)
    """

    PLAIN = "plain"
    FLAT_JOINED = "flat_joined"
    NESTED_REST = "nested_rest"


class FailureKind(str, Enum):
    CONNECTION = "connection"
    QUERY = "query"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    NOT_CONFIGURED = "not_configured"
    MALFORMED = "malformed"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True, slots=True)
class RowSet:
    backend: Backend
    shape: RowShape
    rows: list[dict[str, Any]]

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True, slots=True)
class Failure:
    """
    A backend call that did not produce rows.

    For kind EXHAUSTED, `backend` is None and `causes` holds the failure of
    each backend that was tried.
    """

    backend: Backend | None
    kind: FailureKind
    message: str
    causes: tuple[Failure, ...] = ()

    def __str__(self) -> str:
        if self.backend is None:
            return f"{self.kind.value}: {self.message}"
        return f"{self.backend.value} {self.kind.value}: {self.message}"


def _rows_from_payload(payload: Any) -> list[dict[str, Any]]:
    if payload is None:
        return []
    if isinstance(payload, str):
        payload = json.loads(payload)
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    raise ValueError(f"Unexpected function payload type: {type(payload).__name__}")


class QueryExecutor:
    """
    Runs descriptors and server-side functions against both backends.

    Args:
        pool: Primary backend pool (None disables the primary)
        rest: Secondary backend client (None disables the secondary)
        timeout: Per-call timeout in seconds (None disables it)
    """

    def __init__(
        self,
        pool: SqlitePool | None,
        rest: RestProxyClient | None = None,
        *,
        timeout: float | None = 5.0,
    ) -> None:
        self._pool = pool
        self._rest = rest
        self._timeout = timeout

    @property
    def has_primary(self) -> bool:
        return self._pool is not None

    @property
    def has_secondary(self) -> bool:
        return self._rest is not None

    # -------------------------------------------------------------------------
    # Single backend
    # -------------------------------------------------------------------------

    async def execute(self, backend: Backend, descriptor: QueryDescriptor) -> RowSet | Failure:
        """Run one descriptor against one backend."""
        if backend is Backend.PRIMARY:
            return await self._guard(backend, lambda: self._select_primary(descriptor))
        return await self._guard(backend, lambda: self._select_secondary(descriptor))

    async def invoke(self, backend: Backend, function: str, params: dict[str, Any]) -> RowSet | Failure:
        """Invoke a server-side function on one backend."""
        if backend is Backend.PRIMARY:
            return await self._guard(backend, lambda: self._call_primary(function, params))
        return await self._guard(backend, lambda: self._call_secondary(function, params))

    async def ping(self, backend: Backend) -> Failure | None:
        """Check that a backend answers; returns None when it did."""
        if backend is Backend.PRIMARY:
            result = await self._guard(backend, self._ping_primary)
        else:
            result = await self._guard(
                backend, lambda: self._select_secondary(QueryDescriptor("labels", limit=1))
            )
        return result if isinstance(result, Failure) else None

    # -------------------------------------------------------------------------
    # Primary -> secondary fallback
    # -------------------------------------------------------------------------

    async def fetch(self, descriptor: QueryDescriptor) -> RowSet | Failure:
        """Run a descriptor on the primary, falling back to the secondary once."""
        return await self._with_fallback(
            f"query on {descriptor.table}",
            lambda backend: self.execute(backend, descriptor),
        )

    async def call(self, function: str, params: dict[str, Any]) -> RowSet | Failure:
        """Invoke a server-side function, falling back to the secondary once."""
        return await self._with_fallback(
            f"function {function}",
            lambda backend: self.invoke(backend, function, params),
        )

    async def _with_fallback(
        self,
        what: str,
        attempt: Callable[[Backend], Awaitable[RowSet | Failure]],
    ) -> RowSet | Failure:
        primary = await attempt(Backend.PRIMARY)
        if isinstance(primary, RowSet):
            return primary

        if not self.has_secondary:
            logger.warning("Primary %s failed, no secondary configured: %s", what, primary)
            return Failure(
                None,
                FailureKind.EXHAUSTED,
                f"{what} failed on every backend",
                causes=(primary, Failure(Backend.SECONDARY, FailureKind.NOT_CONFIGURED, "not configured")),
            )

        logger.warning("Primary %s failed (%s), trying secondary", what, primary)
        secondary = await attempt(Backend.SECONDARY)
        if isinstance(secondary, RowSet):
            return secondary

        logger.warning("Secondary %s failed: %s", what, secondary)
        return Failure(
            None,
            FailureKind.EXHAUSTED,
            f"{what} failed on every backend",
            causes=(primary, secondary),
        )

    # -------------------------------------------------------------------------
    # Error classification
    # -------------------------------------------------------------------------

    async def _guard(
        self,
        backend: Backend,
        operation: Callable[[], Awaitable[Any]],
    ) -> Any:
        if backend is Backend.PRIMARY and self._pool is None:
            return Failure(backend, FailureKind.NOT_CONFIGURED, "primary backend not configured")
        if backend is Backend.SECONDARY and self._rest is None:
            return Failure(backend, FailureKind.NOT_CONFIGURED, "secondary backend not configured")

        try:
            if self._timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout=self._timeout)
        except TimeoutError:
            return Failure(backend, FailureKind.TIMEOUT, f"no answer within {self._timeout}s")
        except BackendUnavailableError as e:
            return Failure(backend, FailureKind.CONNECTION, str(e))
        except httpx.HTTPStatusError as e:
            return Failure(
                backend,
                FailureKind.HTTP_STATUS,
                f"HTTP {e.response.status_code} from {e.request.url.path}",
            )
        except httpx.TimeoutException as e:
            return Failure(backend, FailureKind.TIMEOUT, str(e) or type(e).__name__)
        except httpx.TransportError as e:
            return Failure(backend, FailureKind.CONNECTION, str(e) or type(e).__name__)
        except OSError as e:
            return Failure(backend, FailureKind.CONNECTION, str(e))
        except aiosqlite.Error as e:
            return Failure(backend, FailureKind.QUERY, str(e))
        except ValueError as e:
            # Invalid identifiers and undecodable payloads.
            return Failure(backend, FailureKind.MALFORMED, str(e))

    # -------------------------------------------------------------------------
    # Backend implementations
    # -------------------------------------------------------------------------

    async def _select_primary(self, descriptor: QueryDescriptor) -> RowSet:
        assert self._pool is not None
        sql, params = render_sql(descriptor)
        logger.debug("primary: %s %r", sql, params)
        async with self._pool.acquire() as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        shape = RowShape.PLAIN if descriptor.join is None else RowShape.FLAT_JOINED
        return RowSet(Backend.PRIMARY, shape, [dict(r) for r in rows])

    async def _select_secondary(self, descriptor: QueryDescriptor) -> RowSet:
        assert self._rest is not None
        rows = await self._rest.select(descriptor)
        shape = RowShape.PLAIN if descriptor.join is None else RowShape.NESTED_REST
        return RowSet(Backend.SECONDARY, shape, rows)

    async def _call_primary(self, function: str, params: dict[str, Any]) -> RowSet:
        assert self._pool is not None
        sql = render_function_call(function, len(params))
        async with self._pool.acquire() as conn:
            cursor = await conn.execute(sql, list(params.values()))
            row = await cursor.fetchone()
        payload = row["payload"] if row is not None else None
        return RowSet(Backend.PRIMARY, RowShape.NESTED_REST, _rows_from_payload(payload))

    async def _call_secondary(self, function: str, params: dict[str, Any]) -> RowSet:
        assert self._rest is not None
        rows = await self._rest.rpc(function, params)
        return RowSet(Backend.SECONDARY, RowShape.NESTED_REST, rows)

    async def _ping_primary(self) -> None:
        assert self._pool is not None
        await self._pool.ping()
