"""
Client for the hosted REST proxy (secondary backend).

The proxy exposes each table as a resource collection with a PostgREST
query syntax:

    GET  /rest/v1/releases?select=*&label_id=eq.L1&order=release_date.desc.nullslast&limit=10
    GET  /rest/v1/releases?select=*,artists(id,name)&id=in.("R1","R2")
    POST /rest/v1/rpc/get_artist_releases   {"artist_id_param": "A1"}

Authentication is a static key sent both as `apikey` and as a bearer token.

Errors are raised as `httpx.HTTPError` (transport errors, timeouts and
non-2xx statuses via `raise_for_status()`); the executor turns them into
`Failure` values.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from catalog.core.db.descriptor import Op, Predicate, QueryDescriptor, escape_like, require_identifier
from catalog.core.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

REST_PREFIX = "/rest/v1"


def _quote(value: Any) -> str:
    """Quote a filter value so reserved characters (`,` `(` `)` `:`) are literal."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def _like_pattern(value: Any) -> str:
    """
    Quote a substring for `ilike.` so it matches literally.

    `%` and `_` are escaped for LIKE. A literal `*` cannot be expressed (the
    proxy turns every `*` into `%`), so it degrades to the one-character
    wildcard.
    """
    text = escape_like(str(value)).replace("*", "_")
    return _quote(f"*{text}*")


def _render_filter(predicate: Predicate) -> tuple[str, str]:
    column = require_identifier(predicate.column)
    if predicate.op is Op.EQ:
        if predicate.value is None:
            return column, "is.null"
        return column, f"eq.{predicate.value}"
    if predicate.op is Op.ILIKE:
        return column, f"ilike.{_like_pattern(predicate.value)}"
    if predicate.op is Op.IN:
        values = ",".join(_quote(v) for v in predicate.value)
        return column, f"in.({values})"
    raise ValueError(f"Unsupported operator: {predicate.op!r}")


def render_params(descriptor: QueryDescriptor) -> list[tuple[str, str]]:
    """
    Render a descriptor as PostgREST query parameters.

    A `JoinSpec` becomes a resource embed (`select=*,artists(id,name)`); the
    proxy resolves the many-to-many relation through the join table itself
    and returns the embedded rows as a nested array.
    """
    if descriptor.columns == ("*",):
        select = ["*"]
    else:
        select = [require_identifier(c) for c in descriptor.columns]

    join = descriptor.join
    if join is not None:
        columns = ",".join(require_identifier(c) for c in join.columns)
        select.append(f"{require_identifier(join.target)}({columns})")

    params: list[tuple[str, str]] = [("select", ",".join(select))]
    params.extend(_render_filter(p) for p in descriptor.predicates)

    if descriptor.order:
        parts = []
        for o in descriptor.order:
            part = f"{require_identifier(o.column)}.{'desc' if o.descending else 'asc'}"
            part += ".nullslast" if o.nulls_last else ".nullsfirst"
            parts.append(part)
        params.append(("order", ",".join(parts)))

    if descriptor.limit is not None:
        params.append(("limit", str(int(descriptor.limit))))
    if descriptor.offset:
        params.append(("offset", str(int(descriptor.offset))))
    return params


class RestProxyClient:
    """
    Async client for the REST proxy.

    Args:
        base_url: Proxy root, e.g. "https://project.example.co"
        api_key: Static key for the `apikey` / bearer headers
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests pass `httpx.MockTransport`)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def open(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url + REST_PREFIX,
            headers={
                "apikey": self._api_key,
                "Authorization": f"Bearer {self._api_key}",
                "Accept": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise BackendUnavailableError("RestProxyClient is not open. Call await client.open() first.")
        return self._client

    async def select(self, descriptor: QueryDescriptor) -> list[dict[str, Any]]:
        """Read rows for a descriptor."""
        client = self._require_client()
        table = require_identifier(descriptor.table)
        response = await client.get(f"/{table}", params=render_params(descriptor))
        response.raise_for_status()
        return _as_rows(response.json())

    async def rpc(self, function: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Invoke a server-side function exposed by the proxy."""
        client = self._require_client()
        name = require_identifier(function)
        response = await client.post(f"/rpc/{name}", json=params)
        response.raise_for_status()
        return _as_rows(response.json())


def _as_rows(payload: Any) -> list[dict[str, Any]]:
    if payload is None:
        return []
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if isinstance(payload, (bool, int, float, str)):
        # Scalar functions (e.g. function_exists) answer with a bare value.
        return [{"result": payload}]
    raise ValueError(f"Unexpected payload type from REST proxy: {type(payload).__name__}")
