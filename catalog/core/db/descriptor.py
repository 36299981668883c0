"""
Backend-agnostic query descriptors and their SQL rendering.

A `QueryDescriptor` says *what* to read (table, predicates, ordering,
paging, an optional many-to-many embed). Each backend renders it in its own
dialect:
- the primary backend via `render_sql()` in this module
- the REST proxy via `catalog.core.rest.render_params()`

Important:
- Values are always bound as parameters.
- Identifiers (tables, columns) cannot be bound, so they are validated
  against a strict pattern before being placed in SQL. Do NOT loosen
  `is_identifier()`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Separator between the embed name and the target column in flat-joined rows,
# e.g. "artist__id", "artist__name".
EMBED_SEPARATOR = "__"


def is_identifier(name: str) -> bool:
    """Return True if `name` is safe to use as a bare SQL identifier."""
    return bool(name) and _IDENTIFIER_RE.match(name) is not None


def require_identifier(name: str) -> str:
    if not is_identifier(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


class Op(str, Enum):
    """Predicate operators supported by both backends."""

    EQ = "eq"
    ILIKE = "ilike"
    IN = "in"


@dataclass(frozen=True, slots=True)
class Predicate:
    """
    A single filter.

    For `Op.ILIKE` the value is a substring matched case-insensitively.
    For `Op.IN` the value is a sequence of values.
    """

    column: str
    op: Op
    value: Any


@dataclass(frozen=True, slots=True)
class OrderBy:
    column: str
    descending: bool = False
    nulls_last: bool = True


@dataclass(frozen=True, slots=True)
class JoinSpec:
    """
    Many-to-many embed through a join table.

    Example (releases -> release_artists -> artists):
        JoinSpec(
            through="release_artists",
            through_local="release_id",
            through_foreign="artist_id",
            target="artists",
            columns=("id", "name"),
            embed_as="artist",
            through_columns=("role",),
        )
    """

    through: str
    through_local: str
    through_foreign: str
    target: str
    columns: tuple[str, ...]
    embed_as: str
    target_key: str = "id"
    local_key: str = "id"
    through_columns: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class QueryDescriptor:
    table: str
    predicates: tuple[Predicate, ...] = ()
    order: tuple[OrderBy, ...] = ()
    limit: int | None = None
    offset: int | None = None
    join: JoinSpec | None = None
    columns: tuple[str, ...] = field(default=("*",))

    def where(self, column: str, op: Op, value: Any) -> QueryDescriptor:
        """Return a copy with one more predicate."""
        return QueryDescriptor(
            table=self.table,
            predicates=(*self.predicates, Predicate(column, op, value)),
            order=self.order,
            limit=self.limit,
            offset=self.offset,
            join=self.join,
            columns=self.columns,
        )


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so `value` matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _render_columns(descriptor: QueryDescriptor) -> str:
    if descriptor.columns == ("*",):
        parts = ["t.*"]
    else:
        parts = [f"t.{require_identifier(c)}" for c in descriptor.columns]

    join = descriptor.join
    if join is not None:
        embed = require_identifier(join.embed_as)
        for column in join.columns:
            parts.append(f"j1.{require_identifier(column)} AS {embed}{EMBED_SEPARATOR}{column}")
        for column in join.through_columns:
            parts.append(f"j0.{require_identifier(column)} AS {embed}{EMBED_SEPARATOR}{column}")
    return ", ".join(parts)


def _render_join(join: JoinSpec) -> str:
    return (
        f"LEFT JOIN {require_identifier(join.through)} j0 "
        f"ON j0.{require_identifier(join.through_local)} = t.{require_identifier(join.local_key)} "
        f"LEFT JOIN {require_identifier(join.target)} j1 "
        f"ON j1.{require_identifier(join.target_key)} = j0.{require_identifier(join.through_foreign)}"
    )


def _render_predicate(predicate: Predicate, params: list[Any]) -> str:
    column = f"t.{require_identifier(predicate.column)}"

    if predicate.op is Op.EQ:
        if predicate.value is None:
            return f"{column} IS NULL"
        params.append(predicate.value)
        return f"{column} = ?"

    if predicate.op is Op.ILIKE:
        # SQLite LIKE is case-insensitive for ASCII.
        params.append(f"%{escape_like(str(predicate.value))}%")
        return f"{column} LIKE ? ESCAPE '\\'"

    if predicate.op is Op.IN:
        values: Sequence[Any] = list(predicate.value)
        if not values:
            return "0"
        params.extend(values)
        placeholders = ", ".join("?" for _ in values)
        return f"{column} IN ({placeholders})"

    raise ValueError(f"Unsupported operator: {predicate.op!r}")


def _render_order(order: Sequence[OrderBy]) -> str:
    parts = []
    for o in order:
        direction = "DESC" if o.descending else "ASC"
        nulls = " NULLS LAST" if o.nulls_last else " NULLS FIRST"
        parts.append(f"t.{require_identifier(o.column)} {direction}{nulls}")
    return "ORDER BY " + ", ".join(parts)


def _render_filtered(descriptor: QueryDescriptor, columns: str, params: list[Any]) -> list[str]:
    sql = [f"SELECT {columns}", f"FROM {require_identifier(descriptor.table)} t"]

    if descriptor.predicates:
        clauses = [_render_predicate(p, params) for p in descriptor.predicates]
        sql.append("WHERE " + " AND ".join(clauses))

    if descriptor.order:
        sql.append(_render_order(descriptor.order))

    if descriptor.limit is not None or descriptor.offset is not None:
        # SQLite requires LIMIT before OFFSET; -1 means unbounded.
        sql.append("LIMIT ? OFFSET ?")
        params.append(int(descriptor.limit) if descriptor.limit is not None else -1)
        params.append(int(descriptor.offset or 0))
    return sql


def render_sql(descriptor: QueryDescriptor) -> tuple[str, list[Any]]:
    """
    Render a descriptor as a parameterized SELECT for the primary backend.

    With a join, filtering and paging run in a subquery so LIMIT counts
    base rows rather than joined rows. Embedded rows are ordered by the
    target key so repeated queries return identical row order.

    Returns:
        Tuple of (sql, params) ready for `conn.execute(sql, params)`.
    """
    params: list[Any] = []
    join = descriptor.join

    if join is None:
        sql = _render_filtered(descriptor, _render_columns(descriptor), params)
        return " ".join(sql) + ";", params

    inner = " ".join(_render_filtered(descriptor, "t.*", params))
    sql = [
        f"SELECT {_render_columns(descriptor)}",
        f"FROM ({inner}) t",
        _render_join(join),
    ]
    tie_break = (
        f"t.{require_identifier(join.local_key)} ASC, j1.{require_identifier(join.target_key)} ASC"
    )
    if descriptor.order:
        sql.append(f"{_render_order(descriptor.order)}, {tie_break}")
    else:
        sql.append(f"ORDER BY {tie_break}")
    return " ".join(sql) + ";", params


def render_function_call(name: str, arg_count: int) -> str:
    """Render a call to a server-side function returning a JSON payload."""
    placeholders = ", ".join("?" for _ in range(arg_count))
    return f"SELECT {require_identifier(name)}({placeholders}) AS payload;"
