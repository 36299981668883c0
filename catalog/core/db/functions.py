"""
Server-side functions for the primary backend.

SQLite has no stored procedures, so the functions a hosted deployment
exposes over RPC are registered as SQL functions on every pooled
connection:

    get_artist_releases(artist_id)   JSON array of releases with nested artists
    column_exists(table, column)     1 / 0
    function_exists(name)            1 / 0

SQL functions run synchronously inside the connection's worker thread and
cannot see the calling statement's cursor, so each call reads the store
through its own short-lived sqlite3 connection.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from typing import Any

import aiosqlite

from catalog.core.db.descriptor import is_identifier
from catalog.core.db.pool import OnConnect

logger = logging.getLogger(__name__)

FUNCTION_NAMES = ("get_artist_releases", "column_exists", "function_exists")


def _open(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def _tables(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type IN ('table', 'view');")
    return {str(r["name"]) for r in rows}


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {str(r["name"]) for r in conn.execute("SELECT name FROM pragma_table_info(?);", (table,))}


def _legacy_column(release_columns: set[str]) -> str | None:
    for column in ("primary_artist_id", "artist_id"):
        if column in release_columns:
            return column
    return None


def _credited_artists(
    conn: sqlite3.Connection,
    release: dict[str, Any],
    has_edges: bool,
    legacy_column: str | None,
) -> list[dict[str, Any]]:
    if has_edges:
        role = "ra.role" if "role" in _columns(conn, "release_artists") else "NULL"
        rows = conn.execute(
            f"SELECT a.*, {role} AS role FROM release_artists ra "
            "JOIN artists a ON a.id = ra.artist_id "
            "WHERE ra.release_id = ? ORDER BY a.id;",
            (release["id"],),
        ).fetchall()
        if rows:
            return [dict(r) for r in rows]
    if legacy_column is None or release.get(legacy_column) is None:
        return []
    rows = conn.execute(
        "SELECT *, 'primary' AS role FROM artists WHERE id = ?;", (release[legacy_column],)
    ).fetchall()
    return [dict(r) for r in rows]


def artist_releases(conn: sqlite3.Connection, artist_id: str) -> list[dict[str, Any]]:
    """
    Releases credited to an artist, newest first, each with an `artists` array.

    Releases are found through the join table and any legacy artist column
    the deployment carries. A release's artists come from its join table
    edges, or from the legacy column when it has none.
    """
    tables = _tables(conn)
    if "releases" not in tables:
        return []

    release_columns = _columns(conn, "releases")
    has_edges = "release_artists" in tables
    legacy_column = _legacy_column(release_columns)

    sources: list[str] = []
    params: list[Any] = []
    if has_edges:
        sources.append("SELECT release_id FROM release_artists WHERE artist_id = ?")
        params.append(artist_id)
    for column in ("primary_artist_id", "artist_id"):
        if column in release_columns:
            sources.append(f"SELECT id FROM releases WHERE {column} = ?")
            params.append(artist_id)
    if not sources:
        return []

    order = "ORDER BY id"
    if "release_date" in release_columns:
        order = "ORDER BY release_date IS NULL, release_date DESC, id"
    rows = conn.execute(
        f"SELECT * FROM releases WHERE id IN ({' UNION '.join(sources)}) {order};",
        params,
    )
    releases = [dict(r) for r in rows]
    if "artists" in tables:
        for release in releases:
            release["artists"] = _credited_artists(conn, release, has_edges, legacy_column)
    return releases


def catalog_functions(db_path: str) -> OnConnect:
    """
    Build an `on_connect` hook registering the catalog functions.

    Args:
        db_path: Store the functions read from (the pool's own path)
    """

    def get_artist_releases(artist_id: Any) -> str:
        if artist_id is None:
            return "[]"
        with closing(_open(db_path)) as conn:
            return json.dumps(artist_releases(conn, str(artist_id)), default=str)

    def column_exists(table: Any, column: Any) -> int:
        if not (isinstance(table, str) and isinstance(column, str) and is_identifier(table)):
            return 0
        with closing(_open(db_path)) as conn:
            return int(column in _columns(conn, table))

    def function_exists(name: Any) -> int:
        if not isinstance(name, str):
            return 0
        if name.lower() in FUNCTION_NAMES:
            return 1
        with closing(_open(db_path)) as conn:
            row = conn.execute(
                "SELECT 1 FROM pragma_function_list WHERE lower(name) = lower(?);", (name,)
            ).fetchone()
        return int(row is not None)

    async def register(conn: aiosqlite.Connection) -> None:
        await conn.create_function("get_artist_releases", 1, get_artist_releases)
        await conn.create_function("column_exists", 2, column_exists)
        await conn.create_function("function_exists", 1, function_exists)
        logger.debug("Registered catalog functions: %s", ", ".join(FUNCTION_NAMES))

    return register
