"""
Shared fixtures for the catalog test suite.

Stores are real SQLite files under `tmp_path` (the pool opens several
connections, so an in-memory database would not be shared). Degraded
deployments are built per test by running DDL directly instead of
`ensure_schema()`.
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

import httpx
import pytest

from catalog.core.db.executor import QueryExecutor
from catalog.core.db.functions import catalog_functions
from catalog.core.db.inspector import SchemaInspector
from catalog.core.db.pool import SqlitePool
from catalog.core.resolver import CatalogResolver
from catalog.core.rest import RestProxyClient

# Canonical deployment: join table present, no releases.artist_id column.
# Server-side functions only exist on `function_pool`.
CANONICAL_SEED = """
INSERT INTO labels (id, name, display_name) VALUES
    ('L1', 'nightshift', 'Nightshift Records'),
    ('L2', 'dawn', NULL);

INSERT INTO artists (id, name, image_url, profile_image_url, spotify_url, label_id, spotify_id) VALUES
    ('A1', 'Nova Drift', 'https://img.example/a1.jpg', NULL, 'https://open.spotify.com/artist/a1', 'L1', 'sp-a1'),
    ('A2', 'Kx', NULL, 'https://img.example/a2-profile.jpg', NULL, 'L1', NULL),
    ('A3', 'Quiet Person', NULL, NULL, NULL, NULL, NULL),
    ('A4', 'Featured Guest', NULL, NULL, NULL, 'L2', NULL);

INSERT INTO releases (id, title, release_date, artwork_url, label_id, primary_artist_id, created_at) VALUES
    ('R1', 'First Light', '2021-05-01', 'https://img.example/r1.jpg', 'L1', 'A1', '2024-01-01T00:00:00Z'),
    ('R2', 'Second Wind', '2023-01-10', NULL, 'L1', 'A1', '2024-01-02T00:00:00Z'),
    ('R3', 'Kx Sessions', '2020-03-03', NULL, 'L2', NULL, '2024-01-03T00:00:00Z'),
    ('R4', 'Night Moves', NULL, NULL, 'L1', NULL, '2024-01-04T00:00:00Z'),
    ('R5', 'Dawn Chorus', '2022-07-07', NULL, 'L2', NULL, '2024-01-05T00:00:00Z'),
    ('R6', 'Late Bloom', '2018-02-02', NULL, 'L2', NULL, '2024-01-06T00:00:00Z');

INSERT INTO release_artists (release_id, artist_id, role) VALUES
    ('R1', 'A1', 'primary'),
    ('R2', 'A1', 'primary'),
    ('R2', 'A4', 'featured');

INSERT INTO tracks (id, title, track_number, duration_ms, release_id) VALUES
    ('T2', 'Second', 2, 200000, 'R1'),
    ('T1', 'Opening', 1, 180000, 'R1'),
    ('T3', NULL, 1, NULL, 'R2');
"""


async def run_script(pool: SqlitePool, script: str) -> None:
    """Run DDL/DML against the store and commit."""
    async with pool.acquire() as conn:
        await conn.executescript(script)
        await conn.commit()


Handler = Callable[[httpx.Request], "httpx.Response | Awaitable[httpx.Response]"]


@pytest.fixture
def make_rest() -> Callable[[Handler], RestProxyClient]:
    """Factory for REST proxy clients whose requests are answered by a handler."""

    def make(handler: Handler) -> RestProxyClient:
        return RestProxyClient(
            "https://proxy.example",
            "test-key",
            transport=httpx.MockTransport(handler),
        )

    return make


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "catalog.sqlite3"


@pytest.fixture
async def raw_pool(db_path: Path) -> AsyncIterator[SqlitePool]:
    """An open pool over an empty store (build the schema in the test)."""
    pool = SqlitePool(db_path, size=2)
    await pool.open()
    yield pool
    await pool.close()


@pytest.fixture
async def pool(raw_pool: SqlitePool) -> SqlitePool:
    """An open pool over a store with the canonical schema and seed data."""
    await raw_pool.ensure_schema()
    await run_script(raw_pool, CANONICAL_SEED)
    return raw_pool


@pytest.fixture
async def function_pool(db_path: Path) -> AsyncIterator[SqlitePool]:
    """The canonical seeded store, with the catalog SQL functions registered."""
    pool = SqlitePool(db_path, size=2, on_connect=catalog_functions(str(db_path)))
    await pool.open()
    await pool.ensure_schema()
    await run_script(pool, CANONICAL_SEED)
    yield pool
    await pool.close()


@pytest.fixture
def make_resolver() -> Callable[..., CatalogResolver]:
    def make(pool: SqlitePool | None, rest: RestProxyClient | None = None, **kwargs: object) -> CatalogResolver:
        executor = QueryExecutor(pool, rest, timeout=2.0)
        inspector = SchemaInspector(pool) if pool is not None else SchemaInspector(SqlitePool(":memory:"))
        return CatalogResolver(executor, inspector, **kwargs)  # type: ignore[arg-type]

    return make


@pytest.fixture
def resolver(pool: SqlitePool, make_resolver: Callable[..., CatalogResolver]) -> CatalogResolver:
    return make_resolver(pool)


@pytest.fixture
def run_sql() -> Callable[[SqlitePool, str], Awaitable[None]]:
    """Run a SQL script against a pool (used to build degraded schemas)."""
    return run_script
