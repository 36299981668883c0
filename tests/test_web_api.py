"""
Tests for catalog.web (FastAPI routes + response envelope).

These tests verify:
- Every catalog route answers HTTP 200 with {success, message, data, meta}
- success is true only when something was found
- meta separates empty, failed and invalid outcomes
- /health and /api/diagnostic
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from catalog.core.db.executor import QueryExecutor
from catalog.core.db.inspector import SchemaInspector
from catalog.core.db.pool import SqlitePool
from catalog.core.health import HealthReporter
from catalog.core.resolver import CatalogResolver
from catalog.core.strategies import Resolution, ResolutionStatus
from catalog.web.envelope import many, single
from catalog.web.server import WebServer

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def web_server(pool: SqlitePool, resolver: CatalogResolver) -> WebServer:
    """Create a WebServer over the seeded store."""
    reporter = HealthReporter(QueryExecutor(pool), SchemaInspector(pool, cache=False))
    return WebServer(resolver, reporter)


@pytest.fixture
async def client(web_server: WebServer) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=web_server.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def down_client(db_path: Path, make_resolver) -> AsyncIterator[AsyncClient]:
    """Client for a server whose primary store is unreachable."""
    pool = SqlitePool(db_path)
    reporter = HealthReporter(QueryExecutor(pool), SchemaInspector(pool, cache=False))
    server = WebServer(make_resolver(pool), reporter)
    async with AsyncClient(transport=ASGITransport(app=server.app), base_url="http://test") as client:
        yield client


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    async def test_health_check(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "server": "catalog"}

    async def test_diagnostic(self, client: AsyncClient) -> None:
        body = (await client.get("/api/diagnostic")).json()

        assert body["success"] is True
        assert body["data"]["backend_reachable"] is True
        assert "releases" in body["data"]["table_inventory"]

    async def test_diagnostic_store_down(self, down_client: AsyncClient) -> None:
        response = await down_client.get("/api/diagnostic")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["data"]["backend_reachable"] is False


# =============================================================================
# Artists
# =============================================================================


class TestArtistRoutes:
    async def test_artist(self, client: AsyncClient) -> None:
        body = (await client.get("/api/artists/A1")).json()

        assert body["success"] is True
        assert body["data"]["id"] == "A1"
        assert body["data"]["name"] == "Nova Drift"
        assert body["meta"]["strategy"] == "primary"

    async def test_artist_releases(self, client: AsyncClient) -> None:
        response = await client.get("/api/artists/A1/releases")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Artist releases fetched successfully (2)"
        assert [r["id"] for r in body["data"]["releases"]] == ["R2", "R1"]
        assert body["meta"] == {"status": "found", "strategy": "join-edge", "approximate": False}

    async def test_artist_releases_approximate(self, client: AsyncClient) -> None:
        body = (await client.get("/api/artists/A2/releases")).json()

        assert body["success"] is True
        assert body["meta"]["approximate"] is True
        assert "label-sibling" in body["message"]

    async def test_artist_releases_query_form(self, client: AsyncClient) -> None:
        body = (await client.get("/api/artist-releases", params={"id": "A1"})).json()

        assert [r["id"] for r in body["data"]["releases"]] == ["R2", "R1"]

    async def test_artist_releases_missing_id(self, client: AsyncClient) -> None:
        response = await client.get("/api/artist-releases")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["data"] == {"releases": []}
        assert body["meta"]["status"] == "invalid"

    async def test_unknown_artist(self, client: AsyncClient) -> None:
        body = (await client.get("/api/artists/nobody/releases")).json()

        assert body["success"] is False
        assert body["message"] == "artist nobody not found"
        assert body["meta"]["status"] == "empty"

    async def test_store_down(self, down_client: AsyncClient) -> None:
        response = await down_client.get("/api/artists/A1/releases")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["meta"]["status"] == "failed"
        assert body["meta"]["attempts"]


# =============================================================================
# Releases / Tracks / Labels
# =============================================================================


class TestCatalogRoutes:
    async def test_release(self, client: AsyncClient) -> None:
        body = (await client.get("/api/releases/R1")).json()

        assert body["success"] is True
        release = body["data"]
        assert release["title"] == "First Light"
        assert [a["id"] for a in release["artists"]] == ["A1"]
        assert [t["id"] for t in release["tracks"]] == ["T1", "T2"]

    async def test_unknown_release(self, client: AsyncClient) -> None:
        response = await client.get("/api/releases/R404")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["data"] is None
        assert body["message"] == "No release found"

    async def test_release_tracks(self, client: AsyncClient) -> None:
        body = (await client.get("/api/releases/R1/tracks")).json()

        assert [t["track_number"] for t in body["data"]] == [1, 2]

    async def test_track(self, client: AsyncClient) -> None:
        body = (await client.get("/api/tracks/T3")).json()

        assert body["data"]["title"] == "Untitled Track"

    async def test_label(self, client: AsyncClient) -> None:
        body = (await client.get("/api/labels/L1")).json()

        assert body["data"] == {"id": "L1", "name": "Nightshift Records"}

    async def test_label_releases_paging(self, client: AsyncClient) -> None:
        body = (await client.get("/api/labels/L1/releases", params={"limit": 1, "offset": 1})).json()

        assert [r["id"] for r in body["data"]] == ["R1"]

    @pytest.mark.parametrize("params", [{"limit": "ten"}, {"offset": "-1"}])
    async def test_label_releases_bad_paging(self, client: AsyncClient, params: dict[str, str]) -> None:
        response = await client.get("/api/labels/L1/releases", params=params)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["meta"]["status"] == "invalid"

    async def test_label_artists(self, client: AsyncClient) -> None:
        body = (await client.get("/api/labels/L1/artists")).json()

        assert [a["id"] for a in body["data"]] == ["A2", "A1"]

    async def test_list_releases(self, client: AsyncClient) -> None:
        body = (await client.get("/api/releases", params={"label": "L2"})).json()

        assert body["success"] is True
        assert [r["id"] for r in body["data"]] == ["R5", "R3", "R6"]

    async def test_top_releases_route_is_not_a_release_id(self, client: AsyncClient) -> None:
        body = (await client.get("/api/releases/top", params={"limit": 2})).json()

        assert body["success"] is True
        assert body["meta"]["strategy"] == "popularity"
        assert [r["id"] for r in body["data"]] == ["R2", "R5"]

    @pytest.mark.parametrize("path", ["/api/labels/L1/tracks", "/api/tracks/label/L1"])
    async def test_label_tracks(self, client: AsyncClient, path: str) -> None:
        body = (await client.get(path)).json()

        assert body["success"] is True
        assert [t["id"] for t in body["data"]] == ["T3", "T1", "T2"]

    async def test_top_releases_bad_limit(self, client: AsyncClient) -> None:
        response = await client.get("/api/releases/top", params={"limit": "many"})

        assert response.status_code == 200
        assert response.json()["meta"]["status"] == "invalid"


# =============================================================================
# Envelope
# =============================================================================


class TestEnvelope:
    def test_failed_message(self) -> None:
        body = single("release", Resolution(ResolutionStatus.FAILED))

        assert body["success"] is False
        assert body["message"] == "Could not resolve release: data store unavailable"
        assert body["meta"]["attempts"] == []

    def test_invalid_uses_resolution_message(self) -> None:
        body = many("tracks", Resolution.invalid("release id is required"), key="tracks")

        assert body["message"] == "release id is required"
        assert body["data"] == {"tracks": []}

    def test_empty_prefers_resolution_message(self) -> None:
        body = many("artist releases", Resolution(ResolutionStatus.EMPTY, message="artist A9 not found"), key="releases")

        assert body["success"] is False
        assert body["message"] == "artist A9 not found"

    def test_empty_default_message(self) -> None:
        assert single("release", Resolution(ResolutionStatus.EMPTY))["message"] == "No release found"
