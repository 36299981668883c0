"""
Catalog REST API routes.

- /api/artists/{id}, /api/artists/{id}/releases, /api/artist-releases?id=
- /api/releases?label=&limit=, /api/releases/top?label=&limit=
- /api/releases/{id}, /api/releases/{id}/tracks
- /api/tracks/{id}
- /api/labels/{id}, /api/labels/{id}/releases, /api/labels/{id}/artists
- /api/labels/{id}/tracks (also /api/tracks/label/{id})
- /api/diagnostic

Every route answers HTTP 200 with the envelope from `catalog.web.envelope`,
including when resolution fails. Only an uninitialized server answers 503.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable

from fastapi import APIRouter, HTTPException

from catalog.core.strategies import Resolution, ResolutionStatus
from catalog.web.envelope import envelope, many, single

if TYPE_CHECKING:
    from fastapi import FastAPI

    from catalog.core.health import HealthReporter
    from catalog.core.resolver import CatalogResolver

logger = logging.getLogger(__name__)

router = APIRouter(tags=["api"])

# References set during route registration
_resolver: CatalogResolver | None = None
_reporter: HealthReporter | None = None


def register_api_routes(
    app: FastAPI,
    resolver: CatalogResolver,
    reporter: HealthReporter | None = None,
) -> None:
    """
    Register API routes with the FastAPI app.

    Args:
        app: FastAPI application instance
        resolver: CatalogResolver answering catalog lookups
        reporter: Optional HealthReporter for /api/diagnostic
    """
    global _resolver, _reporter
    _resolver = resolver
    _reporter = reporter
    app.include_router(router)


def _require_resolver() -> CatalogResolver:
    if _resolver is None:
        raise HTTPException(status_code=503, detail="Server not initialized")
    return _resolver


async def _guarded(what: str, call: Awaitable[Resolution[Any]]) -> Resolution[Any]:
    """Await a resolution; an unexpected error becomes a FAILED resolution."""
    try:
        return await call
    except Exception:
        logger.exception("Unexpected error while resolving %s", what)
        return Resolution(ResolutionStatus.FAILED, message=f"internal error resolving {what}")


def _parse_paging(value: str | None, name: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer") from None


# =============================================================================
# Artists
# =============================================================================


@router.get("/api/artists/{artist_id}")
async def get_artist(artist_id: str) -> dict[str, Any]:
    resolver = _require_resolver()
    return single("artist", await _guarded("artist", resolver.get_artist(artist_id)))


@router.get("/api/artists/{artist_id}/releases")
async def get_artist_releases(artist_id: str) -> dict[str, Any]:
    """Releases of an artist, resolved through the strategy chain."""
    resolver = _require_resolver()
    resolution = await _guarded("artist releases", resolver.releases_for_artist(artist_id))
    return many("artist releases", resolution, key="releases")


@router.get("/api/artist-releases")
async def get_artist_releases_by_query(id: str | None = None) -> dict[str, Any]:
    """Query-string form used by older frontends: /api/artist-releases?id=..."""
    resolver = _require_resolver()
    resolution = await _guarded("artist releases", resolver.releases_for_artist(id))
    return many("artist releases", resolution, key="releases")


# =============================================================================
# Releases / Tracks
# =============================================================================


@router.get("/api/releases")
async def list_releases(label: str | None = None, limit: str | None = None) -> dict[str, Any]:
    """Newest releases, optionally filtered by label (default limit 50)."""
    resolver = _require_resolver()
    try:
        parsed_limit = _parse_paging(limit, "limit")
    except ValueError as e:
        return many("releases", Resolution.invalid(str(e)))

    resolution = await _guarded(
        "releases",
        resolver.list_releases(label_id=label, limit=50 if parsed_limit is None else parsed_limit),
    )
    return many("releases", resolution)


@router.get("/api/releases/top")
async def top_releases(label: str | None = None, limit: str | None = None) -> dict[str, Any]:
    """Most popular releases, optionally filtered by label (default limit 10)."""
    resolver = _require_resolver()
    try:
        parsed_limit = _parse_paging(limit, "limit")
    except ValueError as e:
        return many("top releases", Resolution.invalid(str(e)))

    resolution = await _guarded(
        "top releases",
        resolver.top_releases(label_id=label, limit=10 if parsed_limit is None else parsed_limit),
    )
    return many("top releases", resolution)


@router.get("/api/releases/{release_id}")
async def get_release(release_id: str) -> dict[str, Any]:
    resolver = _require_resolver()
    return single("release", await _guarded("release", resolver.get_release(release_id)))


@router.get("/api/releases/{release_id}/tracks")
async def get_release_tracks(release_id: str) -> dict[str, Any]:
    resolver = _require_resolver()
    return many("tracks", await _guarded("tracks", resolver.tracks_for_release(release_id)))


@router.get("/api/tracks/{track_id}")
async def get_track(track_id: str) -> dict[str, Any]:
    resolver = _require_resolver()
    return single("track", await _guarded("track", resolver.get_track(track_id)))


# =============================================================================
# Labels
# =============================================================================


@router.get("/api/labels/{label_id}")
async def get_label(label_id: str) -> dict[str, Any]:
    resolver = _require_resolver()
    return single("label", await _guarded("label", resolver.get_label(label_id)))


@router.get("/api/labels/{label_id}/releases")
async def get_label_releases(
    label_id: str,
    limit: str | None = None,
    offset: str | None = None,
) -> dict[str, Any]:
    resolver = _require_resolver()
    try:
        parsed_limit = _parse_paging(limit, "limit")
        parsed_offset = _parse_paging(offset, "offset")
    except ValueError as e:
        return many("label releases", Resolution.invalid(str(e)))

    resolution = await _guarded(
        "label releases",
        resolver.releases_for_label(label_id, limit=parsed_limit, offset=parsed_offset),
    )
    return many("label releases", resolution)


@router.get("/api/labels/{label_id}/tracks")
@router.get("/api/tracks/label/{label_id}")
async def get_label_tracks(label_id: str, limit: str | None = None) -> dict[str, Any]:
    resolver = _require_resolver()
    try:
        parsed_limit = _parse_paging(limit, "limit")
    except ValueError as e:
        return many("label tracks", Resolution.invalid(str(e)))

    resolution = await _guarded(
        "label tracks",
        resolver.tracks_for_label(label_id, limit=50 if parsed_limit is None else parsed_limit),
    )
    return many("label tracks", resolution)


@router.get("/api/labels/{label_id}/artists")
async def get_label_artists(label_id: str) -> dict[str, Any]:
    resolver = _require_resolver()
    return many("label artists", await _guarded("label artists", resolver.artists_for_label(label_id)))


# =============================================================================
# Diagnostics
# =============================================================================


@router.get("/api/diagnostic")
async def diagnostic() -> dict[str, Any]:
    """Store reachability, table inventory and one sample row per table."""
    if _reporter is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    try:
        report = await _reporter.report()
    except Exception:
        logger.exception("Diagnostic report failed")
        return envelope(False, "Diagnostic report failed", None)

    if report.backend_reachable:
        return envelope(True, "Data store reachable", report.to_dict())
    return envelope(False, "Data store unreachable", report.to_dict())
