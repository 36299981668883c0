"""
Catalog relationship resolver.

Builds the strategy chains behind every catalog lookup and runs them
against the executor, consulting the schema inspector for viability.

Artist -> releases (fixed priority):
    1. join-edge         release_artists edges, batched release fetch
    2. direct-column     releases.artist_id
    3. stored-procedure  get_artist_releases(artist_id)
    4. title-match       artist name inside release titles (approximate)
    5. label-sibling     releases of the artist's label (approximate)
    6. recent-sample     most recently created releases (approximate)

Single-entity lookups run a two-step chain (primary, then secondary) and
then the same pair keyed by Spotify id where the table carries one.

Catalog reads (release listings, top releases, label tracks) are one- or
two-strategy chains over the same loaders.

Release artists come from exactly one source per resolution: the
release_artists join table when it exists, otherwise the legacy
`primary_artist_id` / `artist_id` column on the release.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Iterable, Iterator, Sequence

from catalog.core.db.descriptor import JoinSpec, Op, OrderBy, Predicate, QueryDescriptor
from catalog.core.db.executor import Backend, Failure, QueryExecutor, RowSet
from catalog.core.db.inspector import SchemaInspector
from catalog.core.models import (
    UNKNOWN_ARTIST_NAME,
    Artist,
    ArtistId,
    Label,
    Release,
    ReleaseArtist,
    ReleaseId,
    Track,
)
from catalog.core.normalizer import (
    ARTIST_EMBED,
    normalize_artists,
    normalize_labels,
    normalize_releases,
    normalize_tracks,
)
from catalog.core.strategies import (
    AttemptOutcome,
    Resolution,
    ResolutionStatus,
    Strategy,
    StrategyChain,
)

logger = logging.getLogger(__name__)

EDGE_TABLE = "release_artists"
ARTIST_RELEASES_FUNCTION = "get_artist_releases"

# Artist columns embedded into releases, when the deployment has them.
_ARTIST_EMBED_COLUMNS = ("id", "name", "image_url", "profile_image_url", "spotify_url", "label_id")

_NEWEST_FIRST = (OrderBy("release_date", descending=True), OrderBy("id"))
_BY_TRACK_NUMBER = (OrderBy("track_number"), OrderBy("id"))
_BY_NAME = (OrderBy("name"), OrderBy("id"))

_PUNCTUATION_RE = re.compile(r"[^\w\s]")

Loader = Callable[[QueryDescriptor, "Backend | None"], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class ArtistContext:
    """What is known about the artist when the releases chain starts."""

    artist_id: str
    name: str | None = None
    label_id: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def clean_key(value: Any) -> str | None:
    """Return a stripped identifier, or None when it is blank."""
    if value is None:
        return None
    key = str(value).strip()
    return key or None


def search_term(name: str | None) -> str:
    """Strip punctuation from an artist name for title matching."""
    if not name:
        return ""
    return _PUNCTUATION_RE.sub("", name).strip()


def newest_first(releases: Iterable[Release]) -> list[Release]:
    """Order by release date descending, undated last, id ascending on ties."""
    by_id = sorted(releases, key=lambda r: r.id)
    return sorted(by_id, key=lambda r: r.release_date or "", reverse=True)


def _batched(items: Sequence[str], size: int) -> Iterator[tuple[str, ...]]:
    for start in range(0, len(items), size):
        yield tuple(items[start : start + size])


def _distinct(values: Iterable[Any]) -> list[str]:
    return list(dict.fromkeys(str(v) for v in values if v is not None and str(v) != ""))


def _where(table: str, column: str, op: Op, value: Any, **kwargs: Any) -> QueryDescriptor:
    return QueryDescriptor(table, predicates=(Predicate(column, op, value),), **kwargs)


def _answered_empty(resolution: Resolution[Any]) -> bool:
    """True when at least one backend ran a lookup and found nothing."""
    return any(a.outcome is AttemptOutcome.EMPTY for a in resolution.attempts)


def _payload_flag(rows: Sequence[dict[str, Any]]) -> bool:
    """Read a boolean answer from a scalar function's rows."""
    if not rows:
        return False
    return any(bool(v) for v in rows[0].values())


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class CatalogResolver:
    """
    Entry point for every catalog lookup.

    All public methods return a `Resolution`; none of them raises for
    backend trouble or missing data.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        inspector: SchemaInspector,
        *,
        strategy_timeout: float | None = None,
        batch_size: int = 10,
        allow_approximate: bool = True,
        heuristic_min_length: int = 4,
        label_sibling_limit: int = 10,
        sample_limit: int = 5,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._executor = executor
        self._inspector = inspector
        self._strategy_timeout = strategy_timeout
        self._batch_size = batch_size
        self._heuristic_min_length = heuristic_min_length
        self._label_sibling_limit = label_sibling_limit
        self._sample_limit = sample_limit
        self._allow_approximate = allow_approximate

        self.artist_releases: StrategyChain[ArtistContext, Release] = StrategyChain(
            "artist-releases",
            [
                Strategy("join-edge", self._run_join_edge, self._edges_viable),
                Strategy("direct-column", self._run_direct_column, self._direct_column_viable),
                Strategy("stored-procedure", self._run_stored_procedure, self._procedure_viable),
                Strategy("title-match", self._run_title_match, self._title_match_viable, approximate=True),
                Strategy("label-sibling", self._run_label_sibling, self._label_sibling_viable, approximate=True),
                Strategy("recent-sample", self._run_recent_sample, approximate=True),
            ],
            timeout=strategy_timeout,
            allow_approximate=allow_approximate,
        )

        self._artist_lookup = self._lookup_chain("artist", "artists", self._load_artists)
        self._release_lookup = self._lookup_chain("release", "releases", self._load_releases)
        self._track_lookup = self._lookup_chain("track", "tracks", self._load_tracks)
        self._label_lookup = self._lookup_chain("label", "labels", self._load_labels)

        self._release_tracks: StrategyChain[str, Track] = StrategyChain(
            "release-tracks",
            [Strategy("by-release", self._run_release_tracks)],
            timeout=strategy_timeout,
        )
        self._label_artists: StrategyChain[str, Artist] = StrategyChain(
            "label-artists",
            [
                Strategy("label-roster", self._run_label_roster, self._label_roster_viable),
                Strategy("release-credits", self._run_label_credits, self._label_credits_viable),
            ],
            timeout=strategy_timeout,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def releases_for_artist(self, artist_id: Any) -> Resolution[Release]:
        """Resolve the releases of an artist through the strategy chain."""
        key = clean_key(artist_id)
        if key is None:
            return Resolution.invalid("artist id is required")

        lookup = await self.get_artist(key)
        if lookup.found and lookup.first is not None:
            artist = lookup.first
            name = None if artist.name == UNKNOWN_ARTIST_NAME else artist.name
            ctx = ArtistContext(artist.id, name, artist.label_id)
        elif lookup.status is ResolutionStatus.EMPTY or _answered_empty(lookup):
            # A backend answered and the artist is not there: no heuristics.
            return Resolution(
                ResolutionStatus.EMPTY,
                attempts=lookup.attempts,
                message=f"artist {key} not found",
            )
        else:
            logger.warning("Artist %s could not be looked up, resolving releases without context", key)
            ctx = ArtistContext(key)

        return await self.artist_releases.resolve(ctx)

    async def get_artist(self, artist_id: Any) -> Resolution[Artist]:
        key = clean_key(artist_id)
        if key is None:
            return Resolution.invalid("artist id is required")
        return await self._artist_lookup.resolve(key)

    async def get_release(self, release_id: Any) -> Resolution[Release]:
        """Look up one release with its artists and tracks."""
        key = clean_key(release_id)
        if key is None:
            return Resolution.invalid("release id is required")

        resolution = await self._release_lookup.resolve(key)
        release = resolution.first
        if release is None:
            return resolution

        tracks = await self.tracks_for_release(release.id)
        if tracks.found:
            release = replace(release, tracks=tracks.items)
        elif tracks.status is ResolutionStatus.FAILED:
            logger.warning("Tracks of release %s could not be resolved: %s", release.id, tracks.message)
        return resolution.with_items([release])

    async def get_track(self, track_id: Any) -> Resolution[Track]:
        key = clean_key(track_id)
        if key is None:
            return Resolution.invalid("track id is required")
        return await self._track_lookup.resolve(key)

    async def get_label(self, label_id: Any) -> Resolution[Label]:
        key = clean_key(label_id)
        if key is None:
            return Resolution.invalid("label id is required")
        return await self._label_lookup.resolve(key)

    async def tracks_for_release(self, release_id: Any) -> Resolution[Track]:
        key = clean_key(release_id)
        if key is None:
            return Resolution.invalid("release id is required")
        return await self._release_tracks.resolve(key)

    async def releases_for_label(
        self,
        label_id: Any,
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Resolution[Release]:
        key = clean_key(label_id)
        if key is None:
            return Resolution.invalid("label id is required")
        if (limit is not None and limit < 0) or (offset is not None and offset < 0):
            return Resolution.invalid("limit and offset must not be negative")

        async def run(label: str) -> list[Release] | Failure:
            return await self._load_releases(
                _where("releases", "label_id", Op.EQ, label, order=_NEWEST_FIRST, limit=limit, offset=offset)
            )

        chain: StrategyChain[str, Release] = StrategyChain(
            "label-releases", [Strategy("by-label", run)], timeout=self._strategy_timeout
        )
        return await chain.resolve(key)

    async def artists_for_label(self, label_id: Any) -> Resolution[Artist]:
        key = clean_key(label_id)
        if key is None:
            return Resolution.invalid("label id is required")
        return await self._label_artists.resolve(key)

    async def list_releases(self, *, label_id: Any = None, limit: int = 50) -> Resolution[Release]:
        """Newest releases of the catalog, optionally restricted to one label."""
        if limit < 0:
            return Resolution.invalid("limit must not be negative")
        label = clean_key(label_id)

        async def run(_ctx: None) -> list[Release] | Failure:
            descriptor = QueryDescriptor("releases", order=_NEWEST_FIRST, limit=limit)
            if label is not None:
                descriptor = descriptor.where("label_id", Op.EQ, label)
            return await self._load_releases(descriptor)

        chain: StrategyChain[None, Release] = StrategyChain(
            "releases", [Strategy("newest", run)], timeout=self._strategy_timeout
        )
        return await chain.resolve(None)

    async def top_releases(self, *, label_id: Any = None, limit: int = 10) -> Resolution[Release]:
        """
        Most popular releases, optionally restricted to one label.

        Deployments without `releases.popularity` get the newest releases
        instead, reported as approximate.
        """
        if limit < 0:
            return Resolution.invalid("limit must not be negative")
        label = clean_key(label_id)

        def ranked(order: tuple[OrderBy, ...]) -> Callable[[None], Awaitable[Any]]:
            async def run(_ctx: None) -> list[Release] | Failure:
                descriptor = QueryDescriptor("releases", order=order, limit=limit)
                if label is not None:
                    descriptor = descriptor.where("label_id", Op.EQ, label)
                return await self._load_releases(descriptor)

            return run

        async def popularity_viable(_ctx: None) -> bool:
            return await self._inspector.column_exists("releases", "popularity")

        by_popularity = (OrderBy("popularity", descending=True), *_NEWEST_FIRST)
        chain: StrategyChain[None, Release] = StrategyChain(
            "top-releases",
            [
                Strategy("popularity", ranked(by_popularity), popularity_viable),
                Strategy("newest", ranked(_NEWEST_FIRST), approximate=True),
            ],
            timeout=self._strategy_timeout,
            allow_approximate=self._allow_approximate,
        )
        return await chain.resolve(None)

    async def tracks_for_label(self, label_id: Any, *, limit: int = 50) -> Resolution[Track]:
        """Tracks on a label's releases, newest release first."""
        key = clean_key(label_id)
        if key is None:
            return Resolution.invalid("label id is required")
        if limit < 0:
            return Resolution.invalid("limit must not be negative")

        async def run(label: str) -> list[Track] | Failure:
            return await self._run_label_tracks(label, limit)

        async def viable(_label: str) -> bool:
            return await self._inspector.column_exists("tracks", "release_id")

        chain: StrategyChain[str, Track] = StrategyChain(
            "label-tracks", [Strategy("by-label-releases", run, viable)], timeout=self._strategy_timeout
        )
        return await chain.resolve(key)

    # -------------------------------------------------------------------------
    # Schema facts
    # -------------------------------------------------------------------------

    async def _has_edges(self) -> bool:
        return await self._inspector.table_exists(EDGE_TABLE) and await self._inspector.column_exists(
            EDGE_TABLE, "artist_id"
        )

    async def _artist_join(self) -> JoinSpec:
        available = {c.name for c in await self._inspector.describe_columns("artists")}
        columns = tuple(c for c in _ARTIST_EMBED_COLUMNS if c in available)
        if "id" not in columns:
            columns = ("id", "name")
        has_role = await self._inspector.column_exists(EDGE_TABLE, "role")
        return JoinSpec(
            through=EDGE_TABLE,
            through_local="release_id",
            through_foreign="artist_id",
            target="artists",
            columns=columns,
            embed_as=ARTIST_EMBED,
            through_columns=("role",) if has_role else (),
        )

    # -------------------------------------------------------------------------
    # Loaders: descriptor -> canonical entities | Failure
    # -------------------------------------------------------------------------

    async def _rows(self, descriptor: QueryDescriptor, backend: Backend | None = None) -> RowSet | Failure:
        if backend is None:
            return await self._executor.fetch(descriptor)
        return await self._executor.execute(backend, descriptor)

    async def _load_artists(self, descriptor: QueryDescriptor, backend: Backend | None = None) -> list[Artist] | Failure:
        result = await self._rows(descriptor, backend)
        if isinstance(result, Failure):
            return result
        return normalize_artists(result.rows, result.shape)

    async def _load_tracks(self, descriptor: QueryDescriptor, backend: Backend | None = None) -> list[Track] | Failure:
        result = await self._rows(descriptor, backend)
        if isinstance(result, Failure):
            return result
        return normalize_tracks(result.rows, result.shape)

    async def _load_labels(self, descriptor: QueryDescriptor, backend: Backend | None = None) -> list[Label] | Failure:
        result = await self._rows(descriptor, backend)
        if isinstance(result, Failure):
            return result
        return normalize_labels(result.rows, result.shape)

    async def _load_releases(
        self, descriptor: QueryDescriptor, backend: Backend | None = None
    ) -> list[Release] | Failure:
        """Load releases with their artists from the one source the schema offers."""
        edges = await self._has_edges()
        if edges:
            descriptor = replace(descriptor, join=await self._artist_join())

        result = await self._rows(descriptor, backend)
        if isinstance(result, Failure):
            return result

        releases = normalize_releases(result.rows, result.shape)
        if edges or not releases:
            return releases
        return await self._attach_legacy_artists(releases, result.rows)

    async def _attach_legacy_artists(self, releases: list[Release], rows: list[dict[str, Any]]) -> list[Release]:
        credited: dict[str, str] = {}
        for row in rows:
            artist_id = row.get("primary_artist_id") or row.get("artist_id")
            if artist_id and row.get("id") is not None:
                credited.setdefault(str(row["id"]), str(artist_id))
        if not credited:
            return releases

        artists = await self._artists_by_ids(_distinct(credited.values()))
        if isinstance(artists, Failure):
            logger.warning("Could not load credited artists, returning releases without them: %s", artists)
            return releases

        by_id = {a.id: a for a in artists}
        attached = []
        for release in releases:
            artist = by_id.get(ArtistId(credited.get(release.id, "")))
            if artist is None:
                attached.append(release)
                continue
            credit = ReleaseArtist(ReleaseId(release.id), artist.id, "primary")
            attached.append(replace(release, artists=(artist,), credits=(credit,)))
        return attached

    async def _artists_by_ids(self, artist_ids: Sequence[str]) -> list[Artist] | Failure:
        found: dict[str, Artist] = {}
        for batch in _batched(artist_ids, self._batch_size):
            artists = await self._load_artists(_where("artists", "id", Op.IN, batch))
            if isinstance(artists, Failure):
                return artists
            for artist in artists:
                found.setdefault(artist.id, artist)
        return list(found.values())

    # -------------------------------------------------------------------------
    # Single-entity lookups
    # -------------------------------------------------------------------------

    def _lookup_chain(self, entity: str, table: str, load: Loader) -> StrategyChain[str, Any]:
        def by(column: str, backend: Backend) -> Callable[[str], Awaitable[Any]]:
            async def run(key: str) -> Any:
                return await load(_where(table, column, Op.EQ, key, limit=1), backend)

            return run

        async def secondary_viable(_key: str) -> bool:
            return self._executor.has_secondary

        async def alias_viable(_key: str) -> bool:
            return await self._inspector.column_exists(table, "spotify_id")

        async def alias_secondary_viable(key: str) -> bool:
            return self._executor.has_secondary and await alias_viable(key)

        return StrategyChain(
            f"{entity}-lookup",
            [
                Strategy("primary", by("id", Backend.PRIMARY)),
                Strategy("secondary", by("id", Backend.SECONDARY), secondary_viable),
                Strategy("spotify-id@primary", by("spotify_id", Backend.PRIMARY), alias_viable),
                Strategy("spotify-id@secondary", by("spotify_id", Backend.SECONDARY), alias_secondary_viable),
            ],
            timeout=self._strategy_timeout,
        )

    # -------------------------------------------------------------------------
    # Artist -> releases strategies
    # -------------------------------------------------------------------------

    async def _edges_viable(self, ctx: ArtistContext) -> bool:
        return await self._has_edges()

    async def _run_join_edge(self, ctx: ArtistContext) -> list[Release] | Failure:
        edges = await self._executor.fetch(
            _where(EDGE_TABLE, "artist_id", Op.EQ, ctx.artist_id, columns=("release_id",))
        )
        if isinstance(edges, Failure):
            return edges

        release_ids = _distinct(r.get("release_id") for r in edges.rows)
        if not release_ids:
            return []

        found: dict[str, Release] = {}
        for batch in _batched(release_ids, self._batch_size):
            releases = await self._load_releases(_where("releases", "id", Op.IN, batch))
            if isinstance(releases, Failure):
                return releases
            for release in releases:
                found.setdefault(release.id, release)
        return newest_first(found.values())

    async def _direct_column_viable(self, ctx: ArtistContext) -> bool:
        return await self._inspector.column_exists("releases", "artist_id")

    async def _run_direct_column(self, ctx: ArtistContext) -> list[Release] | Failure:
        return await self._load_releases(
            _where("releases", "artist_id", Op.EQ, ctx.artist_id, order=_NEWEST_FIRST)
        )

    async def _procedure_viable(self, ctx: ArtistContext) -> bool:
        if await self._inspector.function_exists(ARTIST_RELEASES_FUNCTION):
            return True
        if not self._executor.has_secondary:
            return False
        # The proxy answers existence questions through its own RPC.
        answer = await self._executor.invoke(
            Backend.SECONDARY, "function_exists", {"function_name": ARTIST_RELEASES_FUNCTION}
        )
        if isinstance(answer, Failure):
            logger.debug("Secondary function check failed: %s", answer)
            return False
        return _payload_flag(answer.rows)

    async def _run_stored_procedure(self, ctx: ArtistContext) -> list[Release] | Failure:
        result = await self._executor.call(ARTIST_RELEASES_FUNCTION, {"artist_id_param": ctx.artist_id})
        if isinstance(result, Failure):
            return result
        return normalize_releases(result.rows, result.shape)

    async def _title_match_viable(self, ctx: ArtistContext) -> bool:
        return len(search_term(ctx.name)) >= self._heuristic_min_length

    async def _run_title_match(self, ctx: ArtistContext) -> list[Release] | Failure:
        return await self._load_releases(
            _where("releases", "title", Op.ILIKE, search_term(ctx.name), order=_NEWEST_FIRST)
        )

    async def _label_sibling_viable(self, ctx: ArtistContext) -> bool:
        return ctx.label_id is not None

    async def _run_label_sibling(self, ctx: ArtistContext) -> list[Release] | Failure:
        return await self._load_releases(
            _where(
                "releases",
                "label_id",
                Op.EQ,
                ctx.label_id,
                order=_NEWEST_FIRST,
                limit=self._label_sibling_limit,
            )
        )

    async def _run_recent_sample(self, ctx: ArtistContext) -> list[Release] | Failure:
        has_created = await self._inspector.column_exists("releases", "created_at")
        column = "created_at" if has_created else "release_date"
        return await self._load_releases(
            QueryDescriptor(
                "releases",
                order=(OrderBy(column, descending=True), OrderBy("id")),
                limit=self._sample_limit,
            )
        )

    # -------------------------------------------------------------------------
    # Collection strategies
    # -------------------------------------------------------------------------

    async def _run_release_tracks(self, release_id: str) -> list[Track] | Failure:
        return await self._load_tracks(
            _where("tracks", "release_id", Op.EQ, release_id, order=_BY_TRACK_NUMBER)
        )

    async def _label_roster_viable(self, label_id: str) -> bool:
        return await self._inspector.column_exists("artists", "label_id")

    async def _run_label_roster(self, label_id: str) -> list[Artist] | Failure:
        return await self._load_artists(_where("artists", "label_id", Op.EQ, label_id, order=_BY_NAME))

    async def _label_credits_viable(self, label_id: str) -> bool:
        return await self._has_edges()

    async def _run_label_credits(self, label_id: str) -> list[Artist] | Failure:
        releases = await self._executor.fetch(
            _where("releases", "label_id", Op.EQ, label_id, columns=("id",))
        )
        if isinstance(releases, Failure):
            return releases
        release_ids = _distinct(r.get("id") for r in releases.rows)

        artist_ids: list[str] = []
        for batch in _batched(release_ids, self._batch_size):
            edges = await self._executor.fetch(
                _where(EDGE_TABLE, "release_id", Op.IN, batch, columns=("artist_id",))
            )
            if isinstance(edges, Failure):
                return edges
            artist_ids.extend(str(r["artist_id"]) for r in edges.rows if r.get("artist_id") is not None)

        artists = await self._artists_by_ids(_distinct(artist_ids))
        if isinstance(artists, Failure):
            return artists
        return sorted(artists, key=lambda a: (a.name.lower(), a.id))

    async def _run_label_tracks(self, label_id: str, limit: int) -> list[Track] | Failure:
        releases = await self._executor.fetch(
            _where("releases", "label_id", Op.EQ, label_id, columns=("id",), order=_NEWEST_FIRST)
        )
        if isinstance(releases, Failure):
            return releases
        release_ids = _distinct(r.get("id") for r in releases.rows)

        tracks: list[Track] = []
        for batch in _batched(release_ids, self._batch_size):
            if len(tracks) >= limit:
                break
            found = await self._load_tracks(_where("tracks", "release_id", Op.IN, batch))
            if isinstance(found, Failure):
                return found
            rank = {release_id: i for i, release_id in enumerate(batch)}
            found.sort(key=lambda t: (rank.get(t.release_id, len(rank)), t.track_number, t.id))
            tracks.extend(found)
        return tracks[:limit]
