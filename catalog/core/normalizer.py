"""
Row normalization into the canonical entity graph.

Strategies and backends return rows in different shapes (see `RowShape`).
Each entity kind has one normalizing function that understands every
shape, so callers never inspect rows to guess where they came from.

Guarantees:
- Entities are grouped by primary key, first-seen order preserved.
- A release's artists never contain the same id twice; each distinct
  (artist, role) credit is kept once.
- Fields the callers rely on are never null (placeholders are used).
- A row without its primary key raises `MalformedRowError`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable, Mapping

from catalog.core.db.descriptor import EMBED_SEPARATOR
from catalog.core.db.executor import RowShape
from catalog.core.errors import MalformedRowError
from catalog.core.models import (
    PLACEHOLDER_ARTIST_IMAGE,
    PLACEHOLDER_ARTWORK,
    UNKNOWN_ARTIST_NAME,
    UNKNOWN_RELEASE_TITLE,
    UNTITLED_TRACK,
    Artist,
    ArtistId,
    Label,
    LabelId,
    Release,
    ReleaseArtist,
    ReleaseId,
    Track,
    TrackId,
)

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]

# Prefix of embedded artist columns in FLAT_JOINED rows ("artist__id", ...).
ARTIST_EMBED = "artist"
_ARTIST_PREFIX = ARTIST_EMBED + EMBED_SEPARATOR

_ARTIST_IMAGE_FIELDS = ("image_url", "profile_image_url", "profile_image_small_url", "profile_image_large_url")
_ARTWORK_FIELDS = ("artwork_url", "cover_art_url")


class EntityKind(str, Enum):
    RELEASE = "release"
    ARTIST = "artist"
    TRACK = "track"
    LABEL = "label"


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _required_id(row: Row, entity: str, field_name: str = "id") -> str:
    value = row.get(field_name)
    if value is None or str(value).strip() == "":
        raise MalformedRowError(entity, field_name, dict(row))
    return str(value)


def _text(row: Row, *fields: str) -> str | None:
    for name in fields:
        value = row.get(name)
        if value is not None and str(value).strip() != "":
            return str(value)
    return None


def _external_url(row: Row) -> str | None:
    url = _text(row, "spotify_url")
    if url is not None:
        return url
    external = row.get("external_urls")
    if isinstance(external, Mapping):
        return _text(external, "spotify")
    return None


def _artwork_url(row: Row) -> str:
    url = _text(row, *_ARTWORK_FIELDS)
    if url is not None:
        return url
    images = row.get("images")
    if isinstance(images, list) and images and isinstance(images[0], Mapping):
        url = _text(images[0], "url")
        if url is not None:
            return url
    return PLACEHOLDER_ARTWORK


def _int_or(value: Any, default: int | None) -> int | None:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_list(value: Any) -> list[Row]:
    if isinstance(value, Mapping):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, Mapping)]
    return []


# ---------------------------------------------------------------------------
# Single-row builders
# ---------------------------------------------------------------------------


def build_artist(row: Row) -> Artist:
    label_id = _text(row, "label_id")
    return Artist(
        id=ArtistId(_required_id(row, "artist")),
        name=_text(row, "name") or UNKNOWN_ARTIST_NAME,
        image_url=_text(row, *_ARTIST_IMAGE_FIELDS) or PLACEHOLDER_ARTIST_IMAGE,
        spotify_url=_external_url(row),
        label_id=LabelId(label_id) if label_id is not None else None,
    )


def build_track(row: Row, release_id: str | None = None) -> Track:
    if release_id is None:
        release_id = _required_id(row, "track", "release_id")
    return Track(
        id=TrackId(_required_id(row, "track")),
        title=_text(row, "title", "name") or UNTITLED_TRACK,
        release_id=ReleaseId(release_id),
        track_number=_int_or(row.get("track_number"), 0) or 0,
        duration_ms=_int_or(row.get("duration_ms"), None),
        spotify_url=_external_url(row),
        preview_url=_text(row, "preview_url"),
    )


def build_label(row: Row) -> Label:
    label_id = _required_id(row, "label")
    return Label(id=LabelId(label_id), name=_text(row, "display_name", "name") or label_id)


def _flat_artist(row: Row) -> tuple[Artist, str | None] | None:
    """Extract the embedded artist of a FLAT_JOINED row (None for an unmatched LEFT JOIN)."""
    embedded = {
        key[len(_ARTIST_PREFIX):]: value
        for key, value in row.items()
        if key.startswith(_ARTIST_PREFIX)
    }
    if embedded.get("id") is None:
        return None
    return build_artist(embedded), _text(embedded, "role")


def _nested_artists(row: Row) -> list[tuple[Artist, str | None]]:
    """
    Extract embedded artists of a NESTED_REST row.

    Accepts both `artists: [...]` and the credit form
    `release_artists: [{role, artists: {...}}]`.
    """
    found: list[tuple[Artist, str | None]] = []
    for member in _as_list(row.get("artists")):
        found.append((build_artist(member), _text(member, "role")))
    for credit in _as_list(row.get("release_artists")):
        role = _text(credit, "role")
        for member in _as_list(credit.get("artists", credit.get("artist"))):
            found.append((build_artist(member), role))
    return found


# ---------------------------------------------------------------------------
# Releases
# ---------------------------------------------------------------------------


class _ReleaseGroup:
    """Accumulates every row seen for one release id."""

    __slots__ = ("release_id", "row", "artists", "credits", "tracks")

    def __init__(self, release_id: str, row: Row) -> None:
        self.release_id = release_id
        self.row = row
        self.artists: dict[str, Artist] = {}
        self.credits: dict[tuple[str, str | None], ReleaseArtist] = {}
        self.tracks: dict[str, Track] = {}

    def add_artist(self, artist: Artist, role: str | None) -> None:
        self.artists.setdefault(artist.id, artist)
        key = (artist.id, role)
        if key not in self.credits:
            self.credits[key] = ReleaseArtist(ReleaseId(self.release_id), artist.id, role)

    def add_track(self, track: Track) -> None:
        self.tracks.setdefault(track.id, track)

    def build(self) -> Release:
        row = self.row
        label_id = _text(row, "label_id")
        tracks = sorted(self.tracks.values(), key=lambda t: t.track_number)
        return Release(
            id=ReleaseId(self.release_id),
            title=_text(row, "title", "name") or UNKNOWN_RELEASE_TITLE,
            artwork_url=_artwork_url(row),
            release_date=_text(row, "release_date"),
            spotify_url=_external_url(row),
            label_id=LabelId(label_id) if label_id is not None else None,
            artists=tuple(self.artists.values()),
            credits=tuple(self.credits.values()),
            tracks=tuple(tracks),
        )


def normalize_releases(rows: Iterable[Row], shape: RowShape) -> list[Release]:
    groups: dict[str, _ReleaseGroup] = {}

    for row in rows:
        release_id = _required_id(row, "release")
        group = groups.get(release_id)
        if group is None:
            group = groups[release_id] = _ReleaseGroup(release_id, row)

        if shape is RowShape.FLAT_JOINED:
            embedded = _flat_artist(row)
            if embedded is not None:
                group.add_artist(*embedded)
        elif shape is RowShape.NESTED_REST:
            for artist, role in _nested_artists(row):
                group.add_artist(artist, role)
            for track_row in _as_list(row.get("tracks")):
                group.add_track(build_track(track_row, release_id=release_id))

    return [g.build() for g in groups.values()]


# ---------------------------------------------------------------------------
# Other entities
# ---------------------------------------------------------------------------


def _dedupe(items: Iterable[Any]) -> list[Any]:
    seen: dict[str, Any] = {}
    for item in items:
        seen.setdefault(item.id, item)
    return list(seen.values())


def normalize_artists(rows: Iterable[Row], shape: RowShape = RowShape.PLAIN) -> list[Artist]:
    return _dedupe(build_artist(r) for r in rows)


def normalize_tracks(rows: Iterable[Row], shape: RowShape = RowShape.PLAIN) -> list[Track]:
    return _dedupe(build_track(r) for r in rows)


def normalize_labels(rows: Iterable[Row], shape: RowShape = RowShape.PLAIN) -> list[Label]:
    return _dedupe(build_label(r) for r in rows)


def normalize(
    rows: Iterable[Row],
    shape: RowShape,
    kind: EntityKind,
) -> list[Release] | list[Artist] | list[Track] | list[Label]:
    """
    Normalize rows of a declared shape into canonical entities.

    Args:
        rows: Raw rows from the executor
        shape: Declared shape of the source
        kind: Entity kind the rows describe

    Returns:
        Entities in first-seen order, deduplicated by id.

    Raises:
        MalformedRowError: a row lacks a required field.
    """
    if kind is EntityKind.RELEASE:
        return normalize_releases(rows, shape)
    if kind is EntityKind.ARTIST:
        return normalize_artists(rows, shape)
    if kind is EntityKind.TRACK:
        return normalize_tracks(rows, shape)
    if kind is EntityKind.LABEL:
        return normalize_labels(rows, shape)
    raise ValueError(f"Unknown entity kind: {kind!r}")
