"""
Canonical catalog entities.

These are the post-normalization shapes handed to callers, independent of
which strategy or backend produced the underlying rows.

This module is intentionally lightweight:
- No DB connection knowledge
- No SQL
- Pure dataclasses
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NewType

ArtistId = NewType("ArtistId", str)
ReleaseId = NewType("ReleaseId", str)
TrackId = NewType("TrackId", str)
LabelId = NewType("LabelId", str)

# Placeholders for fields the frontend contract requires to be non-null.
PLACEHOLDER_ARTWORK = "/images/placeholder-release.jpg"
PLACEHOLDER_ARTIST_IMAGE = "/images/placeholder-artist.jpg"
UNKNOWN_RELEASE_TITLE = "Unknown Release"
UNKNOWN_ARTIST_NAME = "Unknown Artist"
UNTITLED_TRACK = "Untitled Track"


@dataclass(frozen=True, slots=True)
class Label:
    id: LabelId
    name: str


@dataclass(frozen=True, slots=True)
class Artist:
    """
    Artist as returned to callers.

    `id` is platform-scoped (not necessarily a UUID). `image_url` is always
    set; a placeholder is used when the store has no image.
    """

    id: ArtistId
    name: str
    image_url: str
    spotify_url: str | None = None
    label_id: LabelId | None = None


@dataclass(frozen=True, slots=True)
class ReleaseArtist:
    """Relationship edge: (release, artist, role)."""

    release_id: ReleaseId
    artist_id: ArtistId
    role: str | None = None


@dataclass(frozen=True, slots=True)
class Track:
    id: TrackId
    title: str
    release_id: ReleaseId
    track_number: int = 0
    duration_ms: int | None = None
    spotify_url: str | None = None
    preview_url: str | None = None


@dataclass(frozen=True, slots=True)
class Release:
    """
    Release with its contributors and tracks.

    Invariants:
    - `artists` never contains two entries with the same id
    - `tracks` is ordered by track number
    """

    id: ReleaseId
    title: str
    artwork_url: str
    release_date: str | None = None
    spotify_url: str | None = None
    label_id: LabelId | None = None
    artists: tuple[Artist, ...] = ()
    credits: tuple[ReleaseArtist, ...] = ()
    tracks: tuple[Track, ...] = field(default_factory=tuple)
