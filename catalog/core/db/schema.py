"""
Canonical catalog schema + migrations.

The resolver never writes catalog data and must cope with deployments whose
schema lags behind this one (no join table, legacy artist column, missing
functions). This module describes the *canonical* layout and is used to
bootstrap a local store (`python -m catalog --init-schema`) and by tests.

Design notes:
- We use SQLite `PRAGMA user_version` as the schema version.
- Migrations are forward-only (no downgrade support).
- Identifiers are TEXT: they are platform-scoped strings, not integers.
"""

from __future__ import annotations

from typing import Final

import aiosqlite

# Bumped together with a new step in `migrate()`.
SCHEMA_VERSION: Final[int] = 4


async def ensure_schema(conn: aiosqlite.Connection) -> None:
    """
    Bring the catalog store up to SCHEMA_VERSION.

    This function assumes `conn` is an open aiosqlite connection with the
    foreign_keys pragma configured by the caller.
    """
    cursor = await conn.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    current = int(row[0]) if row is not None else 0

    if current > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema version {current} is newer than supported {SCHEMA_VERSION}."
        )

    if current == SCHEMA_VERSION:
        return

    await migrate(conn, from_version=current, to_version=SCHEMA_VERSION)
    await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
    await conn.commit()


async def migrate(conn: aiosqlite.Connection, *, from_version: int, to_version: int) -> None:
    """
    Apply forward-only migrations between two schema versions.

    Each step brings the store up exactly one version and commits.
    """
    # v0 -> v1
    if from_version == 0 and to_version >= 1:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS labels (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                display_name TEXT
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS artists (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                image_url TEXT,
                profile_image_url TEXT,
                spotify_url TEXT,
                label_id TEXT REFERENCES labels(id) ON DELETE SET NULL
            )
            """
        )
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_artists_name ON artists(name);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_artists_label ON artists(label_id);")

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS releases (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                release_date TEXT,
                artwork_url TEXT,
                spotify_url TEXT,
                label_id TEXT REFERENCES labels(id) ON DELETE SET NULL,
                primary_artist_id TEXT REFERENCES artists(id) ON DELETE SET NULL,
                created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            )
            """
        )
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_releases_label ON releases(label_id);")
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_releases_date ON releases(release_date);"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_releases_created ON releases(created_at);"
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tracks (
                id TEXT PRIMARY KEY,
                title TEXT,
                track_number INTEGER,
                duration_ms INTEGER,
                release_id TEXT NOT NULL REFERENCES releases(id) ON DELETE CASCADE,
                spotify_url TEXT,
                preview_url TEXT
            )
            """
        )
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_release ON tracks(release_id);")

        await conn.commit()
        from_version = 1

    # v1 -> v2
    if from_version == 1 and to_version >= 2:
        # Many-to-many credits. Role distinguishes primary/featured/remixer.
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS release_artists (
                release_id TEXT NOT NULL REFERENCES releases(id) ON DELETE CASCADE,
                artist_id TEXT NOT NULL REFERENCES artists(id) ON DELETE CASCADE,
                role TEXT NOT NULL DEFAULT 'primary',
                PRIMARY KEY (release_id, artist_id, role)
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_release_artists_artist ON release_artists(artist_id);"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_release_artists_release ON release_artists(release_id);"
        )
        await conn.commit()
        from_version = 2

    # v2 -> v3
    if from_version == 2 and to_version >= 3:
        # Spotify ids: alternate keys used by older frontends.
        await conn.execute("ALTER TABLE artists ADD COLUMN spotify_id TEXT;")
        await conn.execute("ALTER TABLE releases ADD COLUMN spotify_id TEXT;")
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_artists_spotify_id ON artists(spotify_id);"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_releases_spotify_id ON releases(spotify_id);"
        )
        await conn.commit()
        from_version = 3

    # v3 -> v4
    if from_version == 3 and to_version >= 4:
        # Popularity score used to rank top releases.
        await conn.execute("ALTER TABLE releases ADD COLUMN popularity INTEGER;")
        await conn.commit()
        from_version = 4

    if from_version != to_version:
        raise RuntimeError(f"No migration path from {from_version} to {to_version}.")
