"""
Tests for catalog.core.db.descriptor and catalog.core.rest rendering.

These tests verify:
- Identifier validation
- SQL rendering (placeholders, LIKE escaping, empty IN, NULLS LAST, joins)
- PostgREST query parameter rendering
- Join paging counts base rows, not joined rows
"""

from __future__ import annotations

import pytest

from catalog.core.db.descriptor import (
    JoinSpec,
    Op,
    OrderBy,
    Predicate,
    QueryDescriptor,
    escape_like,
    is_identifier,
    render_function_call,
    render_sql,
)
from catalog.core.db.pool import SqlitePool
from catalog.core.rest import render_params

ARTIST_JOIN = JoinSpec(
    through="release_artists",
    through_local="release_id",
    through_foreign="artist_id",
    target="artists",
    columns=("id", "name"),
    embed_as="artist",
    through_columns=("role",),
)


# =============================================================================
# Identifiers
# =============================================================================


class TestIdentifiers:
    @pytest.mark.parametrize("name", ["releases", "release_artists", "_x", "T1"])
    def test_valid(self, name: str) -> None:
        assert is_identifier(name)

    @pytest.mark.parametrize("name", ["", "1abc", "bad-name", "x; DROP TABLE y", "a.b", 'a"b'])
    def test_invalid(self, name: str) -> None:
        assert not is_identifier(name)

    def test_render_rejects_invalid_table(self) -> None:
        with pytest.raises(ValueError, match="Invalid SQL identifier"):
            render_sql(QueryDescriptor("releases; --"))


# =============================================================================
# SQL rendering
# =============================================================================


class TestRenderSql:
    def test_plain_select_binds_values(self) -> None:
        sql, params = render_sql(QueryDescriptor("releases").where("label_id", Op.EQ, "L1"))

        assert sql == "SELECT t.* FROM releases t WHERE t.label_id = ?;"
        assert params == ["L1"]

    def test_eq_none_is_null(self) -> None:
        sql, params = render_sql(QueryDescriptor("releases").where("label_id", Op.EQ, None))

        assert "t.label_id IS NULL" in sql
        assert params == []

    def test_ilike_escapes_wildcards(self) -> None:
        sql, params = render_sql(QueryDescriptor("releases").where("title", Op.ILIKE, "100%_off"))

        assert "t.title LIKE ? ESCAPE '\\'" in sql
        assert params == ["%100\\%\\_off%"]

    def test_empty_in_is_false(self) -> None:
        sql, params = render_sql(QueryDescriptor("releases").where("id", Op.IN, ()))

        assert "WHERE 0" in sql
        assert params == []

    def test_order_limit_offset(self) -> None:
        descriptor = QueryDescriptor(
            "releases",
            order=(OrderBy("release_date", descending=True), OrderBy("id")),
            limit=10,
            offset=20,
        )
        sql, params = render_sql(descriptor)

        assert "ORDER BY t.release_date DESC NULLS LAST, t.id ASC NULLS LAST" in sql
        assert sql.endswith("LIMIT ? OFFSET ?;")
        assert params == [10, 20]

    def test_offset_without_limit_is_unbounded(self) -> None:
        _sql, params = render_sql(QueryDescriptor("releases", offset=5))
        assert params == [-1, 5]

    def test_join_selects_prefixed_columns(self) -> None:
        sql, params = render_sql(
            QueryDescriptor("releases", predicates=(Predicate("id", Op.IN, ("R1", "R2")),), join=ARTIST_JOIN)
        )

        assert "j1.id AS artist__id" in sql
        assert "j1.name AS artist__name" in sql
        assert "j0.role AS artist__role" in sql
        assert "LEFT JOIN release_artists j0 ON j0.release_id = t.id" in sql
        assert "LEFT JOIN artists j1 ON j1.id = j0.artist_id" in sql
        assert sql.endswith("ORDER BY t.id ASC, j1.id ASC;")
        assert params == ["R1", "R2"]

    def test_function_call(self) -> None:
        assert render_function_call("get_artist_releases", 1) == "SELECT get_artist_releases(?) AS payload;"

    def test_escape_like(self) -> None:
        assert escape_like("a\\b%c_d") == "a\\\\b\\%c\\_d"

    async def test_join_paging_counts_releases(self, pool: SqlitePool) -> None:
        """LIMIT 1 on a release with two credited artists still yields both artist rows."""
        sql, params = render_sql(QueryDescriptor("releases", predicates=(Predicate("id", Op.EQ, "R2"),), limit=1, join=ARTIST_JOIN))

        async with pool.acquire() as conn:
            cursor = await conn.execute(sql, params)
            rows = [dict(r) for r in await cursor.fetchall()]

        assert [r["id"] for r in rows] == ["R2", "R2"]
        assert [r["artist__id"] for r in rows] == ["A1", "A4"]


# =============================================================================
# REST proxy rendering
# =============================================================================


class TestRenderParams:
    def test_filters(self) -> None:
        descriptor = QueryDescriptor(
            "releases",
            predicates=(
                Predicate("label_id", Op.EQ, "L1"),
                Predicate("title", Op.ILIKE, "nova"),
                Predicate("id", Op.IN, ("R1", "R2")),
            ),
        )

        assert render_params(descriptor) == [
            ("select", "*"),
            ("label_id", "eq.L1"),
            ("title", 'ilike."*nova*"'),
            ("id", 'in.("R1","R2")'),
        ]

    def test_order_and_paging(self) -> None:
        descriptor = QueryDescriptor(
            "releases",
            order=(OrderBy("release_date", descending=True), OrderBy("id")),
            limit=5,
            offset=10,
        )
        params = dict(render_params(descriptor))

        assert params["order"] == "release_date.desc.nullslast,id.asc.nullslast"
        assert params["limit"] == "5"
        assert params["offset"] == "10"

    def test_join_becomes_embed(self) -> None:
        params = dict(render_params(QueryDescriptor("releases", join=ARTIST_JOIN)))
        assert params["select"] == "*,artists(id,name)"

    def test_projection(self) -> None:
        params = dict(render_params(QueryDescriptor("release_artists", columns=("release_id",))))
        assert params["select"] == "release_id"

    def test_in_values_are_quoted(self) -> None:
        params = dict(render_params(QueryDescriptor("artists").where("id", Op.IN, ['a"b', "c,d"])))
        assert params["id"] == 'in.("a\\"b","c,d")'

    def test_ilike_pattern_is_quoted_and_escaped(self) -> None:
        params = dict(render_params(QueryDescriptor("releases").where("title", Op.ILIKE, 'a*b,(c)%_"')))
        assert params["title"] == 'ilike."*a_b,(c)\\\\%\\\\_\\"*"'
