"""Tests for schema introspection and the self-guarding migration operations."""

import pytest

from infradb.db.introspection import SchemaIntrospector
from infradb.db.migrations.operations import (
    REBUILD_SUFFIX,
    drop_column_if_exists,
    drop_index_if_exists,
    ensure_column,
    ensure_index,
    ensure_reference_column,
    ensure_table,
    rebuild_table,
    relax_not_null,
)

PARENTS = ["id INTEGER PRIMARY KEY AUTOINCREMENT", "name TEXT NOT NULL"]

CHILDREN = [
    "id INTEGER PRIMARY KEY AUTOINCREMENT",
    "parent_id INTEGER NOT NULL",
    "title TEXT NOT NULL",
    "note TEXT NOT NULL",
    "FOREIGN KEY (parent_id) REFERENCES parents(id) ON DELETE CASCADE",
]

CHILDREN_RELAXED = [
    "id INTEGER PRIMARY KEY AUTOINCREMENT",
    "parent_id INTEGER NOT NULL",
    "title TEXT NOT NULL",
    "note TEXT NULL",
    "FOREIGN KEY (parent_id) REFERENCES parents(id) ON DELETE CASCADE",
]


@pytest.fixture
async def family(raw_adapter):
    await ensure_table(raw_adapter, "parents", PARENTS)
    await ensure_table(raw_adapter, "children", CHILDREN)
    await raw_adapter.execute("INSERT INTO parents (name) VALUES ('p1')")
    await raw_adapter.execute(
        "INSERT INTO children (parent_id, title, note) VALUES (1, 'first', 'a'), (1, 'second', 'b')"
    )
    return raw_adapter


class TestSchemaIntrospector:
    @pytest.mark.asyncio
    async def test_tables_and_columns(self, family):
        introspector = SchemaIntrospector(family)
        assert await introspector.table_exists("children")
        assert not await introspector.table_exists("missing")
        assert await introspector.list_tables() == ["children", "parents"]

        columns = {c.name: c for c in await introspector.list_columns("children")}
        assert list(columns) == ["id", "parent_id", "title", "note"]
        assert not columns["note"].nullable
        assert await introspector.column_exists("children", "TITLE")
        assert await introspector.get_column("children", "missing") is None

    @pytest.mark.asyncio
    async def test_indexes(self, family):
        introspector = SchemaIntrospector(family)
        await ensure_index(family, "idx_children_title", "children", ["title"])

        assert await introspector.index_exists("idx_children_title")
        names = [i.name for i in await introspector.list_indexes("children")]
        assert names == ["idx_children_title"]
        assert await introspector.list_indexes("parents") == []

    @pytest.mark.asyncio
    async def test_foreign_keys(self, family):
        introspector = SchemaIntrospector(family)
        assert await introspector.foreign_key_exists("children", "parent_id")
        assert not await introspector.foreign_key_exists("children", "title")

    @pytest.mark.asyncio
    async def test_generated_columns_are_reported(self, raw_adapter):
        d = raw_adapter.dialect
        await raw_adapter.execute(
            d.create_table("spots", ["id INTEGER PRIMARY KEY", "zone TEXT", d.generated_key_column("zone_key", "zone")])
        )
        info = await SchemaIntrospector(raw_adapter).get_column("spots", "zone_key")
        assert info is not None
        assert info.generated


class TestEnsureOperations:
    @pytest.mark.asyncio
    async def test_ensure_table_and_column(self, family):
        assert await ensure_table(family, "parents", PARENTS) is False
        assert await ensure_column(family, "parents", "code", "code TEXT NULL") is True
        assert await ensure_column(family, "parents", "code", "code TEXT NULL") is False

    @pytest.mark.asyncio
    async def test_ensure_index(self, family):
        assert await ensure_index(family, "idx_parents_name", "parents", ["name"], unique=True) is True
        assert await ensure_index(family, "idx_parents_name", "parents", ["name"], unique=True) is False

    @pytest.mark.asyncio
    async def test_ensure_reference_column(self, family):
        assert await ensure_reference_column(family, "children", "owner_id", "parents") is True
        assert await ensure_reference_column(family, "children", "owner_id", "parents") is False
        assert await SchemaIntrospector(family).foreign_key_exists("children", "owner_id")

    @pytest.mark.asyncio
    async def test_drop_index_and_column(self, family):
        await ensure_column(family, "children", "legacy", "legacy TEXT NULL")
        await ensure_index(family, "idx_children_legacy", "children", ["legacy"])

        assert await drop_index_if_exists(family, "idx_children_legacy", "children") is True
        assert await drop_index_if_exists(family, "idx_children_legacy", "children") is False
        assert await drop_column_if_exists(family, "children", "legacy") is True
        assert await drop_column_if_exists(family, "children", "legacy") is False
        assert await drop_column_if_exists(family, "missing", "legacy") is False

    @pytest.mark.asyncio
    async def test_relax_not_null_needs_rebuild_on_sqlite(self, family):
        assert await relax_not_null(family, "children", "note", "TEXT") is None
        assert await relax_not_null(family, "children", "missing", "TEXT") is False


class TestRebuildTable:
    @pytest.mark.asyncio
    async def test_rebuild_keeps_rows(self, family):
        await rebuild_table(
            family,
            "children",
            CHILDREN_RELAXED,
            indexes=["CREATE INDEX idx_children_parent_id ON children(parent_id)"],
        )
        introspector = SchemaIntrospector(family)

        assert (await introspector.get_column("children", "note")).nullable
        assert await introspector.index_exists("idx_children_parent_id")
        assert not await introspector.table_exists(f"children{REBUILD_SUFFIX}")

        rows = await family.query("SELECT id, title, note FROM children ORDER BY id")
        assert rows == [
            {"id": 1, "title": "first", "note": "a"},
            {"id": 2, "title": "second", "note": "b"},
        ]
        await family.execute("INSERT INTO children (parent_id, title) VALUES (1, 'third')")

    @pytest.mark.asyncio
    async def test_rebuild_keeps_foreign_keys_enforced(self, family):
        await rebuild_table(family, "children", CHILDREN_RELAXED)
        rows = await family.query("PRAGMA foreign_keys")
        assert rows[0]["foreign_keys"] == 1

        await family.execute("DELETE FROM parents WHERE id = 1")
        rows = await family.query("SELECT COUNT(*) AS n FROM children")
        assert rows[0]["n"] == 0

    @pytest.mark.asyncio
    async def test_completes_rebuild_interrupted_after_drop(self, family):
        temp = f"children{REBUILD_SUFFIX}"
        await family.execute("PRAGMA foreign_keys=OFF")
        await family.execute(family.dialect.create_table(temp, CHILDREN_RELAXED))
        await family.execute(f"INSERT INTO {temp} (id, parent_id, title, note) SELECT id, parent_id, title, note FROM children")
        await family.execute("DROP TABLE children")
        await family.execute("PRAGMA foreign_keys=ON")

        await rebuild_table(family, "children", CHILDREN_RELAXED)

        introspector = SchemaIntrospector(family)
        assert await introspector.table_exists("children")
        assert not await introspector.table_exists(temp)
        rows = await family.query("SELECT COUNT(*) AS n FROM children")
        assert rows[0]["n"] == 2

    @pytest.mark.asyncio
    async def test_redoes_rebuild_interrupted_before_drop(self, family):
        temp = f"children{REBUILD_SUFFIX}"
        # A half-filled copy left behind by an earlier attempt
        await family.execute(family.dialect.create_table(temp, CHILDREN_RELAXED))
        await family.execute(f"INSERT INTO {temp} (parent_id, title, note) VALUES (1, 'stale', NULL)")

        await rebuild_table(family, "children", CHILDREN_RELAXED)

        rows = await family.query("SELECT title FROM children ORDER BY id")
        assert [r["title"] for r in rows] == ["first", "second"]
