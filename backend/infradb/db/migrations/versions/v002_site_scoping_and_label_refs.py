"""002: Site codes, creator columns and structured label references.

Upgrades databases created by the older ``user_id`` / ``reference_number``
generation of the schema:

- sites gain ``code`` (backfilled from the name, de-duplicated) and
  ``created_by`` (backfilled from ``user_id``)
- labels gain ``ref_number``, ``ref_string``, ``type``, ``payload_json`` and
  ``created_by``; ``ref_string`` is copied from ``reference_number`` and the
  number parsed out of it, free-text source/destination/notes move into
  ``payload_json``
- legacy NOT NULL columns that new code no longer writes are relaxed
  (MODIFY on MySQL, table rebuild on SQLite)
- ``site_counters`` is created

On a database created by 001 every step is a no-op.
"""

import logging
from typing import Dict, List

from infradb.db.adapter import DatabaseAdapter
from infradb.db.introspection import SchemaIntrospector
from infradb.db.migrations.operations import (
    REBUILD_SUFFIX,
    ensure_column,
    ensure_index,
    ensure_reference_column,
    ensure_table,
    rebuild_table,
    relax_not_null,
)
from infradb.db.migrations.runner import Migration
from infradb.db.migrations.tables import labels_table, site_counters_table, sites_table

logger = logging.getLogger(__name__)

LEGACY_SITE_COLUMNS = {"user_id": "INT"}

LEGACY_LABEL_COLUMNS = {
    "reference_number": "VARCHAR(255)",
    "user_id": "INT",
    "source": "TEXT",
    "destination": "TEXT",
}

LEGACY_PAYLOAD_COLUMNS = ("source", "destination", "notes", "zpl_content")

# Added by revisions between the legacy schema and this one; kept through a rebuild
LATER_LABEL_COLUMNS = {
    "source_location_id": "source_location_id INTEGER REFERENCES site_locations(id) ON DELETE SET NULL",
    "destination_location_id": "destination_location_id INTEGER REFERENCES site_locations(id) ON DELETE SET NULL",
    "cable_type_id": "cable_type_id INTEGER REFERENCES cable_types(id) ON DELETE SET NULL",
}


async def _relax_legacy_columns(
    adapter: DatabaseAdapter,
    table: str,
    columns: Dict[str, str],
    body: List[str],
) -> None:
    introspector = SchemaIntrospector(adapter)
    needs_rebuild = await introspector.table_exists(f"{table}{REBUILD_SUFFIX}")
    for column, column_type in columns.items():
        if await relax_not_null(adapter, table, column, column_type) is None:
            needs_rebuild = True
    if needs_rebuild:
        await rebuild_table(adapter, table, body)


async def _upgrade_users(adapter: DatabaseAdapter, introspector: SchemaIntrospector) -> None:
    d = adapter.dialect
    await ensure_column(adapter, "users", "username", f"username {d.varchar(255)} NULL")
    added_role = await ensure_column(
        adapter, "users", "role", f"role {d.varchar(32)} NOT NULL DEFAULT 'USER'"
    )
    if added_role and await introspector.table_exists("user_roles"):
        await adapter.execute(
            "UPDATE users SET role = 'ADMIN' "
            "WHERE id IN (SELECT user_id FROM user_roles WHERE role = 'admin')"
        )


async def _upgrade_sites(adapter: DatabaseAdapter, introspector: SchemaIntrospector) -> None:
    d = adapter.dialect

    await ensure_column(adapter, "sites", "code", f"code {d.varchar(255)} NULL")
    await ensure_reference_column(adapter, "sites", "created_by", "users")

    if await introspector.column_exists("sites", "user_id"):
        await adapter.execute("UPDATE sites SET created_by = user_id WHERE created_by IS NULL")
    await adapter.execute(
        "UPDATE sites SET code = UPPER(TRIM(name)) WHERE code IS NULL OR TRIM(code) = ''"
    )

    if not await introspector.index_exists("idx_sites_code_unique"):
        # Sites sharing a name would collide on the unique code index
        suffixed = d.choose(sqlite="code || '-' || id", mysql="CONCAT(code, '-', id)")
        await adapter.execute(
            f"UPDATE sites SET code = {suffixed} "
            "WHERE id NOT IN (SELECT keep_id FROM "
            "(SELECT MIN(id) AS keep_id FROM sites GROUP BY code) AS keepers)"
        )

    await _relax_legacy_columns(adapter, "sites", LEGACY_SITE_COLUMNS, sites_table(d))

    await ensure_index(adapter, "idx_sites_code_unique", "sites", ["code"], unique=True)
    await ensure_index(adapter, "idx_sites_name", "sites", ["name"])
    await ensure_index(adapter, "idx_sites_created_by", "sites", ["created_by"])


async def _upgrade_labels(adapter: DatabaseAdapter, introspector: SchemaIntrospector) -> None:
    d = adapter.dialect

    await ensure_column(adapter, "labels", "ref_number", f"ref_number {d.integer} NULL")
    await ensure_column(adapter, "labels", "ref_string", f"ref_string {d.varchar(255)} NULL")
    await ensure_column(adapter, "labels", "type", f"type {d.varchar(100)} NULL")
    await ensure_column(adapter, "labels", "payload_json", "payload_json TEXT NULL")
    await ensure_reference_column(adapter, "labels", "created_by", "users")

    if await introspector.column_exists("labels", "user_id"):
        await adapter.execute("UPDATE labels SET created_by = user_id WHERE created_by IS NULL")
    if await introspector.column_exists("labels", "reference_number"):
        await adapter.execute(
            "UPDATE labels SET ref_string = reference_number WHERE ref_string IS NULL"
        )

    parsed = f"COALESCE({d.ref_number_from_string('ref_string')}, {d.cast_integer('ref_string')})"
    await adapter.execute(
        f"UPDATE labels SET ref_number = {parsed} "
        "WHERE ref_number IS NULL AND ref_string IS NOT NULL"
    )
    rows = await adapter.query("SELECT COUNT(*) AS n FROM labels WHERE ref_number IS NULL")
    if rows and rows[0]["n"]:
        logger.warning(
            f"{rows[0]['n']} label(s) have a reference that is not CODE-NNNN; "
            "their ref_number was left empty"
        )

    await adapter.execute("UPDATE labels SET type = 'cable' WHERE type IS NULL")

    legacy = [c for c in LEGACY_PAYLOAD_COLUMNS if await introspector.column_exists("labels", c)]
    if legacy:
        pairs = ", ".join(f"'{c}', {c}" for c in legacy)
        await adapter.execute(
            f"UPDATE labels SET payload_json = json_object({pairs}) WHERE payload_json IS NULL"
        )

    kept = [
        definition
        for column, definition in LATER_LABEL_COLUMNS.items()
        if await introspector.column_exists("labels", column)
    ]
    await _relax_legacy_columns(adapter, "labels", LEGACY_LABEL_COLUMNS, labels_table(d, kept))

    await ensure_index(adapter, "idx_labels_site_id", "labels", ["site_id"])
    await ensure_index(adapter, "idx_labels_ref_string", "labels", ["ref_string"])
    await ensure_index(adapter, "idx_labels_created_by", "labels", ["created_by"])


async def upgrade(adapter: DatabaseAdapter) -> None:
    d = adapter.dialect
    introspector = SchemaIntrospector(adapter)

    # Finish a table rebuild that stopped after the old table was dropped
    for table, body in (("sites", sites_table(d)), ("labels", labels_table(d))):
        if d.name == "sqlite" and not await introspector.table_exists(table):
            if await introspector.table_exists(f"{table}{REBUILD_SUFFIX}"):
                await rebuild_table(adapter, table, body)

    await _upgrade_users(adapter, introspector)
    await _upgrade_sites(adapter, introspector)
    await _upgrade_labels(adapter, introspector)

    await ensure_table(adapter, "site_counters", site_counters_table(d))


migration = Migration(id="002", name="site_scoping_and_label_refs", up=upgrade)
