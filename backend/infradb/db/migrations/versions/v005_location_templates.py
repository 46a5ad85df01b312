"""005: Location templates and normalized identity.

- DATACENTRE locations are floor + suite + row + rack, area must be empty.
- DOMESTIC locations are floor + area, suite/row/rack must be empty.

Older revisions created ``site_locations`` with NOT NULL suite/row/rack and
uniqueness over the raw coordinates. Those columns are relaxed and the
coordinate indexes replaced with a unique index over generated key columns
that map NULL/blank values to a sentinel, so two unlabeled locations with
the same coordinates collide while a labeled one lands in its own bucket.
"""

from infradb.db.adapter import DatabaseAdapter
from infradb.db.dialects import UNLABELED_SENTINEL
from infradb.db.introspection import SchemaIntrospector
from infradb.db.migrations.operations import (
    REBUILD_SUFFIX,
    drop_index_if_exists,
    ensure_column,
    ensure_index,
    rebuild_table,
    relax_not_null,
)
from infradb.db.migrations.runner import Migration
from infradb.db.migrations.tables import site_locations_table

TABLE = "site_locations"

IDENTITY_INDEX = "idx_site_locations_unique_identity"

IDENTITY_COLUMNS = [
    "site_id",
    "template_type",
    "floor",
    "suite_key",
    "row_key",
    "rack_key",
    "area_key",
    "label_key",
]

SUPERSEDED_INDEXES = [
    "idx_site_locations_unique_coords",
    "idx_site_locations_unique_coords_label",
]

KEY_COLUMNS = [
    ("suite_key", "suite"),
    ("row_key", "row"),
    ("rack_key", "rack"),
    ("area_key", "area"),
]


async def upgrade(adapter: DatabaseAdapter) -> None:
    d = adapter.dialect
    introspector = SchemaIntrospector(adapter)

    if d.name == "sqlite" and not await introspector.table_exists(TABLE):
        # Finish a rebuild that stopped after the old table was dropped
        await rebuild_table(adapter, TABLE, site_locations_table(d))

    await ensure_column(
        adapter, TABLE, "template_type",
        f"template_type {d.varchar(20)} NOT NULL DEFAULT 'DATACENTRE'",
    )
    await ensure_column(adapter, TABLE, "area", f"area {d.varchar(64)} NULL")
    await adapter.execute(
        f"UPDATE {TABLE} SET template_type = 'DATACENTRE' "
        "WHERE template_type IS NULL OR TRIM(template_type) = ''"
    )

    # Superseded uniqueness rules go before the columns they cover change
    for index in SUPERSEDED_INDEXES:
        await drop_index_if_exists(adapter, index, TABLE)

    needs_rebuild = await introspector.table_exists(f"{TABLE}{REBUILD_SUFFIX}")
    for column in ("suite", "row", "rack"):
        if await relax_not_null(adapter, TABLE, column, d.varchar(64)) is None:
            needs_rebuild = True
    if needs_rebuild:
        await rebuild_table(adapter, TABLE, site_locations_table(d))

    for name, source in KEY_COLUMNS:
        await ensure_column(
            adapter, TABLE, name,
            d.generated_key_column(name, source, on_existing_table=True),
        )
    await ensure_column(
        adapter, TABLE, "label_key",
        d.generated_key_column(
            "label_key", "label", UNLABELED_SENTINEL, length=255, on_existing_table=True
        ),
    )

    await ensure_index(adapter, "idx_site_locations_site_id", TABLE, ["site_id"])
    await ensure_index(adapter, IDENTITY_INDEX, TABLE, IDENTITY_COLUMNS, unique=True)


migration = Migration(id="005", name="location_templates", up=upgrade)
