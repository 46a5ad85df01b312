"""004: Per-site cable types."""

from infradb.db.adapter import DatabaseAdapter
from infradb.db.migrations.operations import ensure_index, ensure_reference_column, ensure_table
from infradb.db.migrations.runner import Migration
from infradb.db.migrations.tables import cable_types_table


async def upgrade(adapter: DatabaseAdapter) -> None:
    await ensure_table(adapter, "cable_types", cable_types_table(adapter.dialect))
    await ensure_index(adapter, "idx_cable_types_site_id", "cable_types", ["site_id"])
    await ensure_index(
        adapter, "idx_cable_types_site_name_unique", "cable_types", ["site_id", "name"], unique=True
    )

    await ensure_reference_column(adapter, "labels", "cable_type_id", "cable_types")
    await ensure_index(adapter, "idx_labels_cable_type_id", "labels", ["cable_type_id"])


async def downgrade(adapter: DatabaseAdapter) -> None:
    await adapter.execute("DROP TABLE IF EXISTS cable_types")


migration = Migration(id="004", name="cable_types", up=upgrade, down=downgrade)
