"""001: Baseline schema - users, sites and labels.

On a database created by an older revision these tables already exist in
their legacy shape and are left alone here; 002 upgrades them.
"""

from infradb.db.adapter import DatabaseAdapter
from infradb.db.migrations.operations import ensure_index, ensure_table
from infradb.db.migrations.runner import Migration
from infradb.db.migrations.tables import labels_table, sites_table, users_table


async def upgrade(adapter: DatabaseAdapter) -> None:
    d = adapter.dialect

    await ensure_table(adapter, "users", users_table(d))
    await ensure_table(adapter, "sites", sites_table(d))
    await ensure_table(adapter, "labels", labels_table(d))

    # Columns every generation of the schema shares
    await ensure_index(adapter, "idx_users_email", "users", ["email"])
    await ensure_index(adapter, "idx_sites_name", "sites", ["name"])
    await ensure_index(adapter, "idx_labels_site_id", "labels", ["site_id"])


async def downgrade(adapter: DatabaseAdapter) -> None:
    await adapter.execute("DROP TABLE IF EXISTS labels")
    await adapter.execute("DROP TABLE IF EXISTS sites")
    await adapter.execute("DROP TABLE IF EXISTS users")


migration = Migration(id="001", name="baseline_schema", up=upgrade, down=downgrade)
