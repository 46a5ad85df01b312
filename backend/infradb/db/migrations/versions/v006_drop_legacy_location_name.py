"""006: Drop ``site_locations.name`` left behind by older revisions."""

from infradb.db.adapter import DatabaseAdapter
from infradb.db.migrations.operations import drop_column_if_exists, drop_index_if_exists
from infradb.db.migrations.runner import Migration


async def upgrade(adapter: DatabaseAdapter) -> None:
    # SQLite refuses to drop an indexed column
    await drop_index_if_exists(adapter, "idx_site_locations_name", "site_locations")
    await drop_column_if_exists(adapter, "site_locations", "name")


migration = Migration(id="006", name="drop_legacy_location_name", up=upgrade)
