"""003: Site locations and structured label endpoints.

Labels point at their source and destination locations through nullable
foreign keys that are cleared when the location goes away.
"""

from infradb.db.adapter import DatabaseAdapter
from infradb.db.migrations.operations import ensure_index, ensure_reference_column, ensure_table
from infradb.db.migrations.runner import Migration
from infradb.db.migrations.tables import site_locations_table


async def upgrade(adapter: DatabaseAdapter) -> None:
    await ensure_table(adapter, "site_locations", site_locations_table(adapter.dialect))
    await ensure_index(adapter, "idx_site_locations_site_id", "site_locations", ["site_id"])

    await ensure_reference_column(adapter, "labels", "source_location_id", "site_locations")
    await ensure_reference_column(adapter, "labels", "destination_location_id", "site_locations")
    await ensure_index(adapter, "idx_labels_source_location_id", "labels", ["source_location_id"])
    await ensure_index(
        adapter, "idx_labels_destination_location_id", "labels", ["destination_location_id"]
    )


migration = Migration(id="003", name="site_locations", up=upgrade)
