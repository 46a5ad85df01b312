"""007: Unique label references per site and counters that never reissue.

Creates the counter row for every site that lacks one and moves any counter
that is not above the site's highest issued reference past it, so numbers
imported by 002 are never handed out again.
"""

from infradb.db.adapter import DatabaseAdapter
from infradb.db.migrations.operations import ensure_index
from infradb.db.migrations.runner import Migration


async def upgrade(adapter: DatabaseAdapter) -> None:
    await ensure_index(
        adapter, "idx_labels_site_ref_unique", "labels", ["site_id", "ref_number"], unique=True
    )

    await adapter.execute(
        "INSERT INTO site_counters (site_id, next_ref) "
        "SELECT s.id, COALESCE((SELECT MAX(l.ref_number) FROM labels l WHERE l.site_id = s.id), 0) + 1 "
        "FROM sites s "
        "WHERE NOT EXISTS (SELECT 1 FROM site_counters c WHERE c.site_id = s.id)"
    )
    await adapter.execute(
        "UPDATE site_counters SET next_ref = "
        "(SELECT MAX(l.ref_number) + 1 FROM labels l WHERE l.site_id = site_counters.site_id) "
        "WHERE next_ref <= "
        "(SELECT COALESCE(MAX(l.ref_number), 0) FROM labels l WHERE l.site_id = site_counters.site_id)"
    )


migration = Migration(id="007", name="label_reference_integrity", up=upgrade)
