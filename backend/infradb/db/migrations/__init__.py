"""Schema migrations, applied in ascending id order by ``MigrationRunner``."""

from typing import List

from infradb.db.migrations.runner import Migration, MigrationRunner, MigrationStatus
from infradb.db.migrations.versions import (
    v001_baseline_schema,
    v002_site_scoping_and_label_refs,
    v003_site_locations,
    v004_cable_types,
    v005_location_templates,
    v006_drop_legacy_location_name,
    v007_label_reference_integrity,
)

MIGRATIONS: List[Migration] = [
    v001_baseline_schema.migration,
    v002_site_scoping_and_label_refs.migration,
    v003_site_locations.migration,
    v004_cable_types.migration,
    v005_location_templates.migration,
    v006_drop_legacy_location_name.migration,
    v007_label_reference_integrity.migration,
]

LATEST_MIGRATION_ID = MIGRATIONS[-1].id

__all__ = [
    "LATEST_MIGRATION_ID",
    "MIGRATIONS",
    "Migration",
    "MigrationRunner",
    "MigrationStatus",
]
