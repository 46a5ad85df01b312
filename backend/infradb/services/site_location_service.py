"""Site Location Service - location identity, usage and deletion.

A location's identity within a site is its template type, floor and the
normalized suite/row/rack/area/label keys (blank or NULL mapped to a
sentinel). The unique index over those keys is the source of truth; on a
clash the conflicting row is looked up through the same keys and returned
inside ``DuplicateIdentityError`` so callers can point at it.

Deleting a location that labels still use needs a strategy:

- ``auto``: refuse with ``UsageConflictError`` carrying the usage counts
- ``reassign``: repoint those labels at another location of the same site
- ``cascade``: delete those labels

Usage check, label changes and the delete run in one transaction.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import DBAPIError

from infradb.core.exceptions import (
    ConstraintViolation,
    DuplicateIdentityError,
    NotFoundError,
    UsageConflictError,
)
from infradb.db.adapter import DatabaseAdapter
from infradb.db.dialects import NONE_SENTINEL, UNLABELED_SENTINEL
from infradb.schemas.site_location import (
    DeleteOptions,
    DeleteResult,
    DeleteStrategyEnum,
    SiteLocationCreate,
    SiteLocationFields,
    SiteLocationRead,
    SiteLocationUpdate,
    UsageCounts,
)

logger = logging.getLogger(__name__)

SELECT_LOCATION = """
    SELECT
      sl.id,
      sl.site_id,
      sl.template_type,
      sl.floor,
      sl.suite,
      sl.`row` AS `row`,
      sl.rack,
      sl.area,
      sl.label,
      COALESCE(NULLIF(TRIM(sl.label), ''), s.code) AS effective_label,
      sl.created_at,
      sl.updated_at
    FROM site_locations sl
    JOIN sites s ON s.id = sl.site_id
"""


def identity_params(site_id: int, fields: SiteLocationFields) -> dict:
    """Bind values for the normalized identity key of ``fields``."""
    return {
        "site_id": site_id,
        "template_type": fields.template_type.value,
        "floor": fields.floor,
        "suite_key": fields.suite or NONE_SENTINEL,
        "row_key": fields.row or NONE_SENTINEL,
        "rack_key": fields.rack or NONE_SENTINEL,
        "area_key": fields.area or NONE_SENTINEL,
        "label_key": fields.label or UNLABELED_SENTINEL,
    }


class SiteLocationService:
    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter

    # ==========================================================================
    # Lookups
    # ==========================================================================

    async def find_by_id(self, location_id: int, site_id: int) -> Optional[SiteLocationRead]:
        rows = await self.adapter.query(
            SELECT_LOCATION + " WHERE sl.id = :id AND sl.site_id = :site_id",
            {"id": location_id, "site_id": site_id},
        )
        return SiteLocationRead.model_validate(rows[0]) if rows else None

    async def list_by_site(self, site_id: int) -> List[SiteLocationRead]:
        rows = await self.adapter.query(
            SELECT_LOCATION
            + " WHERE sl.site_id = :site_id"
            " ORDER BY sl.floor, sl.suite, sl.`row`, sl.rack, sl.area, sl.id",
            {"site_id": site_id},
        )
        return [SiteLocationRead.model_validate(row) for row in rows]

    async def find_by_identity(self, site_id: int, fields: SiteLocationFields) -> Optional[SiteLocationRead]:
        rows = await self.adapter.query(
            SELECT_LOCATION
            + """ WHERE sl.site_id = :site_id
              AND sl.template_type = :template_type
              AND sl.floor = :floor
              AND sl.suite_key = :suite_key
              AND sl.row_key = :row_key
              AND sl.rack_key = :rack_key
              AND sl.area_key = :area_key
              AND sl.label_key = :label_key""",
            identity_params(site_id, fields),
        )
        return SiteLocationRead.model_validate(rows[0]) if rows else None

    # ==========================================================================
    # Create / update
    # ==========================================================================

    async def create(self, data: SiteLocationCreate) -> SiteLocationRead:
        try:
            result = await self.adapter.execute(
                """INSERT INTO site_locations
                   (site_id, template_type, floor, suite, `row`, rack, area, label)
                   VALUES (:site_id, :template_type, :floor, :suite, :row, :rack, :area, :label)""",
                {
                    "site_id": data.site_id,
                    "template_type": data.template_type.value,
                    "floor": data.floor,
                    "suite": data.suite,
                    "row": data.row,
                    "rack": data.rack,
                    "area": data.area,
                    "label": data.label,
                },
            )
        except DBAPIError as e:
            await self._raise_for_conflict(e, data.site_id, data)
            raise

        created = await self.find_by_id(result.insert_id, data.site_id)
        if created is None:
            raise NotFoundError("Site location", result.insert_id)
        logger.info(f"Created site location {created.id} in site {data.site_id}")
        return created

    async def update(
        self,
        location_id: int,
        site_id: int,
        data: SiteLocationUpdate,
    ) -> Optional[SiteLocationRead]:
        current = await self.find_by_id(location_id, site_id)
        if current is None:
            return None
        merged = data.merge(current)

        try:
            result = await self.adapter.execute(
                """UPDATE site_locations
                   SET template_type = :template_type, floor = :floor, suite = :suite,
                       `row` = :row, rack = :rack, area = :area, label = :label,
                       updated_at = CURRENT_TIMESTAMP
                   WHERE id = :id AND site_id = :site_id""",
                {
                    "template_type": merged.template_type.value,
                    "floor": merged.floor,
                    "suite": merged.suite,
                    "row": merged.row,
                    "rack": merged.rack,
                    "area": merged.area,
                    "label": merged.label,
                    "id": location_id,
                    "site_id": site_id,
                },
            )
        except DBAPIError as e:
            await self._raise_for_conflict(e, site_id, merged)
            raise

        if result.affected_rows == 0:
            return None
        return await self.find_by_id(location_id, site_id)

    async def _raise_for_conflict(self, error: DBAPIError, site_id: int, fields: SiteLocationFields) -> None:
        violation = self.adapter.dialect.classify_error(error)
        if violation is None:
            return
        if violation.kind == ConstraintViolation.FOREIGN_KEY:
            raise NotFoundError("Site", site_id) from error
        if self.adapter.dialect.is_unique_violation(error, "site_locations"):
            existing = await self.find_by_identity(site_id, fields)
            if existing is not None:
                message = f"Location already exists (#{existing.id})"
            else:
                message = "Location already exists"
            raise DuplicateIdentityError(existing, message) from error

    # ==========================================================================
    # Usage and deletion
    # ==========================================================================

    async def get_usage_counts(self, site_id: int, location_id: int) -> UsageCounts:
        rows = await self.adapter.query(
            """SELECT
                 SUM(CASE WHEN source_location_id = :location_id THEN 1 ELSE 0 END) AS source,
                 SUM(CASE WHEN destination_location_id = :location_id THEN 1 ELSE 0 END) AS destination
               FROM labels
               WHERE site_id = :site_id
                 AND (source_location_id = :location_id OR destination_location_id = :location_id)""",
            {"site_id": site_id, "location_id": location_id},
        )
        row = rows[0] if rows else {}
        return UsageCounts(
            source=int(row.get("source") or 0),
            destination=int(row.get("destination") or 0),
        )

    async def delete_with_strategy(
        self,
        location_id: int,
        site_id: int,
        options: Optional[DeleteOptions] = None,
    ) -> DeleteResult:
        """Delete a location, handling the labels that reference it.

        Must not be called inside an open transaction: a location that is
        already gone rolls this transaction back and reports
        ``deleted=False``.
        """
        options = options or DeleteOptions()
        strategy = options.strategy
        target_id = options.target_location_id

        if strategy == DeleteStrategyEnum.REASSIGN:
            if target_id is None or target_id < 1:
                raise ValueError("target_location_id is required for reassignment")
            if target_id == location_id:
                raise ValueError("target_location_id must be different from the location being deleted")

        async with self.adapter.transaction() as tx:
            usage = await self.get_usage_counts(site_id, location_id)

            if strategy == DeleteStrategyEnum.AUTO and usage.total > 0:
                raise UsageConflictError(usage.source, usage.destination)

            if strategy == DeleteStrategyEnum.REASSIGN and await self.find_by_id(target_id, site_id) is None:
                raise NotFoundError("Target location", target_id)

            result = DeleteResult(deleted=True, usage=usage)

            if usage.total > 0 and strategy == DeleteStrategyEnum.CASCADE:
                deleted_labels = await self.adapter.execute(
                    """DELETE FROM labels
                       WHERE site_id = :site_id
                         AND (source_location_id = :location_id OR destination_location_id = :location_id)""",
                    {"site_id": site_id, "location_id": location_id},
                )
                result.labels_deleted = deleted_labels.affected_rows
                result.strategy_used = DeleteStrategyEnum.CASCADE.value

            elif usage.total > 0 and strategy == DeleteStrategyEnum.REASSIGN:
                params = {"target_id": target_id, "site_id": site_id, "location_id": location_id}
                moved_source = await self.adapter.execute(
                    "UPDATE labels SET source_location_id = :target_id "
                    "WHERE site_id = :site_id AND source_location_id = :location_id",
                    params,
                )
                moved_destination = await self.adapter.execute(
                    "UPDATE labels SET destination_location_id = :target_id "
                    "WHERE site_id = :site_id AND destination_location_id = :location_id",
                    params,
                )
                result.labels_reassigned_source = moved_source.affected_rows
                result.labels_reassigned_destination = moved_destination.affected_rows
                result.strategy_used = DeleteStrategyEnum.REASSIGN.value

            removed = await self.adapter.execute(
                "DELETE FROM site_locations WHERE id = :id AND site_id = :site_id",
                {"id": location_id, "site_id": site_id},
            )
            if removed.affected_rows == 0:
                await tx.rollback()
                logger.info(f"Site location {location_id} in site {site_id} was already deleted")
                return DeleteResult(deleted=False, usage=usage)

        logger.info(
            f"Deleted site location {location_id} in site {site_id} "
            f"(strategy={result.strategy_used}, labels_deleted={result.labels_deleted}, "
            f"reassigned={result.labels_reassigned_source + result.labels_reassigned_destination})"
        )
        return result

    async def delete(self, location_id: int, site_id: int) -> bool:
        result = await self.adapter.execute(
            "DELETE FROM site_locations WHERE id = :id AND site_id = :site_id",
            {"id": location_id, "site_id": site_id},
        )
        return result.affected_rows > 0
