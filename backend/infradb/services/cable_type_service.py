"""Cable Type Service - per-site catalogue of cable types.

Names are unique within a site. Deleting a type leaves its labels in place
with ``cable_type_id`` cleared by the foreign key.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import DBAPIError

from infradb.core.exceptions import ConstraintViolation, DuplicateIdentityError, NotFoundError
from infradb.db.adapter import DatabaseAdapter
from infradb.schemas.cable_type import CableTypeCreate, CableTypeRead, CableTypeUpdate

logger = logging.getLogger(__name__)

SELECT_CABLE_TYPE = (
    "SELECT id, site_id, name, description, created_at, updated_at FROM cable_types"
)


class CableTypeService:
    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter

    async def list_by_site(self, site_id: int) -> List[CableTypeRead]:
        rows = await self.adapter.query(
            SELECT_CABLE_TYPE + " WHERE site_id = :site_id ORDER BY name ASC, id ASC",
            {"site_id": site_id},
        )
        return [CableTypeRead.model_validate(row) for row in rows]

    async def find_by_id(self, cable_type_id: int, site_id: int) -> Optional[CableTypeRead]:
        rows = await self.adapter.query(
            SELECT_CABLE_TYPE + " WHERE id = :id AND site_id = :site_id",
            {"id": cable_type_id, "site_id": site_id},
        )
        return CableTypeRead.model_validate(rows[0]) if rows else None

    async def find_by_name(self, site_id: int, name: str) -> Optional[CableTypeRead]:
        rows = await self.adapter.query(
            SELECT_CABLE_TYPE + " WHERE site_id = :site_id AND name = :name",
            {"site_id": site_id, "name": name},
        )
        return CableTypeRead.model_validate(rows[0]) if rows else None

    async def create(self, data: CableTypeCreate) -> CableTypeRead:
        try:
            result = await self.adapter.execute(
                "INSERT INTO cable_types (site_id, name, description) VALUES (:site_id, :name, :description)",
                {"site_id": data.site_id, "name": data.name, "description": data.description},
            )
        except DBAPIError as e:
            await self._raise_for_conflict(e, data.site_id, data.name)
            raise

        created = await self.find_by_id(result.insert_id, data.site_id)
        if created is None:
            raise NotFoundError("Cable type", result.insert_id)
        logger.info(f"Created cable type {created.id} ({created.name}) in site {data.site_id}")
        return created

    async def update(
        self,
        cable_type_id: int,
        site_id: int,
        data: CableTypeUpdate,
    ) -> Optional[CableTypeRead]:
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            return await self.find_by_id(cable_type_id, site_id)

        assignments = ", ".join(f"{column} = :{column}" for column in fields)
        try:
            result = await self.adapter.execute(
                f"UPDATE cable_types SET {assignments}, updated_at = CURRENT_TIMESTAMP "
                "WHERE id = :id AND site_id = :site_id",
                {**fields, "id": cable_type_id, "site_id": site_id},
            )
        except DBAPIError as e:
            if "name" in fields:
                await self._raise_for_conflict(e, site_id, fields["name"])
            raise

        if result.affected_rows == 0:
            return None
        return await self.find_by_id(cable_type_id, site_id)

    async def delete(self, cable_type_id: int, site_id: int) -> bool:
        result = await self.adapter.execute(
            "DELETE FROM cable_types WHERE id = :id AND site_id = :site_id",
            {"id": cable_type_id, "site_id": site_id},
        )
        if result.affected_rows:
            logger.info(f"Deleted cable type {cable_type_id} in site {site_id}")
        return result.affected_rows > 0

    async def count_labels_using_type(self, site_id: int, cable_type_id: int) -> int:
        rows = await self.adapter.query(
            "SELECT COUNT(*) AS count FROM labels WHERE site_id = :site_id AND cable_type_id = :cable_type_id",
            {"site_id": site_id, "cable_type_id": cable_type_id},
        )
        return int(rows[0]["count"]) if rows else 0

    async def _raise_for_conflict(self, error: DBAPIError, site_id: int, name: str) -> None:
        violation = self.adapter.dialect.classify_error(error)
        if violation is None:
            return
        if violation.kind == ConstraintViolation.FOREIGN_KEY:
            raise NotFoundError("Site", site_id) from error
        if self.adapter.dialect.is_unique_violation(error, "cable_types"):
            existing = await self.find_by_name(site_id, name)
            raise DuplicateIdentityError(
                existing, f"Cable type {name} already exists in this site"
            ) from error
