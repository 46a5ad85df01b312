"""Site Service - sites and their reference counters."""

import logging
from typing import List, Optional

from sqlalchemy.exc import DBAPIError

from infradb.core.exceptions import DuplicateIdentityError
from infradb.db.adapter import DatabaseAdapter
from infradb.schemas.site import SiteCreate, SiteRead, SiteUpdate

logger = logging.getLogger(__name__)

SELECT_SITE = (
    "SELECT id, name, code, location, description, created_by, created_at, updated_at FROM sites"
)


class SiteService:
    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter

    async def find_by_id(self, site_id: int) -> Optional[SiteRead]:
        rows = await self.adapter.query(SELECT_SITE + " WHERE id = :id", {"id": site_id})
        return SiteRead.model_validate(rows[0]) if rows else None

    async def find_by_code(self, code: str) -> Optional[SiteRead]:
        rows = await self.adapter.query(SELECT_SITE + " WHERE code = :code", {"code": code})
        return SiteRead.model_validate(rows[0]) if rows else None

    async def list_all(self) -> List[SiteRead]:
        rows = await self.adapter.query(SELECT_SITE + " ORDER BY name, id")
        return [SiteRead.model_validate(row) for row in rows]

    async def create(self, data: SiteCreate) -> SiteRead:
        """Create a site together with its counter row."""
        code = data.resolved_code()
        async with self.adapter.transaction():
            try:
                result = await self.adapter.execute(
                    """INSERT INTO sites (name, code, location, description, created_by)
                       VALUES (:name, :code, :location, :description, :created_by)""",
                    {
                        "name": data.name,
                        "code": code,
                        "location": data.location,
                        "description": data.description,
                        "created_by": data.created_by,
                    },
                )
            except DBAPIError as e:
                await self._raise_for_duplicate_code(e, code)
                raise

            site_id = result.insert_id
            await self.adapter.execute(
                self.adapter.dialect.insert_if_absent("site_counters", ["site_id", "next_ref"], "site_id"),
                {"site_id": site_id, "next_ref": 1},
            )
            site = await self.find_by_id(site_id)

        logger.info(f"Created site {site_id} ({code})")
        return site

    async def update(self, site_id: int, data: SiteUpdate) -> Optional[SiteRead]:
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            return await self.find_by_id(site_id)

        assignments = ", ".join(f"{column} = :{column}" for column in fields)
        try:
            result = await self.adapter.execute(
                f"UPDATE sites SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = :id",
                {**fields, "id": site_id},
            )
        except DBAPIError as e:
            if "code" in fields:
                await self._raise_for_duplicate_code(e, fields["code"])
            raise

        if result.affected_rows == 0:
            return None
        return await self.find_by_id(site_id)

    async def delete(self, site_id: int) -> bool:
        """Delete a site. Locations, labels, cable types and the counter go with it."""
        result = await self.adapter.execute("DELETE FROM sites WHERE id = :id", {"id": site_id})
        if result.affected_rows:
            logger.info(f"Deleted site {site_id}")
        return result.affected_rows > 0

    async def _raise_for_duplicate_code(self, error: DBAPIError, code: str) -> None:
        if self.adapter.dialect.is_unique_violation(error, "sites"):
            existing = await self.find_by_code(code)
            raise DuplicateIdentityError(existing, f"Site code {code} is already in use") from error
