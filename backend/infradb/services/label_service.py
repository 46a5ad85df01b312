"""Label Service - cable labels and their per-site reference numbers.

A label's reference number is taken from the site's counter inside the
same transaction as the insert, so a failed insert does not consume it.
Reference numbers are never changed after creation.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from infradb.core.exceptions import NotFoundError
from infradb.db.adapter import DatabaseAdapter
from infradb.schemas.label import LabelCreate, LabelRead, LabelSearch, LabelStats, LabelUpdate
from infradb.services.reference_counter_service import ReferenceCounterService

logger = logging.getLogger(__name__)

SELECT_LABEL = """
    SELECT id, site_id, ref_number, ref_string, type, payload_json,
           source_location_id, destination_location_id, cable_type_id,
           created_by, created_at, updated_at
    FROM labels
"""


class LabelService:
    def __init__(self, adapter: DatabaseAdapter, counters: Optional[ReferenceCounterService] = None):
        self.adapter = adapter
        self.counters = counters or ReferenceCounterService(adapter)

    async def _check_references(
        self,
        site_id: int,
        source_location_id: Optional[int],
        destination_location_id: Optional[int],
        cable_type_id: Optional[int],
    ) -> None:
        for location_id in (source_location_id, destination_location_id):
            if location_id is None:
                continue
            rows = await self.adapter.query(
                "SELECT id FROM site_locations WHERE id = :id AND site_id = :site_id",
                {"id": location_id, "site_id": site_id},
            )
            if not rows:
                raise NotFoundError("Location", location_id)

        if cable_type_id is not None:
            rows = await self.adapter.query(
                "SELECT id FROM cable_types WHERE id = :id AND site_id = :site_id",
                {"id": cable_type_id, "site_id": site_id},
            )
            if not rows:
                raise NotFoundError("Cable type", cable_type_id)

    async def create(self, data: LabelCreate) -> LabelRead:
        async with self.adapter.transaction():
            await self._check_references(
                data.site_id,
                data.source_location_id,
                data.destination_location_id,
                data.cable_type_id,
            )
            reference = await self.counters.next_reference(data.site_id)
            result = await self.adapter.execute(
                """INSERT INTO labels
                   (site_id, ref_number, ref_string, type, payload_json,
                    source_location_id, destination_location_id, cable_type_id, created_by)
                   VALUES
                   (:site_id, :ref_number, :ref_string, :type, :payload_json,
                    :source_location_id, :destination_location_id, :cable_type_id, :created_by)""",
                {
                    "site_id": data.site_id,
                    "ref_number": reference.number,
                    "ref_string": reference.ref_string,
                    "type": data.type,
                    "payload_json": json.dumps(data.payload()),
                    "source_location_id": data.source_location_id,
                    "destination_location_id": data.destination_location_id,
                    "cable_type_id": data.cable_type_id,
                    "created_by": data.created_by,
                },
            )
            label = await self.find_by_id(result.insert_id, data.site_id)

        logger.info(f"Created label {reference.ref_string} in site {data.site_id}")
        return label

    async def find_by_id(self, label_id: int, site_id: int) -> Optional[LabelRead]:
        rows = await self.adapter.query(
            SELECT_LABEL + " WHERE id = :id AND site_id = :site_id",
            {"id": label_id, "site_id": site_id},
        )
        return LabelRead.model_validate(rows[0]) if rows else None

    async def list_by_site(self, site_id: int, options: Optional[LabelSearch] = None) -> List[LabelRead]:
        options = options or LabelSearch()
        sql = SELECT_LABEL + " WHERE site_id = :site_id"
        params = {"site_id": site_id, "limit": options.limit, "offset": options.offset}

        if options.ref_string:
            sql += " AND ref_string = :ref_string"
            params["ref_string"] = options.ref_string
        if options.search:
            sql += " AND (ref_string LIKE :pattern OR payload_json LIKE :pattern)"
            params["pattern"] = f"%{options.search}%"

        # sort_by/sort_order are restricted to known values by LabelSearch
        sql += f" ORDER BY {options.sort_by} {options.sort_order}, id {options.sort_order}"
        sql += " LIMIT :limit OFFSET :offset"

        rows = await self.adapter.query(sql, params)
        return [LabelRead.model_validate(row) for row in rows]

    async def update(self, label_id: int, site_id: int, data: LabelUpdate) -> Optional[LabelRead]:
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return await self.find_by_id(label_id, site_id)

        async with self.adapter.transaction():
            rows = await self.adapter.query(
                "SELECT payload_json FROM labels WHERE id = :id AND site_id = :site_id",
                {"id": label_id, "site_id": site_id},
            )
            if not rows:
                return None

            await self._check_references(
                site_id,
                changes.get("source_location_id"),
                changes.get("destination_location_id"),
                changes.get("cable_type_id"),
            )

            assignments = []
            params = {"id": label_id, "site_id": site_id}

            payload_keys = {"source", "destination", "notes"} & changes.keys()
            if payload_keys:
                try:
                    payload = json.loads(rows[0]["payload_json"] or "{}")
                except ValueError:
                    payload = {}
                for key in payload_keys:
                    payload[key] = changes[key] or None
                assignments.append("payload_json = :payload_json")
                params["payload_json"] = json.dumps(payload)

            for column in ("type", "source_location_id", "destination_location_id", "cable_type_id"):
                if column in changes:
                    assignments.append(f"{column} = :{column}")
                    params[column] = changes[column]

            await self.adapter.execute(
                f"UPDATE labels SET {', '.join(assignments)}, updated_at = CURRENT_TIMESTAMP "
                "WHERE id = :id AND site_id = :site_id",
                params,
            )
            return await self.find_by_id(label_id, site_id)

    async def delete(self, label_id: int, site_id: int) -> bool:
        result = await self.adapter.execute(
            "DELETE FROM labels WHERE id = :id AND site_id = :site_id",
            {"id": label_id, "site_id": site_id},
        )
        return result.affected_rows > 0

    async def bulk_delete(self, label_ids: Sequence[int], site_id: int) -> int:
        if not label_ids:
            return 0
        params = {f"id_{i}": label_id for i, label_id in enumerate(label_ids)}
        placeholders = ", ".join(f":{name}" for name in params)
        params["site_id"] = site_id
        result = await self.adapter.execute(
            f"DELETE FROM labels WHERE site_id = :site_id AND id IN ({placeholders})",
            params,
        )
        return result.affected_rows

    async def count_by_site(self, site_id: int) -> int:
        rows = await self.adapter.query(
            "SELECT COUNT(*) AS count FROM labels WHERE site_id = :site_id", {"site_id": site_id}
        )
        return int(rows[0]["count"]) if rows else 0

    async def get_stats(self, site_id: int) -> LabelStats:
        """Totals for the site: all labels, the last 30 days and since midnight UTC."""
        # created_at is written by the database in UTC
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        month_start = now - timedelta(days=30)
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        rows = await self.adapter.query(
            """SELECT COUNT(*) AS total,
                      COUNT(CASE WHEN created_at >= :month_start THEN 1 END) AS created_this_month,
                      COUNT(CASE WHEN created_at >= :today_start THEN 1 END) AS created_today
               FROM labels
               WHERE site_id = :site_id""",
            {
                "site_id": site_id,
                "month_start": month_start.strftime("%Y-%m-%d %H:%M:%S"),
                "today_start": today_start.strftime("%Y-%m-%d %H:%M:%S"),
            },
        )
        row = rows[0] if rows else {}
        return LabelStats(
            total_labels=int(row.get("total") or 0),
            labels_this_month=int(row.get("created_this_month") or 0),
            labels_today=int(row.get("created_today") or 0),
        )

    async def find_recent(self, site_id: int, limit: int = 10) -> List[LabelRead]:
        rows = await self.adapter.query(
            SELECT_LABEL + " WHERE site_id = :site_id ORDER BY created_at DESC, id DESC LIMIT :limit",
            {"site_id": site_id, "limit": max(int(limit), 0)},
        )
        return [LabelRead.model_validate(row) for row in rows]
