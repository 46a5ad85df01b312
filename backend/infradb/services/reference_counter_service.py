"""Reference Counter Service - issues per-site label reference numbers.

Each site owns one row in ``site_counters`` holding the next number to hand
out. Issuing a number increments that row inside a transaction and returns
the pre-increment value, so concurrent callers serialize on the row (MySQL
row lock, SQLite adapter lock) and never see the same number. Numbers are
never reused: deleting a label does not move the counter back.

A missing counter row is created with the dialect's atomic
insert-if-absent before the increment, inside the same transaction.
"""

import asyncio
import logging
from dataclasses import dataclass

from infradb.core.exceptions import NotFoundError
from infradb.db.adapter import DatabaseAdapter

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 0.05


@dataclass(frozen=True)
class Reference:
    number: int
    ref_string: str


def format_reference(site_code: str, number: int) -> str:
    return f"{site_code}-{number:04d}"


class ReferenceCounterService:
    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter

    async def next_reference_number(self, site_id: int) -> int:
        reference = await self.next_reference(site_id)
        return reference.number

    async def next_reference(self, site_id: int) -> Reference:
        """Issue the next reference for ``site_id``.

        Joins the caller's transaction when one is open, so the number is
        only consumed if the caller commits. Lock timeouts and deadlocks are
        retried only when this call owns the transaction.
        """
        attempt = 0
        while True:
            owns_transaction = not self.adapter.in_transaction
            try:
                async with self.adapter.atomic():
                    return await self._issue(site_id)
            except NotFoundError:
                raise
            except Exception as e:
                attempt += 1
                if not owns_transaction or attempt >= MAX_RETRIES or not self.adapter.dialect.is_retryable(e):
                    raise
                logger.warning(
                    f"Counter increment for site {site_id} hit a lock conflict "
                    f"(attempt {attempt}/{MAX_RETRIES}): {e}"
                )
                await asyncio.sleep(RETRY_DELAY_SECONDS * attempt)

    async def peek(self, site_id: int) -> int:
        """The number the next call would issue, without consuming it."""
        rows = await self.adapter.query(
            "SELECT next_ref FROM site_counters WHERE site_id = :site_id", {"site_id": site_id}
        )
        return int(rows[0]["next_ref"]) if rows else 1

    async def _issue(self, site_id: int) -> Reference:
        sites = await self.adapter.query(
            "SELECT code, name FROM sites WHERE id = :site_id", {"site_id": site_id}
        )
        if not sites:
            raise NotFoundError("Site", site_id)
        site_code = sites[0]["code"] or sites[0]["name"]

        await self.adapter.execute(
            self.adapter.dialect.insert_if_absent("site_counters", ["site_id", "next_ref"], "site_id"),
            {"site_id": site_id, "next_ref": 1},
        )
        await self.adapter.execute(
            "UPDATE site_counters SET next_ref = next_ref + 1 WHERE site_id = :site_id",
            {"site_id": site_id},
        )
        rows = await self.adapter.query(
            "SELECT next_ref FROM site_counters WHERE site_id = :site_id", {"site_id": site_id}
        )
        number = int(rows[0]["next_ref"]) - 1
        return Reference(number=number, ref_string=format_reference(site_code, number))
