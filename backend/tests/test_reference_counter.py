"""Tests for per-site label reference numbering."""

import asyncio
from unittest.mock import AsyncMock, patch

import pymysql
import pytest
from sqlalchemy.exc import OperationalError

from infradb.core.exceptions import NotFoundError
from infradb.schemas.label import LabelCreate
from infradb.services.reference_counter_service import (
    MAX_RETRIES,
    Reference,
    ReferenceCounterService,
    format_reference,
)


def test_format_reference():
    assert format_reference("HQ", 1) == "HQ-0001"
    assert format_reference("HQ", 42) == "HQ-0042"
    assert format_reference("HQ", 12345) == "HQ-12345"


class TestNextReference:
    @pytest.mark.asyncio
    async def test_sequential_numbers(self, counter_service, test_site):
        first = await counter_service.next_reference(test_site.id)
        second = await counter_service.next_reference(test_site.id)
        assert first == Reference(number=1, ref_string="HQ-0001")
        assert second == Reference(number=2, ref_string="HQ-0002")
        assert await counter_service.next_reference_number(test_site.id) == 3

    @pytest.mark.asyncio
    async def test_sites_are_independent(self, counter_service, test_site, other_site):
        await counter_service.next_reference(test_site.id)
        await counter_service.next_reference(test_site.id)
        reference = await counter_service.next_reference(other_site.id)
        assert reference.ref_string == "BR-0001"

    @pytest.mark.asyncio
    async def test_concurrent_calls_never_collide(self, counter_service, test_site):
        numbers = await asyncio.gather(
            *(counter_service.next_reference_number(test_site.id) for _ in range(25))
        )
        assert sorted(numbers) == list(range(1, 26))

    @pytest.mark.asyncio
    async def test_missing_counter_row_is_created(self, adapter, counter_service, test_site):
        await adapter.execute("DELETE FROM site_counters WHERE site_id = :id", {"id": test_site.id})
        assert await counter_service.next_reference_number(test_site.id) == 1
        assert await counter_service.peek(test_site.id) == 2

    @pytest.mark.asyncio
    async def test_unknown_site(self, counter_service):
        with pytest.raises(NotFoundError, match="Site 999 not found"):
            await counter_service.next_reference(999)

    @pytest.mark.asyncio
    async def test_peek_does_not_consume(self, counter_service, test_site):
        assert await counter_service.peek(test_site.id) == 1
        assert await counter_service.peek(test_site.id) == 1
        await counter_service.next_reference(test_site.id)
        assert await counter_service.peek(test_site.id) == 2

    @pytest.mark.asyncio
    async def test_rolled_back_transaction_returns_number(self, adapter, counter_service, test_site):
        with pytest.raises(RuntimeError):
            async with adapter.transaction():
                await counter_service.next_reference(test_site.id)
                raise RuntimeError("insert failed")
        assert await counter_service.next_reference_number(test_site.id) == 1

    @pytest.mark.asyncio
    async def test_numbers_not_reused_after_delete(self, counter_service, label_service, test_site):
        first = await label_service.create(LabelCreate(site_id=test_site.id, source="A", destination="B"))
        second = await label_service.create(LabelCreate(site_id=test_site.id, source="A", destination="C"))
        await label_service.delete(second.id, test_site.id)
        await label_service.delete(first.id, test_site.id)

        third = await label_service.create(LabelCreate(site_id=test_site.id, source="A", destination="D"))
        assert third.ref_number == 3
        assert third.ref_string == "HQ-0003"


def lock_wait_timeout():
    return OperationalError("UPDATE site_counters", {}, pymysql.err.OperationalError(1205, "Lock wait timeout"))


class TestRetries:
    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self, adapter, test_site):
        service = ReferenceCounterService(adapter)
        expected = Reference(number=1, ref_string="HQ-0001")
        issue = AsyncMock(side_effect=[lock_wait_timeout(), expected])

        with patch.object(service, "_issue", issue), \
             patch.object(adapter.dialect, "is_retryable", return_value=True), \
             patch("infradb.services.reference_counter_service.RETRY_DELAY_SECONDS", 0):
            assert await service.next_reference(test_site.id) == expected

        assert issue.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, adapter, test_site):
        service = ReferenceCounterService(adapter)
        issue = AsyncMock(side_effect=lock_wait_timeout())

        with patch.object(service, "_issue", issue), \
             patch.object(adapter.dialect, "is_retryable", return_value=True), \
             patch("infradb.services.reference_counter_service.RETRY_DELAY_SECONDS", 0):
            with pytest.raises(OperationalError):
                await service.next_reference(test_site.id)

        assert issue.await_count == MAX_RETRIES

    @pytest.mark.asyncio
    async def test_no_retry_inside_caller_transaction(self, adapter, test_site):
        service = ReferenceCounterService(adapter)
        issue = AsyncMock(side_effect=lock_wait_timeout())

        with patch.object(service, "_issue", issue), \
             patch.object(adapter.dialect, "is_retryable", return_value=True):
            with pytest.raises(OperationalError):
                async with adapter.transaction():
                    await service.next_reference(test_site.id)

        assert issue.await_count == 1
