"""Pytest configuration and fixtures."""

from typing import AsyncGenerator

import pytest

from infradb.core.config import SQLiteConfig
from infradb.db.adapter import DatabaseAdapter, SQLiteAdapter
from infradb.db.migrations import MIGRATIONS, MigrationRunner
from infradb.schemas.cable_type import CableTypeCreate, CableTypeRead
from infradb.schemas.site import SiteCreate, SiteRead
from infradb.schemas.site_location import SiteLocationCreate, SiteLocationRead
from infradb.services.cable_type_service import CableTypeService
from infradb.services.label_service import LabelService
from infradb.services.reference_counter_service import ReferenceCounterService
from infradb.services.site_location_service import SiteLocationService
from infradb.services.site_service import SiteService


@pytest.fixture(scope="function")
async def raw_adapter() -> AsyncGenerator[DatabaseAdapter, None]:
    """Connected in-memory SQLite adapter with an empty schema."""
    adapter = SQLiteAdapter(SQLiteConfig())
    await adapter.connect()
    yield adapter
    await adapter.disconnect()


@pytest.fixture(scope="function")
async def adapter(raw_adapter: DatabaseAdapter) -> DatabaseAdapter:
    """Connected in-memory SQLite adapter with every migration applied."""
    await MigrationRunner(raw_adapter, MIGRATIONS).run()
    return raw_adapter


@pytest.fixture
def site_service(adapter: DatabaseAdapter) -> SiteService:
    return SiteService(adapter)


@pytest.fixture
def location_service(adapter: DatabaseAdapter) -> SiteLocationService:
    return SiteLocationService(adapter)


@pytest.fixture
def counter_service(adapter: DatabaseAdapter) -> ReferenceCounterService:
    return ReferenceCounterService(adapter)


@pytest.fixture
def cable_type_service(adapter: DatabaseAdapter) -> CableTypeService:
    return CableTypeService(adapter)


@pytest.fixture
def label_service(adapter: DatabaseAdapter) -> LabelService:
    return LabelService(adapter)


@pytest.fixture
async def test_user(adapter: DatabaseAdapter) -> int:
    """Create a test user and return its id."""
    result = await adapter.execute(
        """INSERT INTO users (email, username, full_name, password_hash, role)
           VALUES (:email, :username, :full_name, :password_hash, :role)""",
        {
            "email": "test@example.com",
            "username": "tester",
            "full_name": "Test User",
            "password_hash": "not-a-real-hash",
            "role": "ADMIN",
        },
    )
    return result.insert_id


@pytest.fixture
async def test_site(site_service: SiteService, test_user: int) -> SiteRead:
    return await site_service.create(SiteCreate(name="Headquarters", code="HQ", created_by=test_user))


@pytest.fixture
async def other_site(site_service: SiteService, test_user: int) -> SiteRead:
    return await site_service.create(SiteCreate(name="Branch Office", code="BR", created_by=test_user))


@pytest.fixture
async def rack_location(location_service: SiteLocationService, test_site: SiteRead) -> SiteLocationRead:
    return await location_service.create(
        SiteLocationCreate(site_id=test_site.id, floor="1", suite="A", row="R1", rack="1")
    )


@pytest.fixture
async def spare_location(location_service: SiteLocationService, test_site: SiteRead) -> SiteLocationRead:
    return await location_service.create(
        SiteLocationCreate(site_id=test_site.id, floor="1", suite="A", row="R1", rack="2")
    )


@pytest.fixture
async def cable_type(cable_type_service: CableTypeService, test_site: SiteRead) -> CableTypeRead:
    return await cable_type_service.create(CableTypeCreate(site_id=test_site.id, name="Cat6"))
