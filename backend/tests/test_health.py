"""Tests for application startup and health endpoints."""

import logging

import pytest
from fastapi.testclient import TestClient

from infradb import __version__
from infradb.core.config import Settings, SQLiteConfig
from infradb.db.adapter import SQLiteAdapter
from infradb.db.migrations import MIGRATIONS, Migration
from infradb.main import create_app


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def make_settings(**overrides) -> Settings:
    values = {"sqlite_filename": ":memory:", "debug": True}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestHealth:
    def test_liveness(self):
        app = create_app(make_settings(), SQLiteAdapter(SQLiteConfig()))
        with TestClient(app) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": __version__}

    def test_ready_after_startup_migrations(self):
        app = create_app(make_settings(), SQLiteAdapter(SQLiteConfig()))
        with TestClient(app) as client:
            response = client.get("/health/ready")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["checks"] == {"database": "healthy", "migrations": "healthy"}

    def test_degraded_with_pending_migrations(self):
        app = create_app(make_settings(run_migrations_on_startup=False), SQLiteAdapter(SQLiteConfig()))
        with TestClient(app) as client:
            response = client.get("/health/ready")
        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "degraded"
        assert body["checks"]["migrations"] == f"{len(MIGRATIONS)} pending"

    def test_adapter_disconnected_on_shutdown(self):
        adapter = SQLiteAdapter(SQLiteConfig())
        app = create_app(make_settings(), adapter)
        with TestClient(app):
            assert adapter.is_connected
        assert not adapter.is_connected

    def test_startup_fails_on_broken_migration(self, monkeypatch):
        async def broken(adapter):
            raise RuntimeError("bad ddl")

        monkeypatch.setattr("infradb.main.MIGRATIONS", [Migration(id="001", name="broken", up=broken)])
        app = create_app(make_settings(), SQLiteAdapter(SQLiteConfig()))
        with pytest.raises(Exception, match="Migration 001 \\(broken\\) failed"):
            with TestClient(app):
                pass
