"""InfraDB application entry point.

The lifespan builds one database adapter from settings, connects it and
brings the schema up to date before the app accepts requests. Services
receive the adapter through ``AdapterDep``.

Run with:
    uvicorn --factory infradb.main:create_app
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from infradb import __version__
from infradb.core.config import Settings, get_settings
from infradb.core.logging_config import configure_logging
from infradb.db.adapter import DatabaseAdapter, create_adapter
from infradb.db.migrations import MIGRATIONS, MigrationRunner
from infradb.db.session import AdapterDep

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, adapter: Optional[DatabaseAdapter] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info(f"Starting {settings.app_name} ({settings.database_type})")
        db = adapter or create_adapter(settings.database_config())
        await db.connect()
        app.state.adapter = db
        app.state.migrations = MigrationRunner(db, MIGRATIONS)

        try:
            if settings.run_migrations_on_startup:
                await app.state.migrations.run()
            yield
        finally:
            await db.disconnect()
            logger.info(f"{settings.app_name} stopped")

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    @app.get("/health")
    def health_check():
        """Basic liveness check endpoint."""
        return {"status": "healthy", "version": __version__}

    @app.get("/health/ready")
    async def readiness_check(adapter: AdapterDep):
        """Readiness probe: database reachable and schema up to date."""
        checks = {"database": "unknown", "migrations": "unknown"}

        if await adapter.test_connection():
            checks["database"] = "healthy"
        else:
            checks["database"] = "unhealthy"

        if checks["database"] == "healthy":
            pending = await app.state.migrations.pending()
            checks["migrations"] = "healthy" if not pending else f"{len(pending)} pending"

        all_healthy = all(c == "healthy" for c in checks.values())
        body = {
            "status": "ready" if all_healthy else "degraded",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        }
        return JSONResponse(status_code=200 if all_healthy else 503, content=body)

    return app
