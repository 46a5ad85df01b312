"""Adapter dependency for request handlers."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from infradb.db.adapter import DatabaseAdapter


def get_adapter(request: Request) -> DatabaseAdapter:
    """Get the process-wide adapter created by the application lifespan."""
    adapter = getattr(request.app.state, "adapter", None)
    if adapter is None or not adapter.is_connected:
        raise HTTPException(status_code=503, detail="Database is not available")
    return adapter


# Type alias for dependency injection
AdapterDep = Annotated[DatabaseAdapter, Depends(get_adapter)]
