"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from allocation_engine.services.allocation_service import AllocationService
from allocation_engine.utils.config import get_settings


def get_allocation_service(request: Request) -> AllocationService:
    service = getattr(request.app.state, "allocation_service", None)
    if service is None:
        repository = getattr(request.app.state, "repository", None)
        if repository is not None:
            service = AllocationService(
                repository=repository,
                settings=get_settings(),
                notifier=getattr(request.app.state, "notifier", None),
            )
            request.app.state.allocation_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Allocation service is not initialized",
        )
    return service
