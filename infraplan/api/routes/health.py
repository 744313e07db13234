# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Dict, List
from fastapi import APIRouter
from pydantic import BaseModel, Field
from infraplan import __version__
from infraplan.api.routes import stacks as stacks_routes

router = APIRouter(tags=["health"])
_service_status: Dict[str, bool] = {}


class HealthResponse(BaseModel):
    """Health check response.

    ``status`` is ``degraded`` when any service is down.
    """

    status: str
    timestamp: str
    version: str
    services: Dict[str, bool] = Field(default_factory=dict)
    running_applies: List[str] = Field(default_factory=list)


def set_service_status(name: str, running: bool) -> None:
    """Record a service's status for the health check.

    :param name: Service name (e.g., "engine")
    :param running: Whether the service is running
    """
    _service_status[name] = running


@router.get("/healthz", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report service states, state storage reachability and running applies.

    :returns: Health status.
    :rtype: HealthResponse
    """
    services = dict(_service_status)
    running: List[str] = []
    engine = stacks_routes.current_engine()
    if engine is not None:
        services["state_store"] = engine.state_store.ping()
        running = engine.running()
    return HealthResponse(
        status="healthy" if all(services.values()) else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        services=services,
        running_applies=running,
    )


@router.get("/")
async def root() -> dict:
    """Service information and documentation link."""
    return {
        "service": "infraplan API",
        "version": __version__,
        "docs": "/docs",
    }
