# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""API routes package."""

from infraplan.api.routes.health import router as health_router
from infraplan.api.routes.stacks import router as stacks_router, set_engine, set_stack_loader
from infraplan.api.routes.plans import router as plans_router
from infraplan.api.routes.state import router as state_router

__all__ = [
    "health_router",
    "stacks_router",
    "plans_router",
    "state_router",
    "set_engine",
    "set_stack_loader",
]
