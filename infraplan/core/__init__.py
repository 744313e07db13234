# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""infraplan core - declarative plan and apply engine.

This package provides:
- Resource, plan and result models
- Graph building, diffing and wave planning
- SQLite-based state and plan storage with lease locks
- Wave executor with per-resource commits
- Engine orchestrating plan, apply, destroy, show and refresh
"""

from infraplan.core.models.resource import ResourceDefinition, ResourceState, StateDocument
from infraplan.core.models.plan import ActionType, ChangeAction, ExecutionPlan
from infraplan.core.models.result import ApplyResult, ApplyStatus
from infraplan.core.storage.state_store import StateStore
from infraplan.core.storage.plan_store import PlanStore
from infraplan.core.execution.providers import ProviderRegistry
from infraplan.core.execution.executor import PlanExecutor
from infraplan.core.services.engine import Engine, default_registry

__all__ = [
    "ResourceDefinition",
    "ResourceState",
    "StateDocument",
    "ActionType",
    "ChangeAction",
    "ExecutionPlan",
    "ApplyResult",
    "ApplyStatus",
    "StateStore",
    "PlanStore",
    "ProviderRegistry",
    "PlanExecutor",
    "Engine",
    "default_registry",
]
