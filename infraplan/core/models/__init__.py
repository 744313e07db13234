# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Pydantic models for planning and state."""

from infraplan.core.models.resource import (
    ResourceDefinition,
    ResourceMode,
    ResourceState,
    StateDocument,
    TOMBSTONE,
    make_identity,
)
from infraplan.core.models.plan import ActionType, ChangeAction, ChangeSet, ExecutionPlan
from infraplan.core.models.result import (
    ActionOutcome,
    ActionResult,
    ApplyResult,
    ApplyStatus,
    DriftReport,
    ResourceDrift,
)
from infraplan.core.models.lock import Lock, LockInfo
from infraplan.core.models.stack import (
    PlanListResponse,
    PlanRequest,
    PlanResponse,
    StackInfo,
    StackListResponse,
)

__all__ = [
    "ResourceDefinition",
    "ResourceMode",
    "ResourceState",
    "StateDocument",
    "TOMBSTONE",
    "make_identity",
    "ActionType",
    "ChangeAction",
    "ChangeSet",
    "ExecutionPlan",
    "ActionOutcome",
    "ActionResult",
    "ApplyResult",
    "ApplyStatus",
    "DriftReport",
    "ResourceDrift",
    "Lock",
    "LockInfo",
    "PlanListResponse",
    "PlanRequest",
    "PlanResponse",
    "StackInfo",
    "StackListResponse",
]
