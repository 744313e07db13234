# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Stack and API request/response models."""
from typing import List, Optional
from pydantic import BaseModel, Field
from infraplan.core.models.plan import ExecutionPlan
from infraplan.core.models.resource import ResourceDefinition


class StackInfo(BaseModel):
    """Stack information."""

    key: str
    path: str = ""
    resources: int = 0
    data_sources: int = 0
    serial: int = 0


class StackListResponse(BaseModel):
    """Response containing list of stacks."""

    stacks: List[StackInfo]
    total: int


class PlanRequest(BaseModel):
    """Request to plan a stack.

    When ``definitions`` is omitted the stack's ``resources.yaml`` is used.
    """

    definitions: Optional[List[ResourceDefinition]] = None
    destroy: bool = False


class PlanResponse(BaseModel):
    """A stored plan with its rendered form."""

    plan: ExecutionPlan
    rendered: str
    summary: dict[str, int] = Field(default_factory=dict)


class PlanListResponse(BaseModel):
    """Response containing list of plans."""

    plans: List[ExecutionPlan]
    total: int
