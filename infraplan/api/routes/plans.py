# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Plans API routes."""

import asyncio
from fastapi import APIRouter
from infraplan.api.routes.errors import to_http_exception
from infraplan.api.routes.stacks import get_engine, plan_response
from infraplan.core.exceptions import InfraPlanError
from infraplan.core.models.result import ApplyResult
from infraplan.core.models.stack import PlanResponse
from infraplan.core.observability import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/plans", tags=["plans"])


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(plan_id: str) -> PlanResponse:
    """Get a stored plan.

    :param plan_id: Plan ID.
    :type plan_id: str
    :returns: The plan with its rendered form.
    :rtype: PlanResponse
    :raises HTTPException: If plan not found (404 error).
    """
    try:
        plan = get_engine().plan_store.get(plan_id)
    except InfraPlanError as e:
        raise to_http_exception(e)
    return plan_response(plan)


@router.post("/{plan_id}/apply", response_model=ApplyResult)
async def apply_plan(plan_id: str) -> ApplyResult:
    """Apply a stored plan. A plan can be applied once.

    :param plan_id: Plan ID.
    :type plan_id: str
    :returns: Apply result with the per-resource log.
    :rtype: ApplyResult
    :raises HTTPException: 404 unknown plan, 409 consumed or stale plan,
        423 lock timeout.
    """
    try:
        result = await asyncio.to_thread(get_engine().apply, plan_id)
    except InfraPlanError as e:
        raise to_http_exception(e)
    logger.info(f"Applied plan {plan_id}: {result.status} {result.summary()}")
    return result
