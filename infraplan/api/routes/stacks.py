# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Stacks API routes
"""

import asyncio
from typing import List, Optional
from fastapi import APIRouter, Body, HTTPException, Query
from infraplan.api.routes.errors import to_http_exception
from infraplan.core.exceptions import InfraPlanError
from infraplan.core.models.plan import ExecutionPlan
from infraplan.core.models.resource import ResourceDefinition
from infraplan.core.models.result import ApplyResult
from infraplan.core.models.stack import (
    PlanListResponse,
    PlanRequest,
    PlanResponse,
    StackInfo,
    StackListResponse,
)
from infraplan.core.services.engine import Engine
from infraplan.core.services.stacks import StackLoader
from infraplan.core.observability import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/stacks", tags=["stacks"])
_engine: Optional[Engine] = None
_stack_loader: Optional[StackLoader] = None


def set_engine(engine: Engine) -> None:
    """Set the engine instance.

    :param engine: Engine used by every plan, apply and state route.
    :type engine: Engine
    """
    global _engine
    _engine = engine


def set_stack_loader(loader: StackLoader) -> None:
    """Set the stack loader instance.

    :param loader: StackLoader reading definitions from disk.
    :type loader: StackLoader
    """
    global _stack_loader
    _stack_loader = loader


def current_engine() -> Optional[Engine]:
    """The configured engine, or None before startup."""
    return _engine


def get_engine() -> Engine:
    """Get the engine instance.

    :returns: The configured Engine instance.
    :rtype: Engine
    :raises HTTPException: If engine not initialized (503 error).
    """
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return _engine


def get_stack_loader() -> StackLoader:
    """Get the stack loader instance.

    :returns: The configured StackLoader instance.
    :rtype: StackLoader
    :raises HTTPException: If loader not initialized (503 error).
    """
    if _stack_loader is None:
        raise HTTPException(status_code=503, detail="Stack loader not initialized")
    return _stack_loader


def plan_response(plan: ExecutionPlan) -> PlanResponse:
    """Wrap a plan with its rendered text and summary."""
    return PlanResponse(plan=plan, rendered=plan.render(), summary=plan.summary())


def _definitions_for(key: str, request: Optional[PlanRequest]) -> List[ResourceDefinition]:
    """Definitions from the request body, or from the stack's file on disk.

    :raises HTTPException: 404 if the stack has no definitions file,
        400 if the key or the file is invalid.
    """
    if request is not None and request.definitions is not None:
        return request.definitions
    try:
        return get_stack_loader().load(key)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail=f"Stack {key} not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InfraPlanError as e:
        raise to_http_exception(e)


@router.get("", response_model=StackListResponse)
async def list_stacks() -> StackListResponse:
    """List stacks defined on disk and stacks that only have stored state.

    :returns: Response containing list of stacks and total count.
    :rtype: StackListResponse
    """
    engine = get_engine()
    stacks = {s.key: s for s in get_stack_loader().list_stacks()}
    for key in engine.state_store.keys():
        stacks.setdefault(key, StackInfo(key=key))
    for key, info in stacks.items():
        try:
            info.serial = engine.show(key).serial
        except InfraPlanError as e:
            logger.warning(f"Could not read state for stack {key}: {e}")
    result = [stacks[k] for k in sorted(stacks)]
    return StackListResponse(stacks=result, total=len(result))


@router.get("/{key}", response_model=StackInfo)
async def get_stack(key: str) -> StackInfo:
    """Get a specific stack.

    :param key: Stack key.
    :type key: str
    :returns: Stack information.
    :rtype: StackInfo
    :raises HTTPException: If the stack has neither definitions nor state (404 error).
    """
    for info in (await list_stacks()).stacks:
        if info.key == key:
            return info
    raise HTTPException(status_code=404, detail=f"Stack {key} not found")


@router.post("/{key}/plans", response_model=PlanResponse, status_code=201)
async def create_plan(key: str, request: Optional[PlanRequest] = Body(None)) -> PlanResponse:
    """Compute and store a plan for a stack.

    :param key: Stack key.
    :type key: str
    :param request: Optional inline definitions and destroy flag.
    :type request: Optional[PlanRequest]
    :returns: The stored plan.
    :rtype: PlanResponse
    :raises HTTPException: 400 invalid definitions, 409 cycle, 423 lock timeout.
    """
    engine = get_engine()
    destroy = bool(request and request.destroy)
    definitions = [] if destroy else _definitions_for(key, request)
    try:
        plan = await asyncio.to_thread(engine.plan, key, definitions, destroy)
    except InfraPlanError as e:
        raise to_http_exception(e)
    logger.info(f"Created plan {plan.id} for stack {key}")
    return plan_response(plan)


@router.get("/{key}/plans", response_model=PlanListResponse)
async def list_plans(
    key: str,
    limit: int = Query(50, ge=1, le=200, description="Maximum results"),
) -> PlanListResponse:
    """List stored plans for a stack, newest first.

    :param key: Stack key.
    :type key: str
    :param limit: Maximum number of plans to return.
    :type limit: int
    :returns: Response containing list of plans and total count.
    :rtype: PlanListResponse
    """
    plans = get_engine().plan_store.list(key=key, limit=limit)
    return PlanListResponse(plans=plans, total=len(plans))


@router.post("/{key}/destroy", response_model=PlanResponse, status_code=201)
async def create_destroy_plan(key: str) -> PlanResponse:
    """Plan the destruction of every resource stored for a stack.

    :param key: Stack key.
    :type key: str
    :returns: The stored destroy plan.
    :rtype: PlanResponse
    """
    try:
        plan = await asyncio.to_thread(get_engine().destroy, key)
    except InfraPlanError as e:
        raise to_http_exception(e)
    logger.info(f"Created destroy plan {plan.id} for stack {key}")
    return plan_response(plan)


@router.post("/{key}/apply", response_model=ApplyResult)
async def plan_and_apply(key: str, request: Optional[PlanRequest] = Body(None)) -> ApplyResult:
    """Plan and apply a stack under a single lock.

    A partial failure is not an HTTP error: the result carries the
    per-resource log and ``exit_code`` 1.

    :param key: Stack key.
    :type key: str
    :param request: Optional inline definitions and destroy flag.
    :type request: Optional[PlanRequest]
    :returns: Apply result.
    :rtype: ApplyResult
    """
    engine = get_engine()
    destroy = bool(request and request.destroy)
    definitions = [] if destroy else _definitions_for(key, request)
    try:
        return await asyncio.to_thread(engine.plan_and_apply, key, definitions, destroy)
    except InfraPlanError as e:
        raise to_http_exception(e)


@router.post("/{key}/cancel")
async def cancel_apply(key: str) -> dict:
    """Stop dispatching actions for a running apply.

    :param key: Stack key.
    :type key: str
    :returns: Status dict with cancellation confirmation.
    :rtype: dict
    :raises HTTPException: If no apply is running for the stack (404 error).
    """
    if not get_engine().cancel(key):
        raise HTTPException(status_code=404, detail=f"No apply running for stack {key}")
    return {"status": "cancelling", "key": key}
