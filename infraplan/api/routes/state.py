# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""State inspection, refresh and lock recovery routes."""

import asyncio
from fastapi import APIRouter, HTTPException
from infraplan.api.routes.errors import to_http_exception
from infraplan.api.routes.stacks import get_engine
from infraplan.core.exceptions import InfraPlanError
from infraplan.core.models.lock import LockInfo
from infraplan.core.models.resource import StateDocument
from infraplan.core.models.result import DriftReport
from infraplan.core.observability import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/stacks", tags=["state"])


@router.get("/{key}/state", response_model=StateDocument)
async def show_state(key: str) -> StateDocument:
    """Read a stack's committed state without taking its lock.

    The document may reflect an apply that is still running.

    :param key: Stack key.
    :type key: str
    :returns: State document (empty at serial 0 for an unknown stack).
    :rtype: StateDocument
    :raises HTTPException: If the stored state is corrupt (500 error).
    """
    try:
        return get_engine().show(key)
    except InfraPlanError as e:
        raise to_http_exception(e)


@router.post("/{key}/refresh", response_model=DriftReport)
async def refresh_state(key: str) -> DriftReport:
    """Re-read every stored resource and record drift.

    :param key: Stack key.
    :type key: str
    :returns: Drift report.
    :rtype: DriftReport
    """
    try:
        return await asyncio.to_thread(get_engine().refresh, key)
    except InfraPlanError as e:
        raise to_http_exception(e)


@router.get("/{key}/lock", response_model=LockInfo)
async def get_lock(key: str) -> LockInfo:
    """Get the current lock holder for a stack.

    :param key: Stack key.
    :type key: str
    :returns: Lock metadata.
    :rtype: LockInfo
    :raises HTTPException: If the stack is not locked (404 error).
    """
    info = get_engine().state_store.lock_info(key)
    if info is None:
        raise HTTPException(status_code=404, detail=f"Stack {key} is not locked")
    return info


@router.delete("/{key}/lock")
async def force_unlock(key: str) -> dict:
    """Remove a lock left behind by a crashed holder.

    :param key: Stack key.
    :type key: str
    :returns: Status dict confirming the unlock.
    :rtype: dict
    :raises HTTPException: If the stack is not locked (404 error).
    """
    if not get_engine().force_unlock(key):
        raise HTTPException(status_code=404, detail=f"Stack {key} is not locked")
    logger.warning(f"Lock on stack {key} removed through the API")
    return {"status": "unlocked", "key": key}
