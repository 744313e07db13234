# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Translation of engine errors into HTTP errors."""

from fastapi import HTTPException
from infraplan.core.exceptions import (
    CyclicDependencyError,
    DefinitionError,
    InfraPlanError,
    LockTimeoutError,
    PlanConsumedError,
    PlanNotFoundError,
    StaleLockError,
    StalePlanError,
    StateCorruptError,
)
from infraplan.core.observability import get_logger

logger = get_logger(__name__)

_STATUS_CODES: list[tuple[type[InfraPlanError], int]] = [
    (DefinitionError, 400),
    (PlanNotFoundError, 404),
    (CyclicDependencyError, 409),
    (StalePlanError, 409),
    (PlanConsumedError, 409),
    (StaleLockError, 409),
    (LockTimeoutError, 423),
    (StateCorruptError, 500),
]


def to_http_exception(error: InfraPlanError) -> HTTPException:
    """Map an engine error to an HTTPException.

    :param error: Error raised by the engine
    :type error: InfraPlanError
    :returns: HTTPException with a matching status code
    :rtype: HTTPException
    """
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            break
    else:
        status_code = 500
    if status_code >= 500:
        logger.error(f"{type(error).__name__}: {error}")
    else:
        logger.warning(f"{type(error).__name__}: {error}")
    return HTTPException(status_code=status_code, detail=str(error))
