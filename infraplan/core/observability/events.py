# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""
Typed log events.

Service events describe API requests. Execution events describe what the
engine does to a stack: planning, each action of an apply, lock traffic and
state commits. Both pick up correlation, stack and run identifiers from the
current run context unless they are passed explicitly.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from infraplan.core.observability.context import ObservabilityContextManager

ERROR_MAX_LENGTH = 500


class LogStream(str, Enum):
    """
    Log stream identifiers.
    """

    SERVICE = "service_logs"
    EXECUTION = "execution_logs"


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


ServiceEventType = Literal["request_start", "request_end"]

ExecutionEventType = Literal[
    "plan_start",
    "plan_complete",
    "apply_start",
    "apply_complete",
    "apply_fail",
    "apply_cancel",
    "action_start",
    "action_end",
    "action_skip",
    "lock_acquire",
    "lock_release",
    "state_commit",
    "refresh_complete",
    "command_exec",
]


class _Event(BaseModel):
    """Fields shared by every event."""

    model_config = ConfigDict(use_enum_values=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    level: LogLevel = LogLevel.INFO
    correlation_id: Optional[str] = None
    stack_id: Optional[str] = None
    error: Optional[str] = None


class ServiceEvent(_Event):
    """One API request, logged at start and end."""

    stream: Literal[LogStream.SERVICE] = LogStream.SERVICE
    event: ServiceEventType
    status: Optional[Literal["success", "error"]] = None
    duration_ms: Optional[int] = None
    http_method: Optional[str] = None
    http_path: Optional[str] = None
    http_status_code: Optional[int] = None
    client_ip: Optional[str] = None


class ExecutionEvent(_Event):
    """Engine activity against one stack.

    ``execution_id`` is the plan ID during an apply, a generated run ID
    otherwise. Per-action events carry ``resource``, ``action`` and ``wave``;
    run summaries carry the ``actions_*`` counts.
    """

    stream: Literal[LogStream.EXECUTION] = LogStream.EXECUTION
    event: ExecutionEventType
    status: Optional[Literal["success", "failed", "skipped", "cancelled"]] = None
    duration_ms: Optional[float] = None
    execution_id: Optional[str] = None
    operation: Optional[str] = None
    plan_id: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    caused_by: Optional[str] = None
    wave: Optional[int] = None
    serial: Optional[int] = None
    actions_total: Optional[int] = None
    actions_succeeded: Optional[int] = None
    actions_failed: Optional[int] = None
    actions_skipped: Optional[int] = None


def truncate(text: Optional[str], max_length: int = 200) -> Optional[str]:
    """Truncate text to max length with ellipsis.

    :param text: Text to truncate
    :type text: Optional[str]
    :param max_length: Maximum length
    :type max_length: int
    :returns: Truncated text or None
    :rtype: Optional[str]
    """
    if text is None or len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def _with_context(fields: Dict[str, Any], *names: str) -> Dict[str, Any]:
    """Fill the named fields from the run context where not given."""
    context = ObservabilityContextManager.instance().get_context()
    for name in names:
        fields.setdefault(name, getattr(context, name))
    if fields.get("error") is not None:
        fields["error"] = truncate(str(fields["error"]), ERROR_MAX_LENGTH)
    return fields


def create_service_event(
    event: ServiceEventType,
    level: LogLevel = LogLevel.INFO,
    **kwargs: Any,
) -> ServiceEvent:
    """Create a service event with context auto-populated.

    :param event: Event type
    :type event: ServiceEventType
    :param level: Log level
    :type level: LogLevel
    :param kwargs: Additional event fields
    :returns: ServiceEvent instance
    :rtype: ServiceEvent
    """
    fields = _with_context(kwargs, "correlation_id", "stack_id")
    return ServiceEvent(event=event, level=level, **fields)


def create_execution_event(
    event: ExecutionEventType,
    level: LogLevel = LogLevel.INFO,
    **kwargs: Any,
) -> ExecutionEvent:
    """Create an execution event with context auto-populated."""
    fields = _with_context(kwargs, "correlation_id", "stack_id", "execution_id", "operation")
    return ExecutionEvent(event=event, level=level, **fields)
