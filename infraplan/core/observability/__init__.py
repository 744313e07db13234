# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""
Observability for infraplan.

Every log record carries the run context (correlation ID, stack, execution
ID and engine operation). Plan, apply and per-resource milestones are
logged as typed ExecutionEvents; HTTP requests as ServiceEvents.

Usage:
    from infraplan.core.observability import get_logger, create_execution_event

    logger = get_logger(__name__)
    logger.event(create_execution_event("action_start", resource="vm.db"))
"""

from infraplan.core.observability.context import (
    ContextData,
    ObservabilityContextManager,
    ObservabilityScope,
    ExecutionScope,
    ObservabilityContext,
    get_correlation_id,
    set_correlation_id,
    get_stack_id,
    get_execution_id,
    get_operation,
    clear_context,
)

from infraplan.core.observability.events import (
    LogStream,
    LogLevel,
    ServiceEvent,
    ExecutionEvent,
    create_service_event,
    create_execution_event,
)

from infraplan.core.observability.logger import (
    LogFormatter,
    JSONFormatter,
    ConsoleFormatter,
    StructuredLogger,
    LoggerFactory,
    initialize_logging,
    get_logger,
)

from infraplan.core.observability.middleware import (
    ObservabilityMiddleware,
    add_observability_middleware,
    CORRELATION_ID_HEADER,
    STACK_ID_HEADER,
)


__all__ = [
    "ContextData",
    "ObservabilityContextManager",
    "ObservabilityScope",
    "ExecutionScope",
    "ObservabilityContext",
    "get_correlation_id",
    "set_correlation_id",
    "get_stack_id",
    "get_execution_id",
    "get_operation",
    "clear_context",
    "LogStream",
    "LogLevel",
    "ServiceEvent",
    "ExecutionEvent",
    "create_service_event",
    "create_execution_event",
    "LogFormatter",
    "JSONFormatter",
    "ConsoleFormatter",
    "StructuredLogger",
    "LoggerFactory",
    "initialize_logging",
    "get_logger",
    "ObservabilityMiddleware",
    "add_observability_middleware",
    "CORRELATION_ID_HEADER",
    "STACK_ID_HEADER",
]
