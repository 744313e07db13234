# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""
Run context for log correlation.

One ContextVar holds the request correlation ID, the stack being worked on,
the current plan or apply run and the engine operation. Worker threads of
an apply receive a copy of the submitting thread's context.
"""

from __future__ import annotations
import uuid
from contextvars import ContextVar, Token
from dataclasses import asdict, dataclass, replace
from typing import Any, Optional

_FIELDS = ("correlation_id", "stack_id", "execution_id", "operation")


@dataclass(frozen=True)
class ContextData:
    """
    Immutable snapshot of the fields attached to every log record.
    """

    correlation_id: Optional[str] = None
    stack_id: Optional[str] = None
    execution_id: Optional[str] = None
    operation: Optional[str] = None

    def with_updates(self, **kwargs: Any) -> "ContextData":
        """
        Copy with some fields replaced.
        """
        return replace(self, **kwargs)

    def to_dict(self) -> dict[str, Optional[str]]:
        """
        Non-empty fields, for logging.
        """
        return {k: v for k, v in asdict(self).items() if v is not None}


_current: ContextVar[ContextData] = ContextVar("infraplan_context", default=ContextData())


class ObservabilityContextManager:
    """
    Singleton facade over the run context variable.
    """

    _instance: Optional["ObservabilityContextManager"] = None

    def __new__(cls) -> "ObservabilityContextManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def instance(cls) -> "ObservabilityContextManager":
        """The process-wide manager."""
        return cls()

    @staticmethod
    def get_context() -> ContextData:
        """Current context snapshot."""
        return _current.get()

    @staticmethod
    def set_context(data: ContextData) -> Token:
        """Replace the context, returning a token to restore the previous one."""
        return _current.set(data)

    @staticmethod
    def reset(token: Token) -> None:
        """Restore the context captured by ``token``."""
        _current.reset(token)

    def update(self, **kwargs: Optional[str]) -> None:
        """Replace some fields of the current context in place.

        :raises TypeError: For an unknown field name
        """
        unknown = set(kwargs) - set(_FIELDS)
        if unknown:
            raise TypeError(f"Unknown context fields: {sorted(unknown)}")
        self.set_context(self.get_context().with_updates(**kwargs))

    def get_all(self) -> dict[str, Optional[str]]:
        """Fields to attach to a log record; unset fields are left out."""
        return self.get_context().to_dict()

    def clear(self) -> None:
        """Reset every field to None."""
        self.set_context(ContextData())


class ObservabilityScope:
    """
    Context manager that sets context fields for the duration of a block
    and restores the previous values on exit.
    """

    def __init__(
        self,
        correlation_id: Optional[str] = None,
        stack_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        operation: Optional[str] = None,
        auto_correlation_id: bool = False,
        auto_execution_id: bool = False,
    ) -> None:
        """Fields left as None keep their current value inside the scope.

        :param correlation_id: Request correlation ID
        :param stack_id: State key being worked on
        :param execution_id: Plan or apply run ID
        :param operation: Engine operation (plan, apply, refresh)
        :param auto_correlation_id: Generate a correlation ID when none is given
        :param auto_execution_id: Generate an execution ID when none is given
        """
        if correlation_id is None and auto_correlation_id:
            correlation_id = str(uuid.uuid4())
        if execution_id is None and auto_execution_id:
            execution_id = str(uuid.uuid4())
        self._updates = {
            name: value
            for name, value in zip(_FIELDS, (correlation_id, stack_id, execution_id, operation))
            if value is not None
        }
        self._token: Optional[Token] = None

    @property
    def execution_id(self) -> Optional[str]:
        """Execution ID set by this scope, if any."""
        return self._updates.get("execution_id")

    def __enter__(self) -> "ObservabilityScope":
        if self._updates:
            manager = ObservabilityContextManager.instance()
            self._token = manager.set_context(manager.get_context().with_updates(**self._updates))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            ObservabilityContextManager.reset(self._token)
            self._token = None


class ExecutionScope(ObservabilityScope):
    """
    Scope for one engine operation against one stack. Generates an
    execution ID unless one is given.
    """

    def __init__(
        self,
        stack_id: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("auto_execution_id", True)
        super().__init__(stack_id=stack_id, operation=operation, **kwargs)


def get_correlation_id() -> Optional[str]:
    """Correlation ID of the current request, if any."""
    return _current.get().correlation_id


def set_correlation_id(value: Optional[str] = None) -> str:
    """Set the correlation ID, generating one when ``value`` is empty."""
    cid = value or str(uuid.uuid4())
    ObservabilityContextManager.instance().update(correlation_id=cid)
    return cid


def get_stack_id() -> Optional[str]:
    """Stack key being worked on, if any."""
    return _current.get().stack_id


def get_execution_id() -> Optional[str]:
    """Plan or run ID of the current operation, if any."""
    return _current.get().execution_id


def get_operation() -> Optional[str]:
    """Get current engine operation."""
    return _current.get().operation


def clear_context() -> None:
    """Reset the run context."""
    ObservabilityContextManager.instance().clear()


ObservabilityContext = ObservabilityScope
