# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Planning, state and execution exceptions.

Structural errors (definition, state, cycle) are raised before any provider
call is made. Provider errors are contained to a single action and reported
in the apply result.
"""

from typing import TYPE_CHECKING, Any, Optional, Sequence

if TYPE_CHECKING:
    from infraplan.core.models.result import ApplyResult


class InfraPlanError(Exception):
    """
    Base exception for all infraplan errors.
    """

    pass


class DefinitionError(InfraPlanError):
    """
    Raised for malformed, duplicate or unresolved resource definitions.
    """

    pass


class MalformedDefinitionError(DefinitionError):
    """
    Raised when a resource definition cannot be parsed or validated.
    """

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Malformed definition in {source}: {reason}")


class DuplicateIdentityError(DefinitionError):
    """
    Raised when two definitions share the same identity.
    """

    def __init__(self, identity: str) -> None:
        self.identity = identity
        super().__init__(f"Resource {identity} is defined more than once")


class UnresolvedReferenceError(DefinitionError):
    """
    Raised when a definition references an identity that does not exist.
    """

    def __init__(self, identity: str, reference: str) -> None:
        self.identity = identity
        self.reference = reference
        super().__init__(f"Resource {identity} references undeclared resource {reference}")


class UnknownResourceTypeError(DefinitionError):
    """
    Raised when no provider is registered for a resource type.
    """

    def __init__(self, resource_type: str) -> None:
        self.resource_type = resource_type
        super().__init__(f"No provider registered for resource type '{resource_type}'")


class StateError(InfraPlanError):
    """
    Raised for corrupt, stale or lock-contended state.
    """

    pass


class StateCorruptError(StateError):
    """
    Raised when a persisted state document fails validation.
    """

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"State for {key} is corrupt: {reason}")


class LockTimeoutError(StateError):
    """
    Raised when the state lock could not be acquired in time.
    """

    def __init__(self, key: str, holder: Optional[str], timeout: float) -> None:
        self.key = key
        self.holder = holder
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout}s waiting for state lock on {key} (held by {holder})"
        )


class StaleLockError(StateError):
    """
    Raised when a commit is attempted with a lock that was lost or expired.
    """

    def __init__(self, key: str, lock_id: str, reason: str) -> None:
        self.key = key
        self.lock_id = lock_id
        self.reason = reason
        super().__init__(f"Lock {lock_id} on {key} is no longer valid: {reason}")


class StalePlanError(StateError):
    """
    Raised when a plan is applied against state that changed since planning.
    """

    def __init__(self, plan_id: str, planned_serial: int, current_serial: int) -> None:
        self.plan_id = plan_id
        self.planned_serial = planned_serial
        self.current_serial = current_serial
        super().__init__(
            f"Plan {plan_id} was created at state serial {planned_serial}, "
            f"state is now at serial {current_serial}"
        )


class PlanNotFoundError(StateError):
    """
    Raised when a plan is not found.
    """

    def __init__(self, plan_id: str) -> None:
        self.plan_id = plan_id
        super().__init__(f"Plan {plan_id} not found")


class PlanConsumedError(StateError):
    """
    Raised when a plan that was already applied is applied again.
    """

    def __init__(self, plan_id: str) -> None:
        self.plan_id = plan_id
        super().__init__(f"Plan {plan_id} has already been applied")


class CyclicDependencyError(InfraPlanError):
    """
    Raised when pending changes depend on each other in a cycle.
    """

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__("Dependency cycle: " + " -> ".join(self.cycle))


class ProviderError(InfraPlanError):
    """
    Raised by a provider when a single resource operation fails.
    """

    def __init__(self, identity: str, message: str, details: Optional[Any] = None) -> None:
        self.identity = identity
        self.message = message
        self.details = details
        super().__init__(f"{identity}: {message}")


class NotFoundError(ProviderError):
    """
    Raised by a provider when a resource no longer exists remotely.
    """

    def __init__(self, identity: str) -> None:
        super().__init__(identity, "resource not found")


class ReferenceResolutionError(ProviderError):
    """
    Raised when a reference cannot be resolved against committed state.
    """

    def __init__(self, identity: str, reference: str) -> None:
        self.reference = reference
        super().__init__(identity, f"cannot resolve reference ${{{reference}}}")


class PartialFailureError(InfraPlanError):
    """
    Raised on request when an apply did not complete every action.
    """

    def __init__(self, result: "ApplyResult") -> None:
        self.result = result
        failed = [r.identity for r in result.failed]
        skipped = [r.identity for r in result.skipped]
        super().__init__(
            f"Apply of plan {result.plan_id} finished with status {result.status}: "
            f"failed={failed} skipped={skipped}"
        )
