# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Tests for planning, state and execution exceptions."""

from infraplan.core.exceptions import (
    CyclicDependencyError,
    DefinitionError,
    DuplicateIdentityError,
    InfraPlanError,
    LockTimeoutError,
    MalformedDefinitionError,
    NotFoundError,
    PartialFailureError,
    ProviderError,
    ReferenceResolutionError,
    StaleLockError,
    StalePlanError,
    StateError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
)
from infraplan.core.models.result import ActionOutcome, ActionResult, ApplyResult, ApplyStatus


class TestExceptionHierarchy:
    """
    Tests for the exception hierarchy.
    """

    def test_definition_errors(self) -> None:
        """
        Definition problems share the DefinitionError base.
        """
        for error in (
            MalformedDefinitionError("stack.yaml", "bad"),
            DuplicateIdentityError("vm.db"),
            UnresolvedReferenceError("vm.db", "subnet.s1"),
            UnknownResourceTypeError("lb"),
        ):
            assert isinstance(error, DefinitionError)
            assert isinstance(error, InfraPlanError)

    def test_state_errors(self) -> None:
        """
        Lock and plan freshness problems share the StateError base.
        """
        assert isinstance(LockTimeoutError("k", "h", 1.0), StateError)
        assert isinstance(StaleLockError("k", "id", "expired"), StateError)
        assert isinstance(StalePlanError("p", 1, 2), StateError)

    def test_provider_errors(self) -> None:
        """
        Not-found and reference failures are provider errors.
        """
        assert isinstance(NotFoundError("vm.db"), ProviderError)
        assert isinstance(ReferenceResolutionError("vm.db", "subnet.s1.id"), ProviderError)

    def test_cycle_not_a_state_error(self) -> None:
        """
        Cycles are structural errors, not state errors.
        """
        error = CyclicDependencyError(["vm.a", "vm.b", "vm.a"])
        assert not isinstance(error, StateError)
        assert isinstance(error, InfraPlanError)


class TestExceptionMessages:
    """
    Tests for exception attributes and messages.
    """

    def test_unresolved_reference(self) -> None:
        """
        UnresolvedReferenceError names both resources.
        """
        error = UnresolvedReferenceError("vm.db", "subnet.s1")
        assert (error.identity, error.reference) == ("vm.db", "subnet.s1")
        assert str(error) == "Resource vm.db references undeclared resource subnet.s1"

    def test_cycle_path(self) -> None:
        """
        CyclicDependencyError renders the cycle as a path.
        """
        error = CyclicDependencyError(["vm.a", "vm.b", "vm.a"])
        assert error.cycle == ["vm.a", "vm.b", "vm.a"]
        assert str(error) == "Dependency cycle: vm.a -> vm.b -> vm.a"

    def test_lock_timeout(self) -> None:
        """
        LockTimeoutError stores key, holder and timeout.
        """
        error = LockTimeoutError("hana-dev", "ci:42", 30.0)
        assert error.holder == "ci:42"
        assert "hana-dev" in str(error) and "ci:42" in str(error)

    def test_provider_error_details(self) -> None:
        """
        ProviderError keeps the message separately from the identity.
        """
        error = ProviderError("vm.db", "quota exceeded", details={"code": 409})
        assert error.message == "quota exceeded"
        assert error.details == {"code": 409}
        assert str(error) == "vm.db: quota exceeded"

    def test_reference_resolution(self) -> None:
        """
        ReferenceResolutionError shows the reference expression.
        """
        error = ReferenceResolutionError("vm.db", "subnet.s1.id")
        assert error.message == "cannot resolve reference ${subnet.s1.id}"

    def test_partial_failure(self) -> None:
        """
        PartialFailureError lists failed and skipped resources.
        """
        result = ApplyResult(
            plan_id="p1",
            key="dev",
            status=ApplyStatus.PARTIAL_FAILURE,
            results=[
                ActionResult(
                    key="create:network.net",
                    identity="network.net",
                    action="create",
                    outcome=ActionOutcome.FAILED,
                    error="boom",
                ),
                ActionResult(
                    key="create:vm.vm",
                    identity="vm.vm",
                    action="create",
                    outcome=ActionOutcome.SKIPPED,
                    caused_by="network.net",
                ),
            ],
        )
        error = PartialFailureError(result)

        assert error.result is result
        assert "failed=['network.net']" in str(error)
        assert "skipped=['vm.vm']" in str(error)
