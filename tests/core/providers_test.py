# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Tests for the provider registry and the null provider."""

import pytest
from infraplan.core.exceptions import ProviderError, UnknownResourceTypeError
from infraplan.core.execution.providers import (
    NullProvider,
    ProviderRegistry,
    ResourceTypeSchema,
    state_from_attributes,
)
from infraplan.core.models.plan import ActionType, ChangeAction
from infraplan.core.models.resource import ResourceDefinition, ResourceState


def _action(action: ActionType, before=None, attributes=None) -> ChangeAction:
    return ChangeAction(
        action=action,
        identity="null_resource.vm",
        resource_type="null_resource",
        name="vm",
        before=before,
        after=(
            ResourceDefinition(type="null_resource", name="vm", attributes=attributes or {})
            if action != ActionType.DESTROY
            else None
        ),
    )


class TestResourceTypeSchema:
    """
    Tests for change semantics.
    """

    def test_replace_on_change(self) -> None:
        """
        Only listed attributes force replacement.
        """
        schema = ResourceTypeSchema(resource_type="vm", replace_on_change=frozenset({"image"}))
        assert schema.requires_replacement(["image", "size"])
        assert not schema.requires_replacement(["size"])
        assert not schema.requires_replacement([])

    def test_not_updatable(self) -> None:
        """
        Any change replaces a non-updatable type.
        """
        schema = ResourceTypeSchema(resource_type="appliance", updatable=False)
        assert schema.requires_replacement(["anything"])


class TestProviderRegistry:
    """
    Tests for ProviderRegistry.
    """

    def test_register_and_lookup(self) -> None:
        """
        Registered types resolve to their provider and schema.
        """
        registry = ProviderRegistry()
        provider = NullProvider()
        registry.register("vm", provider, replace_on_change=("image",))

        assert "vm" in registry
        assert registry.types() == ["vm"]
        assert registry.provider_for("vm") is provider
        assert registry.schema_for("vm").replace_on_change == frozenset({"image"})

    def test_unknown_type(self) -> None:
        """
        Unregistered types raise UnknownResourceTypeError.
        """
        registry = ProviderRegistry()
        with pytest.raises(UnknownResourceTypeError):
            registry.provider_for("vm")
        with pytest.raises(UnknownResourceTypeError):
            registry.validate([ResourceDefinition(type="vm", name="a")])


class TestNullProvider:
    """
    Tests for NullProvider.
    """

    def test_create_assigns_id(self) -> None:
        """
        A create stores the inputs and assigns a fresh id.
        """
        state = NullProvider().apply(_action(ActionType.CREATE, attributes={"size": "M64"}))

        assert state.inputs == {"size": "M64"}
        assert state.attributes["size"] == "M64"
        assert state.attributes["id"]
        assert "applied_at" in state.attributes

    def test_update_keeps_id(self) -> None:
        """
        An update keeps the id of the previous state.
        """
        before = ResourceState(
            identity="null_resource.vm",
            type="null_resource",
            name="vm",
            attributes={"id": "vm-1"},
        )
        state = NullProvider().apply(_action(ActionType.UPDATE, before, {"size": "M128"}))
        assert state.attributes["id"] == "vm-1"

    def test_destroy(self) -> None:
        """
        Destroy returns no state.
        """
        assert NullProvider().apply(_action(ActionType.DESTROY)) is None

    def test_create_without_definition(self) -> None:
        """
        A create without a definition is a provider error.
        """
        action = ChangeAction(
            action=ActionType.CREATE,
            identity="null_resource.vm",
            resource_type="null_resource",
            name="vm",
        )
        with pytest.raises(ProviderError):
            NullProvider().apply(action)


class TestStateFromAttributes:
    """
    Tests for state_from_attributes.
    """

    def test_managed_identity(self) -> None:
        """
        Type and name come from a managed identity.
        """
        state = state_from_attributes("null_resource.vm", {"id": "x"})
        assert (state.type, state.name, state.mode) == ("null_resource", "vm", "managed")

    def test_data_identity(self) -> None:
        """
        Data identities produce data-mode state.
        """
        state = state_from_attributes("data.null_data_source.image", {"offer": "sles"})
        assert (state.type, state.name, state.mode) == ("null_data_source", "image", "data")
        assert state.attributes == {"offer": "sles"}
