# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Provider interface and registry.

A provider knows how to create, update, destroy and read one resource
type. Providers are resolved from the registry by resource type at process
start; the core never assumes anything about how they talk to the outside
world.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field
from infraplan.core.exceptions import ProviderError, UnknownResourceTypeError
from infraplan.core.models.plan import ActionType, ChangeAction
from infraplan.core.models.references import DATA_PREFIX
from infraplan.core.models.resource import ResourceDefinition, ResourceMode, ResourceState
from infraplan.core.observability import get_logger

logger = get_logger(__name__)


class ResourceTypeSchema(BaseModel):
    """Change semantics of a resource type."""

    model_config = ConfigDict(frozen=True)

    resource_type: str
    replace_on_change: frozenset[str] = Field(default_factory=frozenset)
    updatable: bool = True

    def requires_replacement(self, changed_attributes: Iterable[str]) -> bool:
        """Whether changing these attributes forces destroy-then-create.

        :param changed_attributes: Names of attributes that differ
        :returns: True if the resource must be replaced
        """
        changed = set(changed_attributes)
        if not changed:
            return False
        return not self.updatable or bool(changed & self.replace_on_change)


class ProviderProtocol(Protocol):
    """
    Protocol for resource providers.
    """

    def apply(self, action: ChangeAction) -> Optional[ResourceState]:
        """
        Carry out a create, update or destroy action.

        References in ``action.after`` are already resolved to concrete
        values. Destroy returns None.

        :param action: Planned action
        :returns: New state of the resource
        :raises ProviderError: If the operation fails
        """
        ...

    def read(self, identity: str, attributes: Dict[str, Any]) -> ResourceState:
        """
        Observe the current state of a resource.

        :param identity: Resource identity
        :param attributes: Query attributes (definition inputs or stored state)
        :returns: Observed state
        :raises NotFoundError: If the resource does not exist
        """
        ...


def state_from_action(action: ChangeAction, attributes: Dict[str, Any]) -> ResourceState:
    """Build the resulting state for a create or update action.

    :param action: Applied action (with resolved ``after``)
    :param attributes: Provider-reported attributes
    :returns: ResourceState for the resource
    """
    inputs = dict(action.after.attributes) if action.after else {}
    return ResourceState(
        identity=action.identity,
        type=action.resource_type,
        name=action.name,
        mode=action.mode,
        inputs=inputs,
        attributes={**inputs, **attributes},
        dependencies=list(action.dependencies),
    )


def state_from_attributes(identity: str, attributes: Dict[str, Any]) -> ResourceState:
    """Build a state that echoes stored attributes back, for providers that
    cannot observe a remote object.

    :param identity: Resource identity
    :param attributes: Stored provider-reported attributes
    :returns: ResourceState for the resource
    """
    body = identity.removeprefix(f"{DATA_PREFIX}.")
    resource_type, _, name = body.partition(".")
    return ResourceState(
        identity=identity,
        type=resource_type,
        name=name,
        mode=ResourceMode.DATA if body != identity else ResourceMode.MANAGED,
        attributes=dict(attributes),
    )


@dataclass(frozen=True)
class ProviderRegistration:
    """Provider and schema registered for a resource type."""

    provider: ProviderProtocol
    schema: ResourceTypeSchema


class ProviderRegistry:
    """Maps resource types to provider implementations."""

    def __init__(self) -> None:
        self._registrations: Dict[str, ProviderRegistration] = {}

    def register(
        self,
        resource_type: str,
        provider: ProviderProtocol,
        replace_on_change: Iterable[str] = (),
        updatable: bool = True,
    ) -> None:
        """Register a provider for a resource type.

        :param resource_type: Resource type handled by the provider
        :param provider: Provider implementation
        :param replace_on_change: Attributes whose change forces replacement
        :param updatable: False if any change forces replacement
        """
        self._registrations[resource_type] = ProviderRegistration(
            provider=provider,
            schema=ResourceTypeSchema(
                resource_type=resource_type,
                replace_on_change=frozenset(replace_on_change),
                updatable=updatable,
            ),
        )
        logger.debug(f"Registered provider for resource type {resource_type}")

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._registrations

    def types(self) -> List[str]:
        """Registered resource types, sorted."""
        return sorted(self._registrations)

    def _registration(self, resource_type: str) -> ProviderRegistration:
        registration = self._registrations.get(resource_type)
        if registration is None:
            raise UnknownResourceTypeError(resource_type)
        return registration

    def provider_for(self, resource_type: str) -> ProviderProtocol:
        """Provider for a resource type.

        :raises UnknownResourceTypeError: If the type is not registered
        """
        return self._registration(resource_type).provider

    def schema_for(self, resource_type: str) -> ResourceTypeSchema:
        """Schema for a resource type.

        :raises UnknownResourceTypeError: If the type is not registered
        """
        return self._registration(resource_type).schema

    def validate(self, definitions: Iterable[ResourceDefinition]) -> None:
        """Check that every definition has a registered provider.

        :raises UnknownResourceTypeError: For the first unknown type
        """
        for definition in definitions:
            self._registration(definition.type)


class NullProvider:
    """Provider for ``null_resource``: stores inputs and assigns an id."""

    def apply(self, action: ChangeAction) -> Optional[ResourceState]:
        if action.action == ActionType.DESTROY.value:
            return None
        if action.after is None:
            raise ProviderError(action.identity, f"no definition for {action.action}")
        resource_id = None
        if action.action == ActionType.UPDATE.value and action.before:
            resource_id = action.before.attributes.get("id")
        return state_from_action(
            action,
            {
                "id": resource_id or str(uuid4()),
                "applied_at": datetime.now(timezone.utc).isoformat(),
            },
        )

    def read(self, identity: str, attributes: Dict[str, Any]) -> ResourceState:
        return state_from_attributes(identity, attributes)
