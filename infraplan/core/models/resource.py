# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Resource definition and state models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Set
from pydantic import BaseModel, ConfigDict, Field, field_validator
from infraplan.core.models.references import DATA_PREFIX, referenced_identities


def _utcnow() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class ResourceMode(str, Enum):
    """Whether a resource is managed or only read from a data source."""

    MANAGED = "managed"
    DATA = "data"


def make_identity(resource_type: str, name: str, mode: ResourceMode = ResourceMode.MANAGED) -> str:
    """Build the identity string for a resource.

    :param resource_type: Resource type, e.g. ``azurerm_linux_virtual_machine``
    :param name: Logical name, unique per type
    :param mode: Managed or data-sourced
    :returns: ``type.name`` or ``data.type.name``
    """
    base = f"{resource_type}.{name}"
    return f"{DATA_PREFIX}.{base}" if ResourceMode(mode) == ResourceMode.DATA else base


class ResourceDefinition(BaseModel):
    """A declared resource. Immutable once loaded into a planning cycle."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    type: str = Field(min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_\-]*$")
    name: str = Field(min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_\-]*$")
    mode: ResourceMode = ResourceMode.MANAGED
    attributes: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)

    @field_validator("type")
    @classmethod
    def _type_is_not_data_prefix(cls, value: str) -> str:
        if value == DATA_PREFIX:
            raise ValueError(f"'{DATA_PREFIX}' is reserved and cannot be used as a type")
        return value

    @property
    def identity(self) -> str:
        """Identity of this resource within a graph."""
        return make_identity(self.type, self.name, self.mode)

    @property
    def is_data_source(self) -> bool:
        """True for read-only data-sourced resources."""
        return self.mode == ResourceMode.DATA.value

    def references(self) -> Set[str]:
        """Identities this definition depends on.

        Combines explicit ``depends_on`` entries with every ``${...}``
        expression found in the attributes.

        :returns: Referenced identities
        :rtype: Set[str]
        :raises ValueError: If an expression is malformed
        """
        return set(self.depends_on) | referenced_identities(self.attributes)


class ResourceState(BaseModel):
    """Last-applied state of a resource. Owned by the state store."""

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    identity: str
    type: str
    name: str
    mode: ResourceMode = ResourceMode.MANAGED
    inputs: dict[str, Any] = Field(default_factory=dict)
    attributes: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    serial: int = 0
    updated_at: datetime = Field(default_factory=_utcnow)


class _Tombstone:
    """Marker removing an entry from the state store on commit."""

    def __repr__(self) -> str:
        return "TOMBSTONE"


TOMBSTONE = _Tombstone()


class StateDocument(BaseModel):
    """Versioned state document persisted per state key."""

    model_config = ConfigDict(extra="allow")

    format_version: int = 1
    key: str
    lineage: Optional[str] = None
    serial: int = 0
    resources: dict[str, ResourceState] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None
