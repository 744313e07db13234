# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Change action and execution plan models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterator, List, Optional
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field
from infraplan.core.models.resource import ResourceDefinition, ResourceMode, ResourceState


class ActionType(str, Enum):
    """Kind of change planned for a resource."""

    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"
    READ = "read"
    NOOP = "no-op"


_SYMBOLS = {
    ActionType.CREATE.value: "+",
    ActionType.UPDATE.value: "~",
    ActionType.DESTROY.value: "-",
    ActionType.READ.value: "<=",
    ActionType.NOOP.value: " ",
}


class ChangeAction(BaseModel):
    """A single planned change for one resource identity."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    action: ActionType
    identity: str
    resource_type: str
    name: str
    mode: ResourceMode = ResourceMode.MANAGED
    before: Optional[ResourceState] = None
    after: Optional[ResourceDefinition] = None
    dependencies: List[str] = Field(default_factory=list)
    changed_attributes: List[str] = Field(default_factory=list)
    replace: bool = False

    @property
    def key(self) -> str:
        """Unique key of this action within a plan."""
        return f"{self.action}:{self.identity}"

    @property
    def is_noop(self) -> bool:
        """True when nothing will be done for the resource."""
        return self.action == ActionType.NOOP.value

    def describe(self) -> str:
        """One-line human readable description."""
        symbol = "-/+" if self.replace else _SYMBOLS[self.action]
        line = f"{symbol} {self.action} {self.identity}"
        if self.changed_attributes:
            line += f" ({', '.join(self.changed_attributes)})"
        return line


class ChangeSet:
    """Differ output: identity to the ordered actions planned for it.

    Every identity has exactly one entry. A replacement is the ordered pair
    ``[destroy, create]``; every other case is a single action.
    """

    def __init__(self) -> None:
        self._changes: Dict[str, List[ChangeAction]] = {}

    def add(self, *actions: ChangeAction) -> None:
        """Record the actions planned for one identity.

        :param actions: One action, or destroy followed by create
        :raises ValueError: If the identity already has an entry
        """
        identity = actions[0].identity
        if identity in self._changes:
            raise ValueError(f"Resource {identity} already has a planned change")
        self._changes[identity] = list(actions)

    def __contains__(self, identity: object) -> bool:
        return identity in self._changes

    def __len__(self) -> int:
        return len(self._changes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._changes)

    def for_identity(self, identity: str) -> List[ChangeAction]:
        """Actions planned for an identity (empty list if none)."""
        return list(self._changes.get(identity, []))

    def actions(self) -> List[ChangeAction]:
        """All actions, including no-ops."""
        return [a for actions in self._changes.values() for a in actions]

    def pending(self) -> List[ChangeAction]:
        """Actions that will do something."""
        return [a for a in self.actions() if not a.is_noop]

    def is_pending(self, identity: str) -> bool:
        """True if the identity has any non no-op action."""
        return any(not a.is_noop for a in self._changes.get(identity, []))

    @property
    def is_empty(self) -> bool:
        """True when every action is a no-op."""
        return not self.pending()

    def summary(self) -> Dict[str, int]:
        """Count actions by type."""
        counts = {a.value: 0 for a in ActionType}
        for action in self.actions():
            counts[action.action] += 1
        return counts


class ExecutionPlan(BaseModel):
    """Ordered waves of mutually independent actions. Never mutated."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    key: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    state_serial: int = 0
    state_lineage: Optional[str] = None
    destroy: bool = False
    waves: List[List[ChangeAction]] = Field(default_factory=list)
    prerequisites: Dict[str, List[str]] = Field(default_factory=dict)

    def actions(self) -> List[ChangeAction]:
        """All actions in execution order."""
        return [action for wave in self.waves for action in wave]

    @property
    def is_empty(self) -> bool:
        """True when the plan contains no actions."""
        return not any(self.waves)

    def summary(self) -> Dict[str, int]:
        """Count actions by type."""
        counts = {a.value: 0 for a in ActionType if a != ActionType.NOOP}
        for action in self.actions():
            counts[action.action] += 1
        return counts

    def render(self) -> str:
        """Render the plan as text, one wave per block."""
        if self.is_empty:
            return f"No changes. Stack {self.key} matches the configuration."
        lines = []
        for index, wave in enumerate(self.waves, start=1):
            lines.append(f"Wave {index}:")
            lines.extend(f"  {action.describe()}" for action in wave)
        summary = self.summary()
        lines.append(
            f"Plan: {summary['create']} to create, {summary['update']} to update, "
            f"{summary['destroy']} to destroy, {summary['read']} to read."
        )
        return "\n".join(lines)
