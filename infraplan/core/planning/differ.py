# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Differ: compares declared definitions with stored state.

Rules, in precedence:

1. declared, not in state                -> create
2. changed, safe to update in place      -> update
3. changed under a replace-on-change key -> destroy, then create
4. unchanged                             -> no-op
5. in state, no longer declared          -> destroy

Data sources always get a read, every cycle.
"""

from typing import Any, Dict, List, Mapping, Set
from infraplan.core.execution.providers import ProviderRegistry
from infraplan.core.models.plan import ActionType, ChangeAction, ChangeSet
from infraplan.core.models.references import (
    UNKNOWN,
    contains_unknown,
    lookup_path,
    resolve_value,
)
from infraplan.core.models.resource import ResourceDefinition, ResourceState
from infraplan.core.planning.graph import DependencyGraph

_MISSING = object()


def _changed_attributes(desired: Dict[str, Any], applied: Dict[str, Any]) -> List[str]:
    """Names of attributes whose desired value differs from the applied one."""
    changed = []
    for name in sorted(set(desired) | set(applied)):
        want = desired.get(name, _MISSING)
        have = applied.get(name, _MISSING)
        if contains_unknown(want) or want != have:
            changed.append(name)
    return changed


def _action(
    action: ActionType,
    identity: str,
    definition: ResourceDefinition | None,
    state: ResourceState | None,
    dependencies: List[str],
    changed: List[str] | None = None,
    replace: bool = False,
) -> ChangeAction:
    source = definition or state
    assert source is not None
    return ChangeAction(
        action=action,
        identity=identity,
        resource_type=source.type,
        name=source.name,
        mode=source.mode,
        before=state,
        after=definition,
        dependencies=dependencies,
        changed_attributes=changed or [],
        replace=replace,
    )


def diff(
    graph: DependencyGraph,
    current: Mapping[str, ResourceState],
    registry: ProviderRegistry,
) -> ChangeSet:
    """Compute the change for every declared and every stored resource.

    Declared attributes are resolved against stored state before comparison.
    A reference to a resource with a pending create, update or replacement
    is unknown until apply and always counts as a difference.

    :param graph: Dependency graph of the declared definitions
    :type graph: DependencyGraph
    :param current: Stored state, identity to ResourceState (may be empty)
    :type current: Mapping[str, ResourceState]
    :param registry: Provider registry supplying per-type change semantics
    :type registry: ProviderRegistry
    :returns: One entry per identity
    :rtype: ChangeSet
    :raises UnknownResourceTypeError: If a changed resource has no provider
    """
    changes = ChangeSet()
    unknown: Set[str] = set()

    def lookup(identity: str, path: List[str]) -> Any:
        state = current.get(identity)
        if identity in unknown or state is None:
            return UNKNOWN
        if not path:
            return state.attributes.get("id", identity)
        try:
            return lookup_path(state.attributes, path)
        except KeyError:
            return UNKNOWN

    for identity in graph.topological_order():
        definition = graph.definition(identity)
        state = current.get(identity)
        dependencies = graph.dependencies(identity)

        if definition.is_data_source:
            if state is None or any(dep in unknown for dep in dependencies):
                unknown.add(identity)
            changes.add(_action(ActionType.READ, identity, definition, state, dependencies))
            continue

        if state is None:
            unknown.add(identity)
            changes.add(_action(ActionType.CREATE, identity, definition, None, dependencies))
            continue

        desired = resolve_value(definition.attributes, lookup)
        changed = _changed_attributes(desired, state.inputs)
        if not changed:
            changes.add(_action(ActionType.NOOP, identity, definition, state, dependencies))
            continue

        unknown.add(identity)
        schema = registry.schema_for(definition.type)
        if schema.requires_replacement(changed):
            changes.add(
                _action(
                    ActionType.DESTROY,
                    identity,
                    None,
                    state,
                    list(state.dependencies),
                    changed,
                    replace=True,
                ),
                _action(
                    ActionType.CREATE,
                    identity,
                    definition,
                    state,
                    dependencies,
                    changed,
                    replace=True,
                ),
            )
        else:
            changes.add(
                _action(ActionType.UPDATE, identity, definition, state, dependencies, changed)
            )

    for identity in sorted(current):
        if identity not in graph:
            state = current[identity]
            changes.add(
                _action(ActionType.DESTROY, identity, None, state, list(state.dependencies))
            )

    return changes


def diff_destroy(current: Mapping[str, ResourceState]) -> ChangeSet:
    """Target every stored resource for destruction.

    :param current: Stored state
    :type current: Mapping[str, ResourceState]
    :returns: ChangeSet with a destroy for each resource
    :rtype: ChangeSet
    """
    changes = ChangeSet()
    for identity in sorted(current):
        state = current[identity]
        changes.add(_action(ActionType.DESTROY, identity, None, state, list(state.dependencies)))
    return changes
