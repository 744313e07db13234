# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Planner: orders pending change actions into execution waves.

Ordering rules between non no-op actions:

- create/update/read of A runs after the nearest create/update/read among
  A's dependencies, walking through dependencies that have none;
- the create half of a replacement runs after its destroy half;
- destroy of A runs after the destroy of every resource that depended on A
  when it was applied (tear-down is the reverse of stand-up).
"""

from typing import Dict, List, Optional, Set
from infraplan.core.exceptions import CyclicDependencyError
from infraplan.core.models.plan import ActionType, ChangeAction, ChangeSet, ExecutionPlan
from infraplan.core.planning.graph import DependencyGraph, find_cycle
from infraplan.core.observability import get_logger

logger = get_logger(__name__)

_STAND_UP = (ActionType.CREATE.value, ActionType.UPDATE.value, ActionType.READ.value)
_ORDER = {
    ActionType.DESTROY.value: 0,
    ActionType.READ.value: 1,
    ActionType.CREATE.value: 2,
    ActionType.UPDATE.value: 3,
}


def _sort_key(action: ChangeAction) -> tuple:
    return (_ORDER[action.action], action.identity)


def _nearest_stand_up(
    action: ChangeAction,
    graph: DependencyGraph,
    by_identity: Dict[str, Dict[str, ChangeAction]],
) -> List[ChangeAction]:
    """Closest stand-up actions among the direct and transitive dependencies.

    Dependencies without a stand-up action are walked through, so an
    unchanged resource between two changed ones still orders them.
    """
    if action.identity in graph:
        pending = list(graph.dependencies(action.identity))
    else:
        pending = list(action.dependencies)
    seen: Set[str] = set()
    found: List[ChangeAction] = []
    while pending:
        dependency = pending.pop()
        if dependency in seen:
            continue
        seen.add(dependency)
        stand_up = [
            other for kind, other in by_identity.get(dependency, {}).items() if kind in _STAND_UP
        ]
        if stand_up:
            found.extend(stand_up)
        elif dependency in graph:
            pending.extend(graph.dependencies(dependency))
    return found


def _prerequisites(actions: List[ChangeAction], graph: DependencyGraph) -> Dict[str, Set[str]]:
    """Map each action key to the keys of actions that must complete first."""
    by_identity: Dict[str, Dict[str, ChangeAction]] = {}
    for action in actions:
        by_identity.setdefault(action.identity, {})[action.action] = action

    destroyed_by_dependency: Dict[str, Set[str]] = {}
    for action in actions:
        if action.action == ActionType.DESTROY.value:
            for dependency in action.dependencies:
                destroyed_by_dependency.setdefault(dependency, set()).add(action.identity)

    prerequisites: Dict[str, Set[str]] = {action.key: set() for action in actions}
    for action in actions:
        required = prerequisites[action.key]
        if action.action in _STAND_UP:
            for other in _nearest_stand_up(action, graph, by_identity):
                required.add(other.key)
            own_destroy = by_identity[action.identity].get(ActionType.DESTROY.value)
            if own_destroy is not None:
                required.add(own_destroy.key)
        elif action.action == ActionType.DESTROY.value:
            for dependent in destroyed_by_dependency.get(action.identity, ()):
                required.add(by_identity[dependent][ActionType.DESTROY.value].key)
    return prerequisites


def _raise_cycle(remaining: Dict[str, Set[str]], by_key: Dict[str, ChangeAction]) -> None:
    cycle: Optional[List[str]] = find_cycle(remaining, lambda k: remaining[k] & set(remaining))
    if cycle is None:
        cycle = sorted(remaining)
    raise CyclicDependencyError([by_key[k].identity for k in cycle])


def build_plan(
    graph: DependencyGraph,
    changes: ChangeSet,
    key: str,
    state_serial: int = 0,
    state_lineage: Optional[str] = None,
    destroy: bool = False,
) -> ExecutionPlan:
    """Layer pending actions into waves with Kahn's algorithm.

    Members of a wave never depend on each other. Waves are sorted with
    destroys first, then by identity.

    :param graph: Dependency graph of declared definitions
    :param changes: Differ output
    :param key: State key the plan targets
    :param state_serial: State serial the diff was computed against
    :param state_lineage: State lineage the diff was computed against
    :param destroy: Whether this is a destroy-everything plan
    :returns: Immutable execution plan
    :raises CyclicDependencyError: If pending actions form a cycle
    """
    actions = changes.pending()
    by_key = {action.key: action for action in actions}
    prerequisites = _prerequisites(actions, graph)

    remaining = {k: set(v) for k, v in prerequisites.items()}
    waves: List[List[ChangeAction]] = []
    while remaining:
        ready = [k for k, required in remaining.items() if not required]
        if not ready:
            _raise_cycle(remaining, by_key)
        for k in ready:
            del remaining[k]
        for required in remaining.values():
            required.difference_update(ready)
        waves.append(sorted((by_key[k] for k in ready), key=_sort_key))

    plan = ExecutionPlan(
        key=key,
        state_serial=state_serial,
        state_lineage=state_lineage,
        destroy=destroy,
        waves=waves,
        prerequisites={k: sorted(v) for k, v in prerequisites.items()},
    )
    logger.info(
        f"Planned {len(actions)} action(s) in {len(waves)} wave(s) for {key}: " f"{plan.summary()}"
    )
    return plan
