# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Resource graph builder.

Turns a set of resource definitions into a dependency graph whose edges
point from a referencing resource to the resource it references.
"""

from collections import deque
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set
from infraplan.core.exceptions import (
    DuplicateIdentityError,
    MalformedDefinitionError,
    UnresolvedReferenceError,
)
from infraplan.core.models.resource import ResourceDefinition


def find_cycle(
    nodes: Iterable[str],
    successors: Callable[[str], Iterable[str]],
) -> Optional[List[str]]:
    """Find one cycle in a directed graph.

    :param nodes: Nodes to search from
    :param successors: Callable returning the outgoing neighbours of a node
    :returns: Cycle as a closed path ``[a, b, ..., a]`` or None if acyclic
    """
    white, grey, black = 0, 1, 2
    color: Dict[str, int] = {}
    for root in sorted(nodes):
        if color.get(root, white) != white:
            continue
        path: List[str] = [root]
        stack = [iter(sorted(successors(root)))]
        color[root] = grey
        while stack:
            advanced = False
            for nxt in stack[-1]:
                state = color.get(nxt, white)
                if state == grey:
                    return path[path.index(nxt) :] + [nxt]
                if state == white:
                    color[nxt] = grey
                    path.append(nxt)
                    stack.append(iter(sorted(successors(nxt))))
                    advanced = True
                    break
            if not advanced:
                color[path.pop()] = black
                stack.pop()
    return None


class DependencyGraph:
    """Directed graph of resource identities.

    ``dependencies(a)`` are the resources ``a`` references and which must
    exist before it; ``dependents(a)`` is the reverse relation.
    """

    def __init__(
        self,
        definitions: Mapping[str, ResourceDefinition],
        edges: Mapping[str, Set[str]],
    ) -> None:
        self._definitions = dict(definitions)
        self._edges: Dict[str, Set[str]] = {node: set(edges.get(node, ())) for node in definitions}
        self._reverse: Dict[str, Set[str]] = {node: set() for node in definitions}
        for node, targets in self._edges.items():
            for target in targets:
                self._reverse[target].add(node)

    @property
    def nodes(self) -> List[str]:
        """All identities, sorted."""
        return sorted(self._definitions)

    @property
    def definitions(self) -> Dict[str, ResourceDefinition]:
        """Identity to definition mapping."""
        return dict(self._definitions)

    def __contains__(self, identity: object) -> bool:
        return identity in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def definition(self, identity: str) -> ResourceDefinition:
        """Definition for an identity."""
        return self._definitions[identity]

    def dependencies(self, identity: str) -> List[str]:
        """Identities that ``identity`` depends on, sorted."""
        return sorted(self._edges.get(identity, ()))

    def dependents(self, identity: str) -> List[str]:
        """Identities that depend on ``identity``, sorted."""
        return sorted(self._reverse.get(identity, ()))

    def edge_count(self) -> int:
        """Number of depends-on edges."""
        return sum(len(targets) for targets in self._edges.values())

    def topological_order(self) -> List[str]:
        """Dependencies-first order of all nodes.

        Nodes caught in a cycle are appended at the end in sorted order;
        cycle errors are reported by the planner, which only considers
        nodes with pending changes.
        """
        remaining = {node: len(targets) for node, targets in self._edges.items()}
        ready = deque(sorted(node for node, count in remaining.items() if count == 0))
        order: List[str] = []
        while ready:
            node = ready.popleft()
            order.append(node)
            for dependent in sorted(self._reverse[node]):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
        seen = set(order)
        order.extend(sorted(node for node in self._edges if node not in seen))
        return order

    def find_cycle(self, nodes: Optional[Iterable[str]] = None) -> Optional[List[str]]:
        """Find a cycle restricted to ``nodes`` (all nodes by default)."""
        scope = set(self._definitions if nodes is None else nodes)
        return find_cycle(scope, lambda n: (d for d in self._edges.get(n, ()) if d in scope))


def build_graph(definitions: Iterable[ResourceDefinition]) -> DependencyGraph:
    """Build the dependency graph for a set of definitions.

    Input order does not affect the result.

    :param definitions: Declared resources
    :type definitions: Iterable[ResourceDefinition]
    :returns: Dependency graph
    :rtype: DependencyGraph
    :raises DuplicateIdentityError: If two definitions share an identity
    :raises UnresolvedReferenceError: If a reference names an undeclared identity
    :raises MalformedDefinitionError: If a reference expression is malformed
    """
    by_identity: Dict[str, ResourceDefinition] = {}
    for definition in definitions:
        if definition.identity in by_identity:
            raise DuplicateIdentityError(definition.identity)
        by_identity[definition.identity] = definition

    edges: Dict[str, Set[str]] = {}
    for identity in sorted(by_identity):
        try:
            references = by_identity[identity].references()
        except ValueError as e:
            raise MalformedDefinitionError(identity, str(e)) from e
        for reference in sorted(references):
            if reference not in by_identity:
                raise UnresolvedReferenceError(identity, reference)
        edges[identity] = references

    return DependencyGraph(by_identity, edges)
