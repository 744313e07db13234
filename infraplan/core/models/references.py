# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Cross-resource reference expressions.

Attribute values may embed ``${<identity>[.<attribute path>]}`` where the
identity is ``type.name`` for managed resources and ``data.type.name`` for
data sources. A value that is exactly one expression resolves to the raw
referenced value; expressions inside a longer string are interpolated.
"""

import re
from typing import Any, Callable, Iterator, List, Set, Tuple

REFERENCE_PATTERN = re.compile(r"\$\{\s*([^}\s]+)\s*\}")
DATA_PREFIX = "data"

Lookup = Callable[[str, List[str]], Any]


class _Unknown:
    """Placeholder for a value that is only known after apply."""

    _instance = None

    def __new__(cls) -> "_Unknown":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __eq__(self, other: object) -> bool:
        return False

    def __hash__(self) -> int:
        return id(self)


UNKNOWN = _Unknown()


def split_reference(expression: str) -> Tuple[str, List[str]]:
    """Split a reference expression into identity and attribute path.

    :param expression: Expression body without ``${`` and ``}``
    :type expression: str
    :returns: Tuple of identity and attribute path segments
    :rtype: Tuple[str, List[str]]
    :raises ValueError: If the expression does not name a resource
    """
    segments = [s for s in expression.split(".")]
    if any(not s for s in segments):
        raise ValueError(f"invalid reference '${{{expression}}}'")
    width = 3 if segments[0] == DATA_PREFIX else 2
    if len(segments) < width:
        raise ValueError(f"reference '${{{expression}}}' does not name a resource")
    return ".".join(segments[:width]), segments[width:]


def iter_expressions(value: Any) -> Iterator[str]:
    """Yield every reference expression found in a nested value.

    :param value: Literal, string, list or mapping
    :type value: Any
    :yields: Expression bodies
    """
    if isinstance(value, str):
        for match in REFERENCE_PATTERN.finditer(value):
            yield match.group(1)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_expressions(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_expressions(item)


def referenced_identities(value: Any) -> Set[str]:
    """Collect the identities referenced anywhere inside a value.

    :param value: Attribute value
    :type value: Any
    :returns: Set of identities
    :rtype: Set[str]
    :raises ValueError: If an expression is malformed
    """
    return {split_reference(expression)[0] for expression in iter_expressions(value)}


def lookup_path(attributes: Any, path: List[str]) -> Any:
    """Walk an attribute path through nested mappings and lists.

    :param attributes: Root value
    :param path: Path segments; numeric segments index lists
    :returns: Value at the path
    :raises KeyError: If any segment is missing
    """
    current = attributes
    for segment in path:
        if isinstance(current, dict):
            if segment not in current:
                raise KeyError(segment)
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                raise KeyError(segment)
            current = current[index]
        else:
            raise KeyError(segment)
    return current


def resolve_value(value: Any, lookup: Lookup) -> Any:
    """Replace every reference in a nested value using ``lookup``.

    ``lookup`` receives the identity and attribute path and returns the
    concrete value or UNKNOWN. Interpolating UNKNOWN into a string makes the
    whole string UNKNOWN.

    :param value: Attribute value
    :param lookup: Callable resolving a single reference
    :returns: Resolved value
    """
    if isinstance(value, str):
        whole = REFERENCE_PATTERN.fullmatch(value.strip())
        if whole:
            identity, path = split_reference(whole.group(1))
            return lookup(identity, path)

        unknown = False

        def _substitute(match: "re.Match[str]") -> str:
            nonlocal unknown
            identity, path = split_reference(match.group(1))
            resolved = lookup(identity, path)
            if resolved is UNKNOWN:
                unknown = True
                return ""
            return str(resolved)

        result = REFERENCE_PATTERN.sub(_substitute, value)
        return UNKNOWN if unknown else result
    if isinstance(value, dict):
        return {k: resolve_value(v, lookup) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(v, lookup) for v in value]
    return value


def contains_unknown(value: Any) -> bool:
    """Check whether a resolved value still holds an UNKNOWN placeholder."""
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(v) for v in value)
    return False
