# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Graph building, diffing and plan ordering."""

from infraplan.core.planning.graph import DependencyGraph, build_graph, find_cycle
from infraplan.core.planning.differ import diff, diff_destroy
from infraplan.core.planning.planner import build_plan

__all__ = [
    "DependencyGraph",
    "build_graph",
    "find_cycle",
    "diff",
    "diff_destroy",
    "build_plan",
]
