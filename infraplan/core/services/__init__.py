# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Engine orchestration and stack loading."""

from infraplan.core.services.engine import Engine, default_registry
from infraplan.core.services.stacks import (
    StackLoader,
    load_definitions_file,
    parse_definitions,
)

__all__ = [
    "Engine",
    "default_registry",
    "StackLoader",
    "load_definitions_file",
    "parse_definitions",
]
