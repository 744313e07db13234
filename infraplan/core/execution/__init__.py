# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Providers and the plan executor."""

from infraplan.core.execution.providers import (
    NullProvider,
    ProviderProtocol,
    ProviderRegistry,
    ResourceTypeSchema,
    state_from_action,
    state_from_attributes,
)
from infraplan.core.execution.playbook import (
    PLAYBOOK_REPLACE_ON_CHANGE,
    PLAYBOOK_RESOURCE_TYPE,
    PlaybookProvider,
)
from infraplan.core.execution.executor import PlanExecutor

__all__ = [
    "NullProvider",
    "ProviderProtocol",
    "ProviderRegistry",
    "ResourceTypeSchema",
    "state_from_action",
    "state_from_attributes",
    "PLAYBOOK_REPLACE_ON_CHANGE",
    "PLAYBOOK_RESOURCE_TYPE",
    "PlaybookProvider",
    "PlanExecutor",
]
