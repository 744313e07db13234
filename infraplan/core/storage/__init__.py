# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Storage layer for state and plans."""

from infraplan.core.storage.state_store import StateStore
from infraplan.core.storage.plan_store import PlanStore

__all__ = ["StateStore", "PlanStore"]
