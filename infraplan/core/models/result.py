# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Apply and refresh result models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from infraplan.core.models.plan import ActionType


def _utcnow() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class ActionOutcome(str, Enum):
    """Outcome of a single planned action."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class ApplyStatus(str, Enum):
    """Aggregate outcome of an apply."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    CANCELLED = "cancelled"


class ActionResult(BaseModel):
    """Per-resource entry in the apply result log."""

    model_config = ConfigDict(use_enum_values=True)

    key: str
    identity: str
    action: ActionType
    outcome: ActionOutcome
    error: Optional[str] = None
    caused_by: Optional[str] = None
    duration_ms: Optional[float] = None

    def describe(self) -> str:
        """One-line human readable description."""
        if self.outcome == ActionOutcome.SKIPPED.value:
            return f"{self.identity}: Skipped(causedBy: {self.caused_by})"
        if self.outcome == ActionOutcome.FAILED.value:
            return f"{self.identity}: ProviderError({self.error})"
        return f"{self.identity}: {self.action} {self.outcome}"


class ApplyResult(BaseModel):
    """Outcome of executing a plan, with the full per-resource log."""

    model_config = ConfigDict(use_enum_values=True)

    plan_id: str
    key: str
    status: ApplyStatus = ApplyStatus.SUCCESS
    results: List[ActionResult] = Field(default_factory=list)
    serial: int = 0
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def _with_outcome(self, outcome: ActionOutcome) -> List[ActionResult]:
        return [r for r in self.results if r.outcome == outcome.value]

    @property
    def succeeded(self) -> List[ActionResult]:
        """Actions that completed and were committed."""
        return self._with_outcome(ActionOutcome.SUCCEEDED)

    @property
    def failed(self) -> List[ActionResult]:
        """Actions whose provider call failed."""
        return self._with_outcome(ActionOutcome.FAILED)

    @property
    def skipped(self) -> List[ActionResult]:
        """Actions never attempted because a dependency failed."""
        return self._with_outcome(ActionOutcome.SKIPPED)

    @property
    def cancelled(self) -> List[ActionResult]:
        """Actions never dispatched because the apply was stopped."""
        return self._with_outcome(ActionOutcome.CANCELLED)

    @property
    def exit_code(self) -> int:
        """Process-style completion status: 0 only if everything succeeded."""
        return 0 if self.status == ApplyStatus.SUCCESS.value else 1

    def result_for(self, identity: str) -> List[ActionResult]:
        """All result entries for an identity."""
        return [r for r in self.results if r.identity == identity]

    def summary(self) -> Dict[str, int]:
        """Count results by outcome."""
        counts = {o.value: 0 for o in ActionOutcome}
        for result in self.results:
            counts[result.outcome] += 1
        return counts

    def raise_for_status(self) -> None:
        """Raise PartialFailureError unless every action succeeded.

        :raises PartialFailureError: If any action failed, was skipped or cancelled
        """
        from infraplan.core.exceptions import PartialFailureError

        if self.status != ApplyStatus.SUCCESS.value:
            raise PartialFailureError(self)


class ResourceDrift(BaseModel):
    """Difference between stored state and the observed resource."""

    identity: str
    missing: bool = False
    changed_attributes: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class DriftReport(BaseModel):
    """Outcome of a refresh."""

    key: str
    serial: int = 0
    checked: int = 0
    drifted: List[ResourceDrift] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)

    @property
    def has_drift(self) -> bool:
        """True if any resource differs from stored state."""
        return bool(self.drifted)
