# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Plan and apply orchestration.

The engine threads an explicit state store handle through graph building,
diffing, planning and execution. Every mutating operation runs under the
state key's lock; ``show`` reads without it and may observe a state that is
being applied.
"""

import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
from infraplan.core.exceptions import (
    NotFoundError,
    PlanNotFoundError,
    StalePlanError,
)
from infraplan.core.execution.executor import PlanExecutor
from infraplan.core.execution.playbook import (
    PLAYBOOK_REPLACE_ON_CHANGE,
    PLAYBOOK_RESOURCE_TYPE,
    PlaybookProvider,
)
from infraplan.core.execution.providers import NullProvider, ProviderRegistry
from infraplan.core.models.lock import Lock
from infraplan.core.models.plan import ExecutionPlan
from infraplan.core.models.resource import (
    TOMBSTONE,
    ResourceDefinition,
    ResourceMode,
    ResourceState,
    StateDocument,
)
from infraplan.core.models.result import ApplyResult, DriftReport, ResourceDrift
from infraplan.core.observability import (
    ExecutionScope,
    LogLevel,
    create_execution_event,
    get_logger,
)
from infraplan.core.planning import build_graph, build_plan, diff, diff_destroy
from infraplan.core.storage.plan_store import PlanStore
from infraplan.core.storage.state_store import StateStore, StateUpdate

logger = get_logger(__name__)


def default_registry(
    playbook_dir: Path | str = "playbooks",
    log_dir: Optional[Path | str] = None,
) -> ProviderRegistry:
    """Registry with the built-in resource types.

    - ``null_resource``: stores its inputs; a change to ``triggers`` replaces it
    - ``null_data_source``: echoes its inputs as a read-only data source
    - ``ansible_playbook``: runs a playbook as the configuration step

    :param playbook_dir: Directory containing playbooks
    :param log_dir: Directory for per-resource playbook logs
    :returns: Populated registry
    """
    registry = ProviderRegistry()
    null = NullProvider()
    registry.register("null_resource", null, replace_on_change=("triggers",))
    registry.register("null_data_source", null)
    registry.register(
        PLAYBOOK_RESOURCE_TYPE,
        PlaybookProvider(playbook_dir=playbook_dir, log_dir=log_dir),
        replace_on_change=PLAYBOOK_REPLACE_ON_CHANGE,
    )
    return registry


class Engine:
    """Runs plan, apply, destroy, show and refresh against one state store."""

    def __init__(
        self,
        state_store: StateStore,
        plan_store: PlanStore,
        registry: ProviderRegistry,
        lock_timeout: float = 30.0,
        max_workers: int = 4,
    ) -> None:
        """Initialize the engine.

        :param state_store: State store holding every stack's state
        :param plan_store: Store for plans awaiting apply
        :param registry: Provider registry
        :param lock_timeout: Seconds to wait for a state lock
        :param max_workers: Maximum concurrent actions within a wave
        """
        self.state_store = state_store
        self.plan_store = plan_store
        self.registry = registry
        self.lock_timeout = lock_timeout
        self.max_workers = max_workers
        self._running: Dict[str, PlanExecutor] = {}
        self._running_lock = threading.Lock()

    def plan(
        self,
        key: str,
        definitions: Iterable[ResourceDefinition],
        destroy: bool = False,
    ) -> ExecutionPlan:
        """Compute and store a plan without mutating state.

        :param key: State key
        :param definitions: Declared resources (ignored when ``destroy``)
        :param destroy: Target every stored resource for destruction
        :returns: The stored plan
        :raises DefinitionError: For malformed, duplicate or unresolved definitions
        :raises StateError: If the state is corrupt or the lock cannot be taken
        :raises CyclicDependencyError: If pending changes form a cycle
        """
        with ExecutionScope(stack_id=key, operation="plan"):
            with self.state_store.locked(key, timeout=self.lock_timeout, operation="plan"):
                plan = self._build(key, definitions, destroy)
            self.plan_store.save(plan)
        return plan

    def destroy(self, key: str) -> ExecutionPlan:
        """Plan the destruction of every resource stored under a key."""
        return self.plan(key, [], destroy=True)

    def apply(self, plan_or_id: Union[ExecutionPlan, str]) -> ApplyResult:
        """Apply a previously computed plan, exactly once.

        :param plan_or_id: Plan or stored plan ID
        :returns: Result with the per-resource log
        :raises PlanNotFoundError: If the plan ID is unknown
        :raises PlanConsumedError: If the plan was already applied
        :raises StalePlanError: If the state changed since the plan was made
        :raises LockTimeoutError: If the lock cannot be taken
        """
        if isinstance(plan_or_id, ExecutionPlan):
            plan = plan_or_id
            try:
                self.plan_store.get(plan.id)
            except PlanNotFoundError:
                self.plan_store.save(plan)
        else:
            plan = self.plan_store.get(plan_or_id)

        with ExecutionScope(stack_id=plan.key, execution_id=plan.id, operation="apply"):
            with self.state_store.locked(
                plan.key, timeout=self.lock_timeout, operation="apply"
            ) as lock:
                document = self.state_store.load_document(plan.key)
                if document.serial != plan.state_serial or document.lineage != plan.state_lineage:
                    raise StalePlanError(plan.id, plan.state_serial, document.serial)
                self.plan_store.mark_consumed(plan.id)
                return self._execute(plan, lock)

    def plan_and_apply(
        self,
        key: str,
        definitions: Iterable[ResourceDefinition],
        destroy: bool = False,
    ) -> ApplyResult:
        """Plan and apply under a single lock.

        :param key: State key
        :param definitions: Declared resources
        :param destroy: Destroy every stored resource instead
        :returns: Result with the per-resource log
        """
        with ExecutionScope(stack_id=key, operation="apply"):
            with self.state_store.locked(
                key, timeout=self.lock_timeout, operation="apply"
            ) as lock:
                plan = self._build(key, definitions, destroy)
                self.plan_store.save(plan)
                self.plan_store.mark_consumed(plan.id)
                return self._execute(plan, lock)

    def show(self, key: str) -> StateDocument:
        """Read the committed state without taking the lock.

        The document may reflect an apply that is still in progress.
        """
        return self.state_store.load_document(key)

    def refresh(self, key: str) -> DriftReport:
        """Read every stored resource through its provider and record drift.

        Resources the provider reports missing are removed from state. Other
        provider failures are reported per resource and leave state untouched.

        :param key: State key
        :returns: Drift found, with the resulting state serial
        :raises StateError: If the state is corrupt or the lock cannot be taken
        """
        start_time = time.perf_counter()
        with ExecutionScope(stack_id=key, operation="refresh"):
            with self.state_store.locked(
                key, timeout=self.lock_timeout, operation="refresh"
            ) as lock:
                document = self.state_store.load_document(key)
                report = DriftReport(key=key, serial=document.serial)
                updates: Dict[str, StateUpdate] = {}

                for identity, state in sorted(document.resources.items()):
                    report.checked += 1
                    update = self._refresh_one(identity, state, report)
                    if update is not None:
                        updates[identity] = update

                if updates:
                    document = self.state_store.commit(key, lock, updates)
                report.serial = document.serial

            logger.event(
                create_execution_event(
                    "refresh_complete",
                    level=LogLevel.WARN if report.has_drift else LogLevel.INFO,
                    serial=report.serial,
                    actions_total=report.checked,
                    actions_failed=len(report.errors),
                    duration_ms=(time.perf_counter() - start_time) * 1000,
                )
            )
        return report

    def cancel(self, key: Optional[str] = None) -> List[str]:
        """Stop dispatching actions for running applies.

        :param key: Only cancel the apply for this key
        :returns: Keys whose apply was signalled
        """
        with self._running_lock:
            targets = {k: e for k, e in self._running.items() if key is None or k == key}
        for executor in targets.values():
            executor.cancel()
        return sorted(targets)

    def running(self) -> List[str]:
        """Keys with an apply in progress."""
        with self._running_lock:
            return sorted(self._running)

    def force_unlock(self, key: str) -> bool:
        """Remove a lock left behind by a crashed holder."""
        return self.state_store.force_unlock(key)

    def _build(
        self,
        key: str,
        definitions: Iterable[ResourceDefinition],
        destroy: bool,
    ) -> ExecutionPlan:
        """Graph, diff and plan against the current state (caller holds the lock)."""
        start_time = time.perf_counter()
        logger.event(create_execution_event("plan_start"))
        document = self.state_store.load_document(key)

        if destroy:
            graph = build_graph([])
            changes = diff_destroy(document.resources)
        else:
            definitions = list(definitions)
            self.registry.validate(definitions)
            graph = build_graph(definitions)
            changes = diff(graph, document.resources, self.registry)

        plan = build_plan(
            graph,
            changes,
            key,
            state_serial=document.serial,
            state_lineage=document.lineage,
            destroy=destroy,
        )
        summary = plan.summary()
        logger.event(
            create_execution_event(
                "plan_complete",
                plan_id=plan.id,
                serial=document.serial,
                actions_total=sum(summary.values()),
                wave=len(plan.waves),
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )
        )
        return plan

    def _execute(self, plan: ExecutionPlan, lock: Lock) -> ApplyResult:
        """Run a plan with a fresh executor registered for cancellation."""
        executor = PlanExecutor(self.state_store, self.registry, max_workers=self.max_workers)
        with self._running_lock:
            self._running[plan.key] = executor
        try:
            return executor.execute(plan, lock)
        finally:
            with self._running_lock:
                self._running.pop(plan.key, None)

    def _refresh_one(
        self,
        identity: str,
        state: ResourceState,
        report: DriftReport,
    ) -> Optional[StateUpdate]:
        """Observe one resource; returns the state update, if any."""
        query = state.inputs if state.mode == ResourceMode.DATA.value else state.attributes
        try:
            provider = self.registry.provider_for(state.type)
            observed = provider.read(identity, dict(query))
        except NotFoundError:
            logger.warning(f"{identity} no longer exists; removing it from state")
            report.drifted.append(ResourceDrift(identity=identity, missing=True))
            return TOMBSTONE
        except Exception as e:
            logger.warning(f"Could not refresh {identity}: {e}")
            report.errors[identity] = str(e)
            return None

        changed: Dict[str, Dict[str, Any]] = {}
        for name in sorted(set(state.attributes) | set(observed.attributes)):
            before = state.attributes.get(name)
            after = observed.attributes.get(name)
            if before != after:
                changed[name] = {"before": before, "after": after}
        if not changed:
            return None

        report.drifted.append(ResourceDrift(identity=identity, changed_attributes=changed))
        inputs = {
            name: observed.attributes.get(name, value) for name, value in state.inputs.items()
        }
        return state.model_copy(
            update={
                "inputs": inputs,
                "attributes": dict(observed.attributes),
                "serial": state.serial + 1,
                "updated_at": datetime.now(timezone.utc),
            }
        )
