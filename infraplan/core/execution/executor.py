# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Wave executor.

Runs an execution plan wave by wave. Actions inside a wave run concurrently
on a bounded thread pool; every successful action is committed to the state
store on its own before any dependent action starts, so a later failure only
affects resources that were never committed.
"""

import contextvars
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from infraplan.core.exceptions import (
    ProviderError,
    ReferenceResolutionError,
    StateError,
)
from infraplan.core.execution.providers import ProviderRegistry
from infraplan.core.models.lock import Lock
from infraplan.core.models.plan import ActionType, ChangeAction, ExecutionPlan
from infraplan.core.models.references import lookup_path, resolve_value
from infraplan.core.models.resource import TOMBSTONE, ResourceMode, ResourceState
from infraplan.core.models.result import (
    ActionOutcome,
    ActionResult,
    ApplyResult,
    ApplyStatus,
)
from infraplan.core.observability import (
    ExecutionScope,
    LogLevel,
    create_execution_event,
    get_logger,
)
from infraplan.core.storage.state_store import StateStore, StateUpdate

logger = get_logger(__name__)


class PlanExecutor:
    """Applies an ExecutionPlan against a locked state key."""

    def __init__(
        self,
        store: StateStore,
        registry: ProviderRegistry,
        max_workers: int = 4,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Initialize the executor.

        :param store: State store the lock was taken on
        :param registry: Provider registry
        :param max_workers: Maximum concurrent actions within a wave
        :param cancel_event: Shared cancellation signal
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.store = store
        self.registry = registry
        self.max_workers = max_workers
        self._cancel_event = cancel_event or threading.Event()
        self._halted = threading.Event()
        self._state_lock = threading.Lock()
        self._committed: Dict[str, ResourceState] = {}

    def cancel(self) -> None:
        """Stop dispatching new actions. In-flight actions finish and commit."""
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested; no further actions will be dispatched")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        """True once cancellation was requested."""
        return self._cancel_event.is_set()

    def _stopped(self) -> bool:
        return self._cancel_event.is_set() or self._halted.is_set()

    def execute(self, plan: ExecutionPlan, lock: Lock) -> ApplyResult:
        """Apply every wave of a plan in order.

        :param plan: Plan to apply
        :param lock: Lock held on ``plan.key``
        :returns: Result with one entry per planned action
        """
        self._halted.clear()
        self._committed = self.store.load(plan.key)
        result = ApplyResult(plan_id=plan.id, key=plan.key, serial=lock.serial)
        blocked: Dict[str, str] = {}
        start_time = time.perf_counter()

        with ExecutionScope(stack_id=plan.key, execution_id=plan.id):
            logger.event(
                create_execution_event(
                    "apply_start",
                    plan_id=plan.id,
                    actions_total=len(plan.actions()),
                )
            )
            with ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="infraplan-apply",
            ) as pool:
                for index, wave in enumerate(plan.waves, start=1):
                    result.results.extend(self._run_wave(plan, lock, pool, index, wave, blocked))

            result.serial = lock.serial
            result.completed_at = datetime.now(timezone.utc)
            result.status = self._status(result)
            self._log_outcome(plan, result, (time.perf_counter() - start_time) * 1000)
        return result

    def _run_wave(
        self,
        plan: ExecutionPlan,
        lock: Lock,
        pool: ThreadPoolExecutor,
        index: int,
        wave: List[ChangeAction],
        blocked: Dict[str, str],
    ) -> List[ActionResult]:
        """Dispatch one wave and wait for all of its actions to settle.

        ``blocked`` maps the key of every failed or skipped action to the
        identity that caused it and is updated in place.
        """
        results: Dict[str, ActionResult] = {}
        futures: Dict[str, Future] = {}

        for action in wave:
            cause = next(
                (blocked[k] for k in plan.prerequisites.get(action.key, []) if k in blocked),
                None,
            )
            if cause is not None:
                results[action.key] = self._skip(action, cause, index)
                blocked[action.key] = cause
            elif self._stopped():
                results[action.key] = self._cancelled(action)
            else:
                ctx = contextvars.copy_context()
                futures[action.key] = pool.submit(
                    ctx.run, self._run_action, plan.key, lock, action, index
                )

        for key, future in futures.items():
            outcome: ActionResult = future.result()
            results[key] = outcome
            if outcome.outcome in (ActionOutcome.FAILED.value, ActionOutcome.SKIPPED.value):
                blocked[key] = outcome.caused_by or outcome.identity

        return [results[action.key] for action in wave]

    def _run_action(
        self,
        key: str,
        lock: Lock,
        action: ChangeAction,
        wave: int,
    ) -> ActionResult:
        """Perform one action and commit its resource.

        Never raises: every failure becomes a result entry.
        """
        if self._stopped():
            return self._cancelled(action)

        start_time = time.perf_counter()
        logger.event(
            create_execution_event(
                "action_start",
                resource=action.identity,
                action=action.action,
                wave=wave,
            )
        )
        try:
            update = self._perform(action)
        except ProviderError as e:
            return self._failed(action, e.message, wave, start_time)
        except Exception as e:
            logger.exception(f"Provider for {action.resource_type} raised unexpectedly")
            wrapped = ProviderError(action.identity, f"{type(e).__name__}: {e}")
            return self._failed(action, wrapped.message, wave, start_time)

        try:
            document = self.store.commit(key, lock, {action.identity: update})
        except StateError as e:
            self._halted.set()
            logger.error(f"Commit of {action.identity} failed, halting apply: {e}")
            return self._failed(action, f"state commit failed: {e}", wave, start_time)

        with self._state_lock:
            if update is TOMBSTONE:
                self._committed.pop(action.identity, None)
            else:
                self._committed[action.identity] = document.resources[action.identity]

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.event(
            create_execution_event(
                "action_end",
                status="success",
                resource=action.identity,
                action=action.action,
                wave=wave,
                serial=document.serial,
                duration_ms=duration_ms,
            )
        )
        return ActionResult(
            key=action.key,
            identity=action.identity,
            action=action.action,
            outcome=ActionOutcome.SUCCEEDED,
            duration_ms=duration_ms,
        )

    def _perform(self, action: ChangeAction) -> StateUpdate:
        """Call the provider for an action.

        :returns: New state to commit, or TOMBSTONE
        :raises ProviderError: If the provider or reference resolution fails
        """
        provider = self.registry.provider_for(action.resource_type)

        if action.action == ActionType.DESTROY.value:
            if action.mode != ResourceMode.DATA.value:
                provider.apply(action)
            return TOMBSTONE

        if action.after is None:
            raise ProviderError(action.identity, f"no definition for {action.action}")
        attributes = self._resolve(action)

        if action.action == ActionType.READ.value:
            observed = provider.read(action.identity, attributes)
            return self._normalise(action, observed, attributes)

        resolved = action.model_copy(
            update={"after": action.after.model_copy(update={"attributes": attributes})}
        )
        state = provider.apply(resolved)
        if state is None:
            raise ProviderError(action.identity, f"provider returned no state for {action.action}")
        return self._normalise(action, state, attributes)

    def _resolve(self, action: ChangeAction) -> Dict[str, Any]:
        """Resolve references in an action's attributes against committed state.

        :raises ReferenceResolutionError: If a referenced value is not committed
        """
        assert action.after is not None

        def lookup(identity: str, path: List[str]) -> Any:
            with self._state_lock:
                state = self._committed.get(identity)
            reference = ".".join([identity, *path])
            if state is None:
                raise ReferenceResolutionError(action.identity, reference)
            if not path:
                return state.attributes.get("id", identity)
            try:
                return lookup_path(state.attributes, path)
            except KeyError:
                raise ReferenceResolutionError(action.identity, reference)

        return resolve_value(action.after.attributes, lookup)

    @staticmethod
    def _normalise(
        action: ChangeAction,
        state: ResourceState,
        attributes: Dict[str, Any],
    ) -> ResourceState:
        """Stamp identity, inputs, dependencies and serial onto a provider state."""
        previous = action.before.serial if action.before else 0
        return state.model_copy(
            update={
                "identity": action.identity,
                "type": action.resource_type,
                "name": action.name,
                "mode": action.mode,
                "inputs": attributes,
                "dependencies": list(action.dependencies),
                "serial": previous + 1,
                "updated_at": datetime.now(timezone.utc),
            }
        )

    def _failed(
        self,
        action: ChangeAction,
        error: str,
        wave: int,
        start_time: float,
    ) -> ActionResult:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.event(
            create_execution_event(
                "action_end",
                level=LogLevel.ERROR,
                status="failed",
                resource=action.identity,
                action=action.action,
                wave=wave,
                error=error,
                duration_ms=duration_ms,
            )
        )
        return ActionResult(
            key=action.key,
            identity=action.identity,
            action=action.action,
            outcome=ActionOutcome.FAILED,
            error=error,
            duration_ms=duration_ms,
        )

    def _skip(self, action: ChangeAction, cause: str, wave: int) -> ActionResult:
        logger.event(
            create_execution_event(
                "action_skip",
                level=LogLevel.WARN,
                status="skipped",
                resource=action.identity,
                action=action.action,
                caused_by=cause,
                wave=wave,
            )
        )
        return ActionResult(
            key=action.key,
            identity=action.identity,
            action=action.action,
            outcome=ActionOutcome.SKIPPED,
            caused_by=cause,
        )

    @staticmethod
    def _cancelled(action: ChangeAction) -> ActionResult:
        return ActionResult(
            key=action.key,
            identity=action.identity,
            action=action.action,
            outcome=ActionOutcome.CANCELLED,
        )

    @staticmethod
    def _status(result: ApplyResult) -> ApplyStatus:
        """Aggregate status: any failure or skip is a partial failure."""
        if result.failed or result.skipped:
            return ApplyStatus.PARTIAL_FAILURE
        if result.cancelled:
            return ApplyStatus.CANCELLED
        return ApplyStatus.SUCCESS

    def _log_outcome(self, plan: ExecutionPlan, result: ApplyResult, duration_ms: float) -> None:
        if result.status == ApplyStatus.SUCCESS.value:
            event, level = "apply_complete", LogLevel.INFO
        elif result.status == ApplyStatus.CANCELLED.value:
            event, level = "apply_cancel", LogLevel.WARN
        else:
            event, level = "apply_fail", LogLevel.ERROR
        logger.event(
            create_execution_event(
                event,
                level=level,
                plan_id=plan.id,
                serial=result.serial,
                actions_total=len(result.results),
                actions_succeeded=len(result.succeeded),
                actions_failed=len(result.failed),
                actions_skipped=len(result.skipped),
                duration_ms=duration_ms,
            )
        )
        for entry in result.results:
            if entry.outcome != ActionOutcome.SUCCEEDED.value:
                logger.info(entry.describe())
