# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Shared fixtures for core module tests."""

import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional
import pytest
from infraplan.core.exceptions import NotFoundError, ProviderError
from infraplan.core.execution.providers import NullProvider, ProviderRegistry
from infraplan.core.models.plan import ChangeAction
from infraplan.core.models.resource import ResourceDefinition, ResourceMode, ResourceState
from infraplan.core.services.engine import Engine
from infraplan.core.storage.plan_store import PlanStore
from infraplan.core.storage.state_store import StateStore

DefinitionFactory = Callable[..., ResourceDefinition]


class RecordingProvider(NullProvider):
    """Null provider that records calls and fails on demand."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.applied: List[ChangeAction] = []
        self.fail_on: set[str] = set()
        self.missing: set[str] = set()
        self.observed: Dict[str, Dict[str, Any]] = {}
        self.delay = 0.0
        self.started = threading.Event()
        self._lock = threading.Lock()

    def apply(self, action: ChangeAction) -> Optional[ResourceState]:
        with self._lock:
            self.calls.append(action.key)
            self.applied.append(action)
        self.started.set()
        if self.delay:
            time.sleep(self.delay)
        if action.identity in self.fail_on:
            raise ProviderError(action.identity, "simulated failure")
        return super().apply(action)

    def read(self, identity: str, attributes: Dict[str, Any]) -> ResourceState:
        with self._lock:
            self.calls.append(f"read:{identity}")
        if identity in self.missing:
            raise NotFoundError(identity)
        if identity in self.fail_on:
            raise ProviderError(identity, "simulated read failure")
        return super().read(identity, {**attributes, **self.observed.get(identity, {})})


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    return temp_dir / "infraplan.db"


@pytest.fixture
def state_store(db_path: Path) -> Generator[StateStore, None, None]:
    store = StateStore(db_path=db_path, lock_ttl=60.0, poll_interval=0.01)
    yield store
    store.close()


@pytest.fixture
def plan_store(db_path: Path) -> Generator[PlanStore, None, None]:
    store = PlanStore(db_path=db_path)
    yield store
    store.close()


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def registry(provider: RecordingProvider) -> ProviderRegistry:
    """Registry with test resource types.

    ``vm`` is replaced when its ``image`` changes; ``appliance`` cannot be
    updated in place at all.
    """
    registry = ProviderRegistry()
    registry.register("network", provider)
    registry.register("subnet", provider)
    registry.register("vm", provider, replace_on_change=("image",))
    registry.register("disk", provider)
    registry.register("appliance", provider, updatable=False)
    registry.register("image", provider)
    return registry


@pytest.fixture
def define() -> DefinitionFactory:
    """Factory for resource definitions."""

    def _define(
        resource_type: str,
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
        depends_on: Iterable[str] = (),
        mode: ResourceMode = ResourceMode.MANAGED,
    ) -> ResourceDefinition:
        return ResourceDefinition(
            type=resource_type,
            name=name,
            mode=mode,
            attributes=attributes or {},
            depends_on=list(depends_on),
        )

    return _define


@pytest.fixture
def net_and_vm(define: DefinitionFactory) -> List[ResourceDefinition]:
    """A network and a VM that references it."""
    return [
        define("network", "net", {"cidr": "10.0.0.0/16"}),
        define("vm", "vm", {"image": "sles-15", "network_id": "${network.net}"}),
    ]


@pytest.fixture
def engine(
    state_store: StateStore,
    plan_store: PlanStore,
    registry: ProviderRegistry,
) -> Engine:
    return Engine(
        state_store=state_store,
        plan_store=plan_store,
        registry=registry,
        lock_timeout=1.0,
        max_workers=4,
    )
