# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Fixtures for API tests."""

import tempfile
from pathlib import Path
from typing import Generator
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from infraplan.api.routes import (
    health_router,
    plans_router,
    set_engine,
    set_stack_loader,
    stacks_router,
    state_router,
)
from infraplan.core.services.engine import Engine, default_registry
from infraplan.core.services.stacks import DEFINITIONS_FILE, StackLoader
from infraplan.core.storage.plan_store import PlanStore
from infraplan.core.storage.state_store import StateStore

DEV_STACK = """
data:
  - type: null_data_source
    name: image
    attributes:
      offer: sles-sap-15-sp5
resources:
  - type: null_resource
    name: vnet
    attributes:
      address_space: ["10.10.0.0/16"]
  - type: null_resource
    name: vm
    attributes:
      image: "${data.null_data_source.image.offer}"
      network_id: "${null_resource.vnet}"
"""


def create_test_app() -> FastAPI:
    """Create a minimal FastAPI app for testing."""
    app = FastAPI(title="Test API")
    app.include_router(health_router)
    app.include_router(stacks_router, prefix="/api/v1")
    app.include_router(state_router, prefix="/api/v1")
    app.include_router(plans_router, prefix="/api/v1")
    return app


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def stacks_dir(temp_dir: Path) -> Path:
    """Provide a stacks directory holding the ``dev`` stack."""
    stack_dir = temp_dir / "stacks" / "dev"
    stack_dir.mkdir(parents=True)
    (stack_dir / DEFINITIONS_FILE).write_text(DEV_STACK, encoding="utf-8")
    return temp_dir / "stacks"


@pytest.fixture
def engine(temp_dir: Path) -> Generator[Engine, None, None]:
    """Provide an engine backed by a temporary database."""
    db_path = temp_dir / "infraplan.db"
    state_store = StateStore(db_path=db_path, poll_interval=0.01)
    plan_store = PlanStore(db_path=db_path)
    yield Engine(
        state_store=state_store,
        plan_store=plan_store,
        registry=default_registry(playbook_dir=temp_dir / "playbooks"),
        lock_timeout=0.2,
    )
    plan_store.close()
    state_store.close()


@pytest.fixture
def client(engine: Engine, stacks_dir: Path) -> Generator[TestClient, None, None]:
    """Provide a test client with the engine and stack loader configured."""
    app = create_test_app()
    set_engine(engine)
    set_stack_loader(StackLoader(stacks_dir))
    with TestClient(app) as test_client:
        yield test_client
