# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Tests for Health API routes."""

from typing import Generator
import pytest
from fastapi.testclient import TestClient
from infraplan import __version__
from infraplan.api.routes import health
from infraplan.api.routes.health import set_service_status
from infraplan.core.services.engine import Engine


@pytest.fixture(autouse=True)
def reset_service_status() -> Generator[None, None, None]:
    """Start each test with no recorded service states."""
    health._service_status.clear()
    yield
    health._service_status.clear()


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check(self, client: TestClient) -> None:
        """
        Returns healthy status with version and service states.
        """
        set_service_status("engine", True)
        response = client.get("/healthz")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert data["version"] == __version__
        assert data["services"] == {"engine": True, "state_store": True}
        assert data["running_applies"] == []

    def test_degraded_when_service_down(self, client: TestClient) -> None:
        """
        A stopped service marks the API degraded.
        """
        set_service_status("engine", False)
        data = client.get("/healthz").json()
        assert data["status"] == "degraded"

    def test_degraded_when_state_store_unreachable(
        self, client: TestClient, engine: Engine, mocker
    ) -> None:
        """
        An unreachable state database marks the API degraded.
        """
        mocker.patch.object(engine.state_store, "ping", return_value=False)
        data = client.get("/healthz").json()
        assert data["status"] == "degraded"
        assert data["services"]["state_store"] is False

    def test_reports_running_applies(self, client: TestClient, engine: Engine, mocker) -> None:
        """
        Stacks with an apply in progress are listed.
        """
        mocker.patch.object(engine, "running", return_value=["dev"])
        assert client.get("/healthz").json()["running_applies"] == ["dev"]

    def test_root_endpoint(self, client: TestClient) -> None:
        """
        Root endpoint returns service info.
        """
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "infraplan API"
        assert "version" in data
