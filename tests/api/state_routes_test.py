# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Tests for state, refresh and lock API routes."""

from fastapi.testclient import TestClient
from infraplan.core.exceptions import NotFoundError
from infraplan.core.services.engine import Engine


class TestShowState:
    """Tests for reading committed state."""

    def test_empty_state(self, client: TestClient) -> None:
        """
        A stack that was never applied has an empty document at serial 0.
        """
        response = client.get("/api/v1/stacks/dev/state")
        assert response.status_code == 200
        data = response.json()
        assert data["key"] == "dev"
        assert data["serial"] == 0
        assert data["resources"] == {}

    def test_state_after_apply(self, client: TestClient) -> None:
        """
        Every applied resource is stored with its dependencies.
        """
        client.post("/api/v1/stacks/dev/apply")
        data = client.get("/api/v1/stacks/dev/state").json()
        assert data["serial"] == 3
        assert data["lineage"]
        assert sorted(data["resources"]["null_resource.vm"]["dependencies"]) == [
            "data.null_data_source.image",
            "null_resource.vnet",
        ]

    def test_state_readable_while_locked(self, client: TestClient, engine: Engine) -> None:
        """
        Reading state does not wait for the lock.
        """
        lock = engine.state_store.acquire_lock("dev", holder="other-runner")
        try:
            response = client.get("/api/v1/stacks/dev/state")
        finally:
            engine.state_store.release(lock)
        assert response.status_code == 200


class TestRefreshState:
    """Tests for refresh."""

    def test_refresh_without_drift(self, client: TestClient) -> None:
        """
        Refreshing freshly applied resources reports no drift.
        """
        client.post("/api/v1/stacks/dev/apply")
        response = client.post("/api/v1/stacks/dev/refresh")
        assert response.status_code == 200
        data = response.json()
        assert data["key"] == "dev"
        assert data["checked"] == 3
        assert data["drifted"] == []
        assert data["errors"] == {}

    def test_refresh_missing_resource(
        self, client: TestClient, engine: Engine, mocker
    ) -> None:
        """
        A resource the provider can no longer find is reported and dropped.
        """
        client.post("/api/v1/stacks/dev/apply")
        null = engine.registry.provider_for("null_resource")
        original = null.read

        def vanish(identity, attributes):
            if identity == "null_resource.vm":
                raise NotFoundError(identity)
            return original(identity, attributes)

        mocker.patch.object(null, "read", side_effect=vanish)
        data = client.post("/api/v1/stacks/dev/refresh").json()
        assert [d["identity"] for d in data["drifted"]] == ["null_resource.vm"]
        assert data["drifted"][0]["missing"] is True
        state = client.get("/api/v1/stacks/dev/state").json()
        assert "null_resource.vm" not in state["resources"]


class TestLockRoutes:
    """Tests for lock inspection and recovery."""

    def test_lock_not_held(self, client: TestClient) -> None:
        """
        An unlocked stack returns 404.
        """
        response = client.get("/api/v1/stacks/dev/lock")
        assert response.status_code == 404

    def test_lock_info(self, client: TestClient, engine: Engine) -> None:
        """
        The current holder and operation are reported.
        """
        lock = engine.state_store.acquire_lock("dev", holder="other-runner", operation="apply")
        try:
            response = client.get("/api/v1/stacks/dev/lock")
        finally:
            engine.state_store.release(lock)
        assert response.status_code == 200
        data = response.json()
        assert data["holder"] == "other-runner"
        assert data["operation"] == "apply"
        assert data["lock_id"] == lock.lock_id

    def test_force_unlock(self, client: TestClient, engine: Engine) -> None:
        """
        A crashed holder's lock is removed and the stack can be planned again.
        """
        engine.state_store.acquire_lock("dev", holder="crashed")
        response = client.delete("/api/v1/stacks/dev/lock")
        assert response.status_code == 200
        assert response.json() == {"status": "unlocked", "key": "dev"}
        assert client.get("/api/v1/stacks/dev/lock").status_code == 404
        assert client.post("/api/v1/stacks/dev/plans").status_code == 201

    def test_force_unlock_not_locked(self, client: TestClient) -> None:
        """
        Unlocking a stack that is not locked returns 404.
        """
        response = client.delete("/api/v1/stacks/dev/lock")
        assert response.status_code == 404
