"""Tests for app factory and role-based routing."""

from fastapi.testclient import TestClient

from cityventure.api.factory import create_app


class TestPublicRole:
    """Tests for APP_ROLE=public."""

    def test_health_available(self):
        client = TestClient(create_app(role="public"))
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_tasks_not_mounted(self):
        client = TestClient(create_app(role="public"))
        assert client.get("/tasks/health").status_code == 404

    def test_refund_tasks_not_mounted(self):
        client = TestClient(create_app(role="public"))
        response = client.post("/tasks/refunds/apply-result", json={})
        assert response.status_code == 404

    def test_correlation_id_echoed(self):
        client = TestClient(create_app(role="public"))
        response = client.get("/health", headers={"X-Correlation-ID": "corr-abc"})
        assert response.headers["X-Correlation-ID"] == "corr-abc"

    def test_correlation_id_generated(self):
        client = TestClient(create_app(role="public"))
        response = client.get("/health")
        assert response.headers["X-Correlation-ID"]


class TestWorkerRole:
    """Tests for APP_ROLE=worker."""

    def test_health_available(self):
        client = TestClient(create_app(role="worker"))
        assert client.get("/health").status_code == 200

    def test_tasks_mounted(self):
        client = TestClient(create_app(role="worker"))
        response = client.get("/tasks/health")
        assert response.status_code == 200
        assert response.json()["subsystem"] == "tasks"


class TestRoleFromEnv:
    def test_app_role_env(self, monkeypatch):
        monkeypatch.setenv("APP_ROLE", "worker")
        client = TestClient(create_app())
        assert client.get("/tasks/health").status_code == 200

    def test_defaults_to_public(self, monkeypatch):
        monkeypatch.delenv("APP_ROLE", raising=False)
        client = TestClient(create_app())
        assert client.get("/tasks/health").status_code == 404
