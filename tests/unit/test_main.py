# tests/unit/test_main.py
import pytest
from fastapi.testclient import TestClient

import main

@pytest.fixture
def client(monkeypatch):
    """Full application on the in-memory store with canned inference"""
    monkeypatch.setenv("DOCUMENT_STORE", "memory")
    monkeypatch.setenv("ENABLE_SCHEDULER", "false")
    monkeypatch.setenv("JSON_LOGS", "false")
    monkeypatch.delenv("INFERENCE_BASE_URL", raising=False)
    with TestClient(main.app) as client:
        yield client

class TestApplication:
    """Startup wiring, health and the end-to-end diagnosis path"""

    def test_root(self, client):
        body = client.get("/").json()

        assert body["service"] == "Crop Advisory Coordinator"
        assert "diagnostic" in body["agents"]

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["open_circuits"] == []
        assert body["pending_retries"] == 0

    def test_urgent_diagnosis_end_to_end(self, client):
        response = client.post("/coordinator/tasks", json={
            "agentType": "diagnostic",
            "priority": "urgent",
            "userId": "farmer-1",
            "payload": {"photoDataUri": "data:image/jpeg;base64,AAAA", "symptoms": "orange pustules"},
        })
        task_id = response.json()["taskId"]

        task = client.get("/coordinator/tasks", params={"taskId": task_id}).json()["task"]

        assert task["status"] == "completed"
        assert task["result"]["disease"] == "Leaf Rust"
        assert task["startedAt"] is not None
        assert task["completedAt"] is not None

        health = client.get("/health").json()
        assert health["circuit_breakers"]["diagnostic"]["state"] == "closed"

    def test_settings_from_environment(self, client):
        settings = main.app.state.settings

        assert settings.document_store == "memory"
        assert settings.enable_scheduler is False
        assert settings.default_max_retries == 3
