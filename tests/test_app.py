import pytest
from fastapi.testclient import TestClient

from dealerflow.app import create_app
from dealerflow.config import Settings


@pytest.fixture
def client():
    settings = Settings(debounce_seconds=0.01, debounce_max_seconds=0.05)
    with TestClient(create_app(settings)) as c:
        yield c


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.text == "ok"


class TestSimulateChat:
    def test_runs_router_on_sandbox_state(self, client):
        resp = client.post("/simulate/chat", json={"session_id": "s1", "user_message": "quero um suv"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["result"]["action"] == "ASK_ONE_QUESTION"
        assert body["result"]["missing_slot"] == "budget_max"
        assert body["state_before"]["slots"] == {}
        assert body["state_after"]["slots"] == {"category": "SUV"}

    def test_session_keeps_state(self, client):
        client.post("/simulate/chat", json={"session_id": "s2", "user_message": "quero um suv"})
        resp = client.post("/simulate/chat", json={"session_id": "s2", "user_message": "ate 100 mil"})
        body = resp.json()
        assert body["result"]["action"] == "CALL_STOCK_API"
        assert body["state_before"]["slots"] == {"category": "SUV"}

    def test_initial_state(self, client):
        resp = client.post("/simulate/chat", json={
            "session_id": "s3",
            "user_message": "quero financiar",
            "initial_state": {"handoff": {"mode": "HUMAN"}},
        })
        assert resp.json()["result"]["action"] == "SILENT"

    def test_invalid_initial_state(self, client):
        resp = client.post("/simulate/chat", json={
            "session_id": "s4",
            "user_message": "oi",
            "initial_state": {"stage": "nowhere"},
        })
        assert resp.status_code == 400

    def test_empty_message_rejected(self, client):
        resp = client.post("/simulate/chat", json={"session_id": "s5", "user_message": ""})
        assert resp.status_code == 422


class TestWebhook:
    def test_processes_and_dedups(self, client):
        payload = {"phone": "+5511988887777", "text": "quero um suv", "message_id": "wamid-1"}
        first = client.post("/webhook/message", json=payload).json()
        assert first["status"] == "processed"
        assert first["decision"]["result"]["action"] == "ASK_ONE_QUESTION"
        assert first["decision"]["stage"] == "qualifying"

        second = client.post("/webhook/message", json=payload).json()
        assert second == {"status": "duplicate", "decision": None}

    def test_reset(self, client):
        phone = "+5511988886666"
        client.post("/webhook/message", json={"phone": phone, "text": "quero um suv", "message_id": "a"})
        resp = client.post(f"/admin/reset/{phone}")
        assert resp.json() == {"status": "reset", "phone": phone}

        again = client.post("/webhook/message", json={"phone": phone, "text": "quero um suv", "message_id": "b"})
        assert again.json()["decision"]["result"]["missing_slot"] == "budget_max"

    def test_commands_share_turn_chain(self, client):
        assert client.app.state.engine.coordinator is client.app.state.coordinator
