"""
Integration tests for the HTTP API.
Runs the app with its lifespan against temporary storage and a mocked upstream.
"""

import asyncio
import json
import pytest
import httpx
from fastapi.testclient import TestClient

from urlbar_llm.config import settings
from urlbar_llm.llm.network import NetworkRetryClient
from urlbar_llm.main import app
from urlbar_llm.models import Message, Session

OLLAMA_STREAM = (
    b'{"message":{"content":"Paris"},"done":false}\n'
    b'{"message":{"content":" is the capital of France."},"done":false}\n'
    b'{"message":{"content":""},"done":true}\n'
)


def _events(response):
    return [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]


@pytest.fixture
def upstream_calls():
    return []


@pytest.fixture
def client(tmp_path, monkeypatch, upstream_calls):
    monkeypatch.setattr(settings, "local_storage_path", str(tmp_path))
    monkeypatch.setattr(settings, "search_enabled", False)
    monkeypatch.setattr(settings, "default_provider", "ollama")
    monkeypatch.setattr(settings, "mistral_api_key", None)
    monkeypatch.setattr(settings, "enabled", True)

    def handler(request):
        upstream_calls.append(request)
        return httpx.Response(200, content=OLLAMA_STREAM)

    with TestClient(app) as test_client:
        registry = app.state.registry
        registry.client = NetworkRetryClient(max_attempts=1, transport=httpx.MockTransport(handler))
        yield test_client


class TestHealth:
    """Tests for root and health endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestProvidersAPI:
    """Tests for the providers listing."""

    def test_list_providers(self, client):
        response = client.get("/providers")
        assert response.status_code == 200
        providers = {p["id"]: p for p in response.json()}
        assert set(providers) == {"mistral", "openai", "gemini", "ollama"}
        assert providers["ollama"]["configured"] is True
        assert providers["ollama"]["default"] is True
        assert providers["mistral"]["configured"] is False


class TestChatAPI:
    """Tests for the streamed chat flow."""

    def test_message_streams_final_answer_and_saves_session(self, client, upstream_calls):
        response = client.post(
            "/chat/message",
            json={"conversation_id": "window-1", "message": "What is the capital of France?"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _events(response)
        final = events[-1]
        assert final["type"] == "final"
        assert final["content"] == "Paris is the capital of France."
        assert final["sources"] == []
        assert final["searched"] is False
        assert all(e["type"] == "render" for e in events[:-1])

        assert len(upstream_calls) == 1
        assert str(upstream_calls[0].url) == "http://localhost:11434/api/chat"
        sent = json.loads(upstream_calls[0].content)
        assert sent["messages"][-1] == {"role": "user", "content": "What is the capital of France?"}

        session_id = final["session_id"]
        listed = client.get("/sessions", params={"provider_id": "ollama"}).json()
        assert [s["id"] for s in listed] == [session_id]
        assert listed[0]["title"] == "What is the capital of France?"
        assert listed[0]["message_count"] == 2

    def test_follow_up_reuses_session(self, client, upstream_calls):
        first = _events(client.post("/chat/message", json={"conversation_id": "w", "message": "one"}))[-1]
        second = _events(client.post("/chat/message", json={"conversation_id": "w", "message": "two"}))[-1]

        assert first["session_id"] == second["session_id"]
        sent = json.loads(upstream_calls[1].content)
        assert [m["content"] for m in sent["messages"][1:]] == [
            "one", "Paris is the capital of France.", "two"
        ]

    def test_unknown_provider(self, client):
        response = client.post("/chat/message", json={"message": "hi", "provider_id": "nope"})
        assert response.status_code == 404

    def test_provider_without_key(self, client):
        response = client.post("/chat/message", json={"message": "@mistral hello"})
        assert response.status_code == 400

    def test_mention_only_is_rejected(self, client):
        response = client.post("/chat/message", json={"message": "@ollama"})
        assert response.status_code == 400

    def test_empty_message_is_invalid(self, client):
        response = client.post("/chat/message", json={"message": ""})
        assert response.status_code == 422

    def test_upstream_failure_yields_error_event(self, client):
        registry = app.state.registry
        registry.client = NetworkRetryClient(
            max_attempts=1, transport=httpx.MockTransport(lambda request: httpx.Response(401))
        )

        events = _events(client.post("/chat/message", json={"conversation_id": "x", "message": "hi"}))

        assert events[-1]["type"] == "error"
        assert events[-1]["kind"] == "invalid-credentials"
        assert client.get("/sessions", params={"provider_id": "ollama"}).json() == []

    def test_cancel_without_turn(self, client):
        response = client.post("/chat/unknown/cancel")
        assert response.json() == {"conversation_id": "unknown", "cancelled": False}

    def test_deactivate_returns_saved_session(self, client):
        final = _events(client.post("/chat/message", json={"conversation_id": "w", "message": "hi"}))[-1]

        response = client.post("/chat/w/deactivate")
        assert response.json() == {"conversation_id": "w", "session_id": final["session_id"]}
        assert app.state.registry.get("w").conversation.is_empty


class TestSessionsAPI:
    """Tests for stored session endpoints."""

    def _save(self, session_id="stored", provider_id="ollama"):
        store = app.state.session_store
        session = Session(
            id=session_id,
            provider_id=provider_id,
            messages=[Message(role="user", content="saved question"),
                      Message(role="assistant", content="saved answer")],
        )
        return asyncio.run(store.upsert(session))

    def test_get_and_delete(self, client):
        self._save()

        response = client.get("/sessions/stored")
        assert response.status_code == 200
        assert response.json()["title"] == "saved question"

        assert client.delete("/sessions/stored").status_code == 204
        assert client.get("/sessions/stored").status_code == 404
        assert client.delete("/sessions/stored").status_code == 404

    def test_list_requires_provider(self, client):
        assert client.get("/sessions").status_code == 422

    def test_load_session_continues_it(self, client, upstream_calls):
        self._save()

        response = client.post("/chat/w/load/stored")
        assert response.status_code == 200
        assert response.json()["provider_id"] == "ollama"
        assert [m["content"] for m in response.json()["messages"]] == ["saved question", "saved answer"]

        final = _events(client.post("/chat/message", json={"conversation_id": "w", "message": "more"}))[-1]
        assert final["session_id"] == "stored"
        sent = json.loads(upstream_calls[0].content)
        assert [m["content"] for m in sent["messages"][1:]] == ["saved question", "saved answer", "more"]

    def test_load_missing_session(self, client):
        assert client.post("/chat/w/load/missing").status_code == 404
