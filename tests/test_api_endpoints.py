"""Integration tests for the HTTP endpoints."""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import Mock
from groq import AuthenticationError, RateLimitError

import main
from fakes import ScriptedModelClient, TickingClock
from models.errors import ErrorKind
from services.conversation_service import ConversationService
from services.generation_service import GenerationService
from storage.file_store import FileStore


@pytest.fixture
def wire(tmp_path):
    """Install services built from a scripted model client; returns a configurator."""

    def configure(script):
        store = FileStore(tmp_path / "conversations.json", clock=TickingClock())
        generation = GenerationService(ScriptedModelClient(script), sleep=lambda seconds: None)
        main.app.state.store = store
        main.app.state.generation_service = generation
        main.app.state.conversation_service = ConversationService(store, generation)
        return store

    yield configure

    for name in ("store", "generation_service", "conversation_service"):
        if hasattr(main.app.state, name):
            delattr(main.app.state, name)


@pytest.fixture
def client():
    return TestClient(main.app)


def test_every_error_kind_has_a_status():
    assert set(main.ERROR_RESPONSES) == set(ErrorKind)


def test_health(client, wire):
    wire(["ok"])
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["storage"] == "file"


class TestGenerateEndpoint:

    def test_success(self, client, wire):
        wire(["  Generated text  "])

        response = client.post("/generate", json={"contents": "Write something", "model": "llama-3.3-70b-versatile"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["text"] == "Generated text"
        assert data["model"] == "llama-3.3-70b-versatile"
        assert data["attempt"] == 1
        assert data["timestamp"].endswith("Z")

    @pytest.mark.parametrize("model", ["gemini-1.5-flash", ""])
    def test_invalid_model(self, client, wire, model):
        wire(["never"])
        response = client.post("/generate", json={"contents": "Hi", "model": model})

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["error"] == "Invalid request"
        assert "Supported models" in response.json()["message"]

    @pytest.mark.parametrize("body", [{}, {"contents": "   "}, {"contents": 42}])
    def test_bad_contents(self, client, wire, body):
        wire(["never"])
        response = client.post("/generate", json=body)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_auth_error(self, client, wire):
        wire([AuthenticationError(message="Invalid API key", response=Mock(status_code=401), body=None)])
        response = client.post("/generate", json={"contents": "Hi"})

        assert response.status_code == 401
        assert response.json()["error"] == "Authentication failed"

    def test_rate_limit_error(self, client, wire):
        wire([RateLimitError(message="Rate limit exceeded", response=Mock(status_code=429, headers={}), body=None)])
        response = client.post("/generate", json={"contents": "Hi"})

        assert response.status_code == 429
        assert response.json()["error"] == "Rate limit exceeded"
        assert response.json()["retryAfter"] == 120

    def test_quota_error(self, client, wire):
        wire([Exception("RESOURCE_EXHAUSTED")])
        response = client.post("/generate", json={"contents": "Hi"})

        assert response.status_code == 429
        assert response.json()["error"] == "API quota exceeded"
        assert "retryAfter" not in response.json()

    def test_generation_failed(self, client, wire):
        wire([""])
        response = client.post("/generate", json={"contents": "Hi"})

        assert response.status_code == 500
        assert response.json()["error"] == "Content generation failed"


class TestChatEndpoint:

    def test_new_conversation(self, client, wire):
        wire(["Nice to meet you"])

        response = client.post("/chat", json={"message": "Hello, I'm new here", "sessionId": "sess-9"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["sessionId"] == "sess-9"
        assert data["conversationTitle"] == "Hello, I'm new here"
        assert data["message"]["role"] == "assistant"
        assert data["message"]["content"] == "Nice to meet you"
        assert data["message"]["timestamp"]

    def test_continue_conversation(self, client, wire):
        store = wire(["one", "two"])
        first = client.post("/chat", json={"message": "start"}).json()

        response = client.post("/chat", json={"message": "more", "conversationId": first["conversationId"]})

        assert response.status_code == 200
        assert len(store.get(first["conversationId"]).messages) == 4

    def test_unknown_conversation(self, client, wire):
        wire(["never"])
        response = client.post("/chat", json={"message": "hi", "conversationId": "nope"})

        assert response.status_code == 404
        assert response.json()["error"] == "Conversation not found"

    def test_model_whitelist_matches_generate(self, client, wire):
        wire(["never"])
        chat = client.post("/chat", json={"message": "hi", "model": "gpt-4"})
        generate = client.post("/generate", json={"contents": "hi", "model": "gpt-4"})

        assert chat.status_code == generate.status_code == 400
        assert chat.json()["message"] == generate.json()["message"]


class TestConversationEndpoints:

    def test_list_with_pagination(self, client, wire):
        store = wire(["ok"])
        for _ in range(3):
            store.create(session_id="s1")
        store.create(session_id="s2")

        response = client.get("/conversations", params={"sessionId": "s1", "page": 1, "limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert len(data["conversations"]) == 2
        assert data["pagination"] == {"current": 1, "total": 2, "count": 3, "hasNext": True, "hasPrev": False}
        assert all(c["sessionId"] == "s1" for c in data["conversations"])

    def test_list_rejects_bad_page(self, client, wire):
        wire(["ok"])
        assert client.get("/conversations", params={"page": 0}).status_code == 400
        assert client.get("/conversations", params={"limit": "many"}).status_code == 400

    def test_search(self, client, wire):
        wire(["Hello world"])
        client.post("/chat", json={"message": "greet me"})

        hit = client.get("/conversations/search", params={"q": "HELLO"})
        miss = client.get("/conversations/search", params={"q": "zzz"})

        assert hit.status_code == 200
        assert hit.json()["query"] == "HELLO"
        assert len(hit.json()["conversations"]) == 1
        assert miss.json()["conversations"] == []

    @pytest.mark.parametrize("params", [{}, {"q": "   "}])
    def test_search_requires_query(self, client, wire, params):
        wire(["ok"])
        response = client.get("/conversations/search", params=params)
        assert response.status_code == 400

    def test_get_and_delete(self, client, wire):
        store = wire(["ok"])
        conversation = store.create()

        got = client.get(f"/conversations/{conversation.id}")
        assert got.status_code == 200
        assert got.json()["conversation"]["id"] == conversation.id

        deleted = client.delete(f"/conversations/{conversation.id}")
        assert deleted.status_code == 200
        assert deleted.json()["success"] is True

        assert client.get(f"/conversations/{conversation.id}").status_code == 404
        assert client.delete(f"/conversations/{conversation.id}").status_code == 404


def test_unknown_route(client):
    response = client.get("/does/not/exist")
    assert response.status_code == 404
    assert response.json()["error"] == "Route not found"


def test_services_not_initialized(client):
    response = client.post("/generate", json={"contents": "hi"})
    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"


def test_unhandled_error_is_masked(wire):
    store = wire(["ok"])
    store.count = Mock(side_effect=RuntimeError("secret detail"))
    client = TestClient(main.app, raise_server_exceptions=False)

    response = client.get("/conversations")

    assert response.status_code == 500
    assert response.json()["message"] == "Something went wrong"
