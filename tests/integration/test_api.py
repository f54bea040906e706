"""
Integration tests for the HTTP API.

Drives the FastAPI app with TestClient against the in-memory stores and the
scripted upstream client.

Tests cover:
- SSE framing of a streamed turn and a debate
- Pre-stream rejections as JSON errors
- Poll mode
- Message management endpoints
- Conversation listing and deletion, user memory, custom personas
- Producer task lifecycle and client disconnect
"""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from turnstream.api.app import build_services, create_app, stream_events
from turnstream.core.emitter import SSEEmitter
from turnstream.core.persistence import InMemorySessionStore, InMemoryStore
from turnstream.exceptions import UpstreamError
from turnstream.models.entities import User
from turnstream.models.enums import EventType, Plan, Role

from helpers import HANG, IMAGE_URL, image_call, text

pytestmark = pytest.mark.integration

ANON = {"X-Session-Id": "browser-1"}
PRO = {"X-User-Id": "user-pro", "X-Session-Id": "pro-session"}
OTHER = {"X-User-Id": "user-other", "X-Session-Id": "other-session"}


def parse_sse(body: str) -> list[dict]:
    frames = [frame for frame in body.split("\n\n") if frame]
    assert all(frame.startswith("data: ") for frame in frames)
    return [json.loads(frame[len("data: "):]) for frame in frames]


@pytest.fixture
def app_store():
    store = InMemoryStore()
    asyncio.run(store.upsert_user(User(id="user-pro", plan=Plan.PRO)))
    return store


@pytest.fixture
def client(config, fake_llm, app_store):
    services = build_services(config, llm=fake_llm, store=app_store, sessions=InMemorySessionStore())
    with TestClient(create_app(services)) as test_client:
        yield test_client


def new_conversation(client, headers, **body):
    response = client.post("/api/conversations", json=body or None, headers=headers)
    assert response.status_code == 200
    return response.json()["id"]


class TestStreamingTurn:
    """POST /api/messages"""

    def test_turn_streams_sse(self, client, fake_llm):
        conversation_id = new_conversation(client, ANON)
        fake_llm.streams = [text("Hi", " there")]

        response = client.post(
            "/api/messages", json={"conversationId": conversation_id, "content": "Hello"}, headers=ANON
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        events = parse_sse(response.text)
        assert [e["type"] for e in events] == ["userMessage", "token", "token", "complete"]
        assert events[0]["data"]["content"] == "Hello"
        assert events[-1]["data"]["content"] == "Hi there"
        assert events[-1]["data"]["role"] == "assistant"

    def test_image_round_trip_for_paid_user(self, client, fake_llm):
        conversation_id = new_conversation(client, PRO)
        fake_llm.streams = [image_call("a red fox"), text("Here you go")]

        response = client.post(
            "/api/messages", json={"conversationId": conversation_id, "content": "Draw a fox"}, headers=PRO
        )

        events = parse_sse(response.text)
        image = next(e for e in events if e["type"] == "image")
        assert image["data"] == {"imageUrl": IMAGE_URL, "prompt": "a red fox"}
        assert events[-1]["data"]["imageUrl"] == IMAGE_URL

        listed = client.get(f"/api/messages/{conversation_id}", headers=PRO).json()
        assert [m["role"] for m in listed] == ["user", "assistant"]

    def test_upstream_error_is_terminal_event(self, client, fake_llm):
        conversation_id = new_conversation(client, ANON)
        fake_llm.streams = [UpstreamError("Model overloaded", provider_status=503)]

        response = client.post(
            "/api/messages", json={"conversationId": conversation_id, "content": "Hello"}, headers=ANON
        )

        events = parse_sse(response.text)
        assert [e["type"] for e in events] == ["userMessage", "error"]
        assert events[-1]["data"] == {"error": "Model overloaded"}

    def test_validation_error_is_json(self, client, fake_llm):
        conversation_id = new_conversation(client, ANON)

        response = client.post(
            "/api/messages",
            json={"conversationId": conversation_id, "content": "hi", "imageUrl": "not-a-url"},
            headers=ANON,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid image format"
        assert fake_llm.stream_calls == []

    def test_unknown_conversation_is_404(self, client):
        response = client.post("/api/messages", json={"conversationId": "nope", "content": "hi"}, headers=PRO)
        assert response.status_code == 404

    def test_non_owner_is_403(self, client):
        conversation_id = new_conversation(client, PRO)

        response = client.post(
            "/api/messages", json={"conversationId": conversation_id, "content": "hi"}, headers=OTHER
        )

        assert response.status_code == 403

    def test_anonymous_limit_is_429(self, client, fake_llm, config):
        conversation_id = new_conversation(client, ANON)
        fake_llm.streams = [text("ok") for _ in range(config.anonymous_message_limit)]

        for _ in range(config.anonymous_message_limit):
            response = client.post(
                "/api/messages", json={"conversationId": conversation_id, "content": "hi"}, headers=ANON
            )
            assert response.status_code == 200

        response = client.post(
            "/api/messages", json={"conversationId": conversation_id, "content": "hi"}, headers=ANON
        )

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "Message limit reached"
        assert "free messages" in body["message"]

        count = client.get("/api/message-count", headers=ANON).json()
        assert count == {"count": 15, "limit": 15, "unlimited": False}


class TestPoll:
    """POST /api/messages/poll"""

    def test_poll(self, client, fake_llm):
        conversation_id = new_conversation(client, ANON)
        fake_llm.streams = [text("Polled")]

        response = client.post(
            "/api/messages/poll", json={"conversationId": conversation_id, "content": "hi"}, headers=ANON
        )

        assert response.status_code == 200
        body = response.json()
        assert body["content"] == "Polled"
        assert body["userMessage"]["content"] == "hi"
        assert body["aiMessage"]["role"] == "assistant"


class TestDebate:
    """POST /api/debate"""

    def test_debate_streams_rounds(self, client, fake_llm):
        conversation_id = new_conversation(client, ANON)
        fake_llm.streams = [text(f"turn {i}") for i in range(6)]

        response = client.post(
            "/api/debate",
            json={
                "conversationId": conversation_id,
                "topic": "Is cereal soup?",
                "persona1": "science-expert",
                "persona2": "creative-writer",
            },
            headers=ANON,
        )

        events = parse_sse(response.text)
        assert [e["type"] for e in events].count("speaker") == 6
        assert events[-1] == {"type": "complete", "data": {"success": True, "rounds": 3}}
        tokens = [e for e in events if e["type"] == "token"]
        assert {t["speaker"] for t in tokens} == {"science-expert", "creative-writer"}

    def test_same_personas_rejected(self, client, fake_llm):
        conversation_id = new_conversation(client, ANON)

        response = client.post(
            "/api/debate",
            json={"conversationId": conversation_id, "topic": "t", "persona1": "teacher", "persona2": "teacher"},
            headers=ANON,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Personas must be different"
        assert fake_llm.stream_calls == []


class TestMessageManagement:
    """Conversation and message endpoints."""

    def test_message_count_for_authenticated(self, client):
        assert client.get("/api/message-count", headers=PRO).json()["unlimited"] is True

    def test_create_conversation_with_persona(self, client):
        response = client.post(
            "/api/conversations", json={"title": "Code help", "persona": "code-expert"}, headers=PRO
        )

        body = response.json()
        assert body["userId"] == "user-pro"
        assert body["persona"] == "code-expert"
        assert body["title"] == "Code help"

    def test_edit_pin_react_delete(self, client, fake_llm):
        conversation_id = new_conversation(client, PRO)
        fake_llm.streams = [text("first answer"), text("second answer")]
        for content in ("first", "second"):
            client.post("/api/messages", json={"conversationId": conversation_id, "content": content}, headers=PRO)

        messages = client.get(f"/api/messages/{conversation_id}", headers=PRO).json()
        assert [m["content"] for m in messages] == ["first", "first answer", "second", "second answer"]
        first_id, answer_id = messages[0]["id"], messages[1]["id"]

        edited = client.patch(f"/api/messages/{first_id}", json={"content": "first, revised"}, headers=PRO)
        assert edited.json() == {"success": True, "messageId": first_id}
        messages = client.get(f"/api/messages/{conversation_id}", headers=PRO).json()
        assert [m["content"] for m in messages] == ["first, revised"]

        pinned = client.patch(f"/api/messages/{first_id}/pin", json={"isPinned": True}, headers=PRO)
        assert pinned.json()["isPinned"] is True

        reacted = client.post(f"/api/messages/{first_id}/reaction", json={"emoji": "🔥"}, headers=PRO)
        assert reacted.json()["reactions"] == [{"emoji": "🔥", "userId": "user-pro"}]

        assert client.delete(f"/api/messages/{first_id}", headers=PRO).status_code == 204
        assert client.get(f"/api/messages/{conversation_id}", headers=PRO).json() == []
        assert client.delete(f"/api/messages/{answer_id}", headers=PRO).status_code == 404

    def test_other_user_cannot_modify(self, client, fake_llm):
        conversation_id = new_conversation(client, PRO)
        fake_llm.streams = [text("answer")]
        client.post("/api/messages", json={"conversationId": conversation_id, "content": "mine"}, headers=PRO)
        message_id = client.get(f"/api/messages/{conversation_id}", headers=PRO).json()[0]["id"]

        assert client.patch(f"/api/messages/{message_id}", json={"content": "x"}, headers=OTHER).status_code == 403
        assert client.patch(f"/api/messages/{message_id}/pin", json={"isPinned": True}, headers=OTHER).status_code == 403
        assert client.post(f"/api/messages/{message_id}/reaction", json={"emoji": "👎"}, headers=OTHER).status_code == 403
        assert client.delete(f"/api/messages/{message_id}", headers=OTHER).status_code == 403
        assert client.get(f"/api/messages/{conversation_id}", headers=OTHER).status_code == 403

    def test_persona_catalog(self, client):
        personas = client.get("/api/personas/catalog").json()

        assert personas[0] == {
            "id": "general",
            "name": "Fizz",
            "icon": "○",
            "description": "Your versatile AI assistant for anything",
        }
        assert len(personas) == 9


class TestConversations:
    """GET and DELETE /api/conversations"""

    def test_list_conversations(self, client):
        older = new_conversation(client, PRO, title="Older")
        newer = new_conversation(client, PRO, title="Newer")
        new_conversation(client, OTHER)
        new_conversation(client, ANON)

        listed = client.get("/api/conversations", headers=PRO).json()

        assert [c["id"] for c in listed] == [newer, older]
        assert client.get("/api/conversations", headers=ANON).json() == []

    def test_delete_conversation(self, client, fake_llm):
        conversation_id = new_conversation(client, PRO)
        fake_llm.streams = [text("answer")]
        client.post("/api/messages", json={"conversationId": conversation_id, "content": "hi"}, headers=PRO)

        assert client.delete(f"/api/conversations/{conversation_id}", headers=OTHER).status_code == 403

        response = client.delete(f"/api/conversations/{conversation_id}", headers=PRO)

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert client.get(f"/api/messages/{conversation_id}", headers=PRO).status_code == 404
        assert client.get("/api/conversations", headers=PRO).json() == []
        assert client.delete(f"/api/conversations/{conversation_id}", headers=PRO).status_code == 404

    def test_anonymous_delete_requires_authentication(self, client):
        conversation_id = new_conversation(client, ANON)

        response = client.delete(f"/api/conversations/{conversation_id}", headers=ANON)

        assert response.status_code == 401
        assert response.json()["error"] == "Authentication required"
        assert client.get(f"/api/messages/{conversation_id}", headers=ANON).status_code == 200


class TestUserMemory:
    """PUT /api/user/memory"""

    def test_memory_saved_and_used_in_turns(self, client, fake_llm):
        response = client.put("/api/user/memory", json={"memory": ["  Lives in Oslo ", ""]}, headers=PRO)

        assert response.status_code == 200
        assert response.json()["memory"] == ["Lives in Oslo"]

        conversation_id = new_conversation(client, PRO)
        fake_llm.streams = [text("Hei")]
        client.post("/api/messages", json={"conversationId": conversation_id, "content": "hi"}, headers=PRO)

        system_prompt = fake_llm.stream_calls[0]["messages"][0]["content"]
        assert "- Lives in Oslo" in system_prompt

    def test_invalid_memory(self, client):
        response = client.put("/api/user/memory", json={"memory": "Lives in Oslo"}, headers=PRO)

        assert response.status_code == 400
        assert response.json()["error"] == "Memory must be an array of strings"

    def test_anonymous_rejected(self, client):
        assert client.put("/api/user/memory", json={"memory": []}, headers=ANON).status_code == 401


class TestCustomPersonas:
    """/api/personas CRUD"""

    PERSONA = {"name": "Chef Remy", "description": "Food talk", "systemPrompt": "You are a French chef."}

    def test_persona_lifecycle(self, client, fake_llm):
        created = client.post("/api/personas", json=self.PERSONA, headers=PRO)
        assert created.status_code == 201
        persona = created.json()
        assert persona["systemPrompt"] == "You are a French chef."
        assert persona["userId"] == "user-pro"

        assert [p["id"] for p in client.get("/api/personas", headers=PRO).json()] == [persona["id"]]

        updated = client.patch(f"/api/personas/{persona['id']}", json={"name": "Remy"}, headers=PRO)
        assert updated.json()["name"] == "Remy"

        conversation_id = new_conversation(client, PRO, persona=f"custom-{persona['id']}")
        fake_llm.streams = [text("Bonjour")]
        client.post("/api/messages", json={"conversationId": conversation_id, "content": "hi"}, headers=PRO)
        assert fake_llm.stream_calls[0]["messages"][0]["content"].startswith("You are a French chef.")

        assert client.delete(f"/api/personas/{persona['id']}", headers=PRO).status_code == 204
        assert client.get("/api/personas", headers=PRO).json() == []

    def test_free_plan_requires_upgrade(self, client):
        response = client.post("/api/personas", json=self.PERSONA, headers=OTHER)

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "Upgrade required"
        assert body["message"] == "Custom personas are available on Plus and Pro plans only."

    def test_invalid_persona_data(self, client):
        response = client.post("/api/personas", json={"name": "No prompt"}, headers=PRO)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid persona data"

    def test_update_errors(self, client):
        persona_id = client.post("/api/personas", json=self.PERSONA, headers=PRO).json()["id"]

        assert client.patch(f"/api/personas/{persona_id}", json={}, headers=PRO).status_code == 400
        assert client.patch(f"/api/personas/{persona_id}", json={"name": "x"}, headers=OTHER).status_code == 404
        assert client.patch("/api/personas/nope", json={"name": "x"}, headers=PRO).status_code == 404

    def test_anonymous_rejected(self, client):
        assert client.get("/api/personas", headers=ANON).status_code == 401
        assert client.post("/api/personas", json=self.PERSONA, headers=ANON).status_code == 401


class TestStreamLifecycle:
    """stream_events: producer task and client disconnect."""

    @pytest.mark.asyncio
    async def test_client_disconnect_cancels_turn(
        self, orchestrator, fake_llm, store, anonymous_conversation, anonymous_caller
    ):
        """Test that closing the response body stops the turn and keeps the partial reply."""
        fake_llm.streams = [[*text("partial"), HANG]]
        request, conversation = await orchestrator.prepare(
            {"conversationId": anonymous_conversation.id, "content": "hi"}, anonymous_caller
        )
        emitter = SSEEmitter()
        response = stream_events(emitter, orchestrator.run(request, conversation, anonymous_caller, emitter))

        received = []
        body = response.body_iterator
        async for frame in body:
            received.append(json.loads(frame[len("data: "):]))
            if received[-1]["type"] == "token":
                break
        await body.aclose()

        for _ in range(200):
            assistant = [m for m in await store.get_messages(conversation.id) if m.role == Role.ASSISTANT]
            if assistant and fake_llm.closed_streams:
                break
            await asyncio.sleep(0)

        assert [e["type"] for e in received] == ["userMessage", "token"]
        assert [m.content for m in assistant] == ["partial"]
        assert fake_llm.closed_streams == 1
        assert emitter.terminal_event is None
        assert fake_llm.complete_calls == []

    @pytest.mark.asyncio
    async def test_producer_failure_is_logged(self, mocker):
        logger = mocker.patch("turnstream.api.app.logger")
        emitter = SSEEmitter()

        async def emits_after_complete():
            emitter.emit(EventType.COMPLETE, {})
            emitter.emit(EventType.TOKEN, "late")

        response = stream_events(emitter, emits_after_complete())
        frames = [frame async for frame in response.body_iterator]

        for _ in range(10):
            if logger.error.called:
                break
            await asyncio.sleep(0)

        assert len(frames) == 1
        logger.error.assert_called_once()
        assert logger.error.call_args.args[0] == "stream_producer_failed"
        assert logger.error.call_args.kwargs["error_type"] == "StreamClosedError"

    @pytest.mark.asyncio
    async def test_producer_runs_without_reader(self):
        ran = asyncio.Event()

        async def producer():
            ran.set()

        emitter = SSEEmitter()
        stream_events(emitter, producer())

        await asyncio.wait_for(ran.wait(), timeout=1)
        for _ in range(10):
            if emitter.closed:
                break
            await asyncio.sleep(0)
        assert emitter.closed
