"""
API tests: request/response contracts of the HTTP surface, backed by the
in-memory services from conftest.
"""

import pytest

from src.core.models.chat import Chunk
from src.utils.errors import GenerationError


class TestChatEndpoint:
    @pytest.mark.asyncio
    async def test_chat_with_empty_knowledge_base(self, client):
        response = await client.post("/api/chat", json={"text": "What is 2+2?", "conversationId": None})

        assert response.status_code == 200
        body = response.json()
        assert body["response"] == "4"
        assert body["contextUsed"] is False
        assert body["urlsExtracted"] == 0
        assert body["conversationId"].startswith("conv-")
        assert response.headers["x-model-used"] == "fake-model"

    @pytest.mark.asyncio
    async def test_conversation_id_is_echoed_on_follow_up(self, client, fake_db):
        first = (await client.post("/api/chat", json={"text": "hi"})).json()
        second = await client.post(
            "/api/chat",
            json={"text": "and again", "conversationId": first["conversationId"]},
        )

        assert second.json()["conversationId"] == first["conversationId"]
        assert len(fake_db.turns) == 4

    @pytest.mark.asyncio
    async def test_missing_text_is_a_bad_request(self, client):
        response = await client.post("/api/chat", json={})
        assert response.status_code == 400
        assert response.json()["detail"] == "Please provide a question"

    @pytest.mark.asyncio
    async def test_url_in_question_is_ingested_asynchronously(self, client, services, fake_db):
        response = await client.post("/api/chat", json={"text": "Check https://example.com for details"})

        assert response.status_code == 200
        assert response.json()["urlsExtracted"] == 1

        await services.dispatcher.drain()
        assert any(c.source_url == "https://example.com" for c in fake_db.chunks.values())

    @pytest.mark.asyncio
    async def test_foreign_conversation_is_forbidden(self, client, fake_db):
        fake_db.owners["conv-owned"] = "alice"
        response = await client.post(
            "/api/chat",
            json={"text": "hi", "conversationId": "conv-owned", "userId": "mallory"},
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_generation_failure_is_reported(self, client, fake_router):
        async def empty(messages):
            raise GenerationError("fake-model returned no usable output")

        fake_router.generate = empty
        response = await client.post("/api/chat", json={"text": "hi"})
        assert response.status_code == 502
        assert "no usable output" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_query_string_variant(self, client):
        response = await client.get("/api/chat", params={"text": "What is 2+2?"})
        assert response.status_code == 200
        assert response.text == "4"

        response = await client.get("/api/chat")
        assert response.status_code == 400


class TestKnowledgeEndpoints:
    @pytest.mark.asyncio
    async def test_ingest_acknowledges_before_completion(self, client, services, fake_db, fake_index):
        response = await client.post("/notes", json={"text": "Danish maintains a retrieval service."})

        assert response.status_code == 201
        assert response.text == "Created note"

        await services.dispatcher.drain()
        assert [c.text for c in fake_db.chunks.values()] == ["Danish maintains a retrieval service."]
        assert len(fake_index.vectors) == 1

    @pytest.mark.asyncio
    async def test_ingest_without_text(self, client):
        response = await client.post("/notes", json={})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_delete_removes_row_and_vector(self, client, fake_db, fake_index):
        fake_db.chunks[5] = Chunk(id=5, text="to delete")
        fake_index.vectors["5"] = [1.0] * 26

        response = await client.delete("/notes/5")

        assert response.status_code == 204
        assert 5 not in fake_db.chunks
        assert "5" not in fake_index.vectors


class TestUserInfoEndpoint:
    @pytest.mark.asyncio
    async def test_update_defaults_to_owner_profile(self, client, fake_db):
        response = await client.post("/api/user-info", json={"info": "Backend engineer in Karachi"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "User information updated successfully"}
        assert fake_db.profiles["syed-danish-hussain"].info == "Backend engineer in Karachi"

    @pytest.mark.asyncio
    async def test_last_write_wins(self, client, fake_db):
        await client.post("/api/user-info", json={"userId": "alice", "info": "first"})
        await client.post("/api/user-info", json={"userId": "alice", "info": "second"})
        assert fake_db.profiles["alice"].info == "second"

    @pytest.mark.asyncio
    async def test_missing_info(self, client):
        response = await client.post("/api/user-info", json={"userId": "alice"})
        assert response.status_code == 400
        assert response.json()["detail"] == "User information is required"


class TestAuth:
    @pytest.mark.asyncio
    async def test_configured_tokens_are_enforced(self, client, settings_override):
        settings_override(BEARER_TOKEN="secret,other")

        assert (await client.post("/api/chat", json={"text": "hi"})).status_code == 401
        response = await client.post(
            "/api/chat",
            json={"text": "hi"},
            headers={"Authorization": "Bearer other"},
        )
        assert response.status_code == 200
