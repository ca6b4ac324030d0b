"""
Test Configuration

In-memory stand-ins for the relational store, vector index, embedding client
and generation backend, plus wiring helpers for the services under test.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from src.config.settings import settings
from src.core.models.chat import (
    Chunk,
    ConversationTurn,
    GenerationResult,
    UserProfile,
    VectorMatch,
)
from src.core.services.chat_service import ChatService
from src.core.services.container import Services
from src.core.services.knowledge_service import KnowledgeService
from src.core.services.workflow import IngestionDispatcher, IngestionWorkflow
from src.processing.chunker import TextChunker
from src.processing.content_extractor import ContentExtractor
from src.utils.errors import EmbeddingError, StorageError, VectorIndexError


class FakeDatabase:
    """Dict-backed replacement for DatabaseService."""

    def __init__(self):
        self.chunks: Dict[int, Chunk] = {}
        self.profiles: Dict[str, UserProfile] = {}
        self.owners: Dict[str, str] = {}
        self.turns: List[ConversationTurn] = []
        self.instances: Dict[str, Dict] = {}
        self.steps: Dict[tuple, object] = {}
        self.chunk_keys: Dict[tuple, int] = {}
        self.step_save_errors: Dict[str, List[BaseException]] = {}
        self.fail_turn_role: Optional[str] = None
        self.insert_calls = 0
        self.fail_reads = False
        self.fail_writes = False
        self._next_id = 1
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _check_read(self):
        if self.fail_reads:
            raise StorageError("database unreachable")

    def _check_write(self):
        if self.fail_writes:
            raise StorageError("database unreachable")

    async def insert_chunk(
        self,
        text: str,
        source_url: Optional[str] = None,
        instance_id: Optional[str] = None,
        chunk_index: Optional[int] = None,
    ) -> Chunk:
        self._check_write()
        self.insert_calls += 1
        key = (instance_id, chunk_index)
        existing = self.chunk_keys.get(key) if instance_id is not None else None
        if existing in self.chunks:
            chunk = Chunk(id=existing, text=text, source_url=self.chunks[existing].source_url)
        else:
            chunk = Chunk(id=self._next_id, text=text, source_url=source_url)
            self._next_id += 1
            if instance_id is not None:
                self.chunk_keys[key] = chunk.id
        self.chunks[chunk.id] = chunk
        return chunk

    async def delete_workflow_chunk(self, instance_id: str, chunk_index: int) -> Optional[int]:
        self._check_write()
        chunk_id = self.chunk_keys.pop((instance_id, chunk_index), None)
        if chunk_id is None or self.chunks.pop(chunk_id, None) is None:
            return None
        return chunk_id

    async def get_chunks_by_ids(self, chunk_ids: List[int]) -> List[Chunk]:
        self._check_read()
        return [self.chunks[i] for i in chunk_ids if i in self.chunks]

    async def keyword_search(self, terms: List[str], limit: int = 10) -> List[Chunk]:
        self._check_read()
        lowered = [t.lower() for t in terms]
        hits = [c for c in self.chunks.values() if any(t in c.text.lower() for t in lowered)]
        return hits[:limit]

    async def delete_chunk(self, chunk_id: int) -> bool:
        self._check_write()
        return self.chunks.pop(chunk_id, None) is not None

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        self._check_read()
        return self.profiles.get(user_id)

    async def upsert_user_profile(self, user_id: str, info: str) -> UserProfile:
        self._check_write()
        profile = UserProfile(user_id=user_id, info=info, updated_at=self._tick())
        self.profiles[user_id] = profile
        return profile

    async def get_conversation_owner(self, conversation_id: str) -> Optional[str]:
        self._check_read()
        return self.owners.get(conversation_id)

    async def bind_conversation(self, conversation_id: str, user_id: str) -> str:
        self._check_write()
        return self.owners.setdefault(conversation_id, user_id)

    async def get_conversation_history(self, conversation_id: str, limit: int = 10) -> List[ConversationTurn]:
        self._check_read()
        turns = [t for t in self.turns if t.conversation_id == conversation_id]
        return turns[-limit:]

    async def append_turns(self, conversation_id: str, user_id: str, turns: List[Tuple[str, str]]) -> List[ConversationTurn]:
        self._check_write()
        stored = []
        for role, content in turns:
            if role == self.fail_turn_role:
                raise StorageError(f"could not store {role} turn")
            stored.append(ConversationTurn(
                conversation_id=conversation_id,
                user_id=user_id,
                role=role,
                content=content,
                created_at=self._tick(),
            ))
        self.turns.extend(stored)
        return stored

    async def create_workflow_instance(self, instance_id: str, payload: str):
        self._check_write()
        self.instances.setdefault(instance_id, {"id": instance_id, "payload": payload, "status": "running"})

    async def set_workflow_status(self, instance_id: str, status: str):
        self._check_write()
        self.instances[instance_id]["status"] = status

    async def list_incomplete_workflows(self) -> List[Dict]:
        self._check_read()
        return [
            {"id": i["id"], "payload": i["payload"]}
            for i in self.instances.values()
            if i["status"] == "running"
        ]

    async def get_workflow_step(self, instance_id: str, step_name: str, chunk_index: int):
        key = (instance_id, step_name, chunk_index)
        if key in self.steps:
            return {"result": self.steps[key]}
        return None

    async def save_workflow_step(self, instance_id: str, step_name: str, chunk_index: int, result):
        errors = self.step_save_errors.get(step_name)
        if errors:
            raise errors.pop(0)
        self.steps.setdefault((instance_id, step_name, chunk_index), result)


def _cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeVectorIndex:
    def __init__(self):
        self.vectors: Dict[str, List[float]] = {}
        self.upsert_calls: List[str] = []
        self.matches: Optional[List[VectorMatch]] = None
        self.fail_upserts = 0
        self.fail_queries = False
        self.fail_deletes = False

    async def upsert(self, chunk_id: str, values: List[float]):
        if self.fail_upserts:
            self.fail_upserts -= 1
            raise VectorIndexError("upsert rejected")
        self.upsert_calls.append(chunk_id)
        self.vectors[chunk_id] = values

    async def query(self, values: List[float], top_k: int = 10) -> List[VectorMatch]:
        if self.fail_queries:
            raise VectorIndexError("query rejected")
        if self.matches is not None:
            return self.matches[:top_k]
        scored = [
            VectorMatch(id=chunk_id, score=_cosine(values, vector))
            for chunk_id, vector in self.vectors.items()
        ]
        return sorted(scored, key=lambda m: m.score, reverse=True)[:top_k]

    async def delete_by_ids(self, chunk_ids: List[str]) -> int:
        if self.fail_deletes:
            raise VectorIndexError("delete rejected")
        return sum(1 for i in chunk_ids if self.vectors.pop(i, None) is not None)


class FakeEmbeddingService:
    """Bag-of-letters vectors: similar texts get similar vectors."""

    dimensions = 26

    def __init__(self):
        self.calls: List[str] = []
        self.fail = False
        self.fail_on: Optional[str] = None

    async def get_embedding(self, text: str, task_type: str = "retrieval_document") -> List[float]:
        if self.fail or (self.fail_on is not None and self.fail_on in text):
            raise EmbeddingError("Failed to generate vector embedding")
        self.calls.append(text)
        vector = [0.0] * self.dimensions
        for ch in text.lower():
            if "a" <= ch <= "z":
                vector[ord(ch) - ord("a")] += 1.0
        return vector

    async def get_query_embedding(self, text: str) -> List[float]:
        return await self.get_embedding(text, task_type="retrieval_query")


class FakeRouter:
    model_id = "fake-model"

    def __init__(self, text: str = "4"):
        self.text = text
        self.calls = []

    async def generate(self, messages):
        self.calls.append(messages)
        return GenerationResult(text=self.text, model=self.model_id)


def html_transport(body: str = "<html><body><p>Danish builds retrieval systems.</p></body></html>",
                   content_type: str = "text/html; charset=utf-8",
                   status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, headers={"content-type": content_type}, text=body)
    return httpx.MockTransport(handler)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def fake_index():
    return FakeVectorIndex()


@pytest.fixture
def fake_embedding():
    return FakeEmbeddingService()


@pytest.fixture
def fake_router():
    return FakeRouter()


@pytest.fixture
def chunker():
    return TextChunker(chunk_size=100, chunk_overlap=20)


@pytest.fixture
def workflow(fake_db, fake_embedding, fake_index, chunker):
    return IngestionWorkflow(
        fake_db,
        fake_embedding,
        fake_index,
        chunker=chunker,
        attempts=2,
        min_wait=0,
        max_wait=0,
        concurrency=2,
    )


@pytest.fixture
def dispatcher(workflow, fake_db):
    return IngestionDispatcher(workflow, fake_db)


@pytest.fixture
def extractor():
    return ContentExtractor(client=httpx.AsyncClient(transport=html_transport()))


@pytest.fixture
def chat_service(fake_db, fake_embedding, fake_index, fake_router, dispatcher, extractor):
    return ChatService(fake_db, fake_embedding, fake_index, fake_router, dispatcher, extractor)


@pytest.fixture
def knowledge_service(fake_db, fake_index, dispatcher):
    return KnowledgeService(fake_db, fake_index, dispatcher)


@pytest.fixture
def services(fake_db, fake_index, fake_embedding, dispatcher, chat_service, knowledge_service):
    return Services(
        db_service=fake_db,
        vector_index=fake_index,
        embedding_service=fake_embedding,
        dispatcher=dispatcher,
        chat_service=chat_service,
        knowledge_service=knowledge_service,
    )


@pytest.fixture
def app(services):
    """Application wired to the in-memory services, without the startup lifespan."""
    from src.api.app import create_app

    app = create_app(use_lifespan=False)
    app.state.services = services
    return app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def settings_override(monkeypatch):
    """Temporarily change settings fields: settings_override(CHUNK_SIZE=50)."""
    def apply(**values):
        for name, value in values.items():
            monkeypatch.setattr(settings, name, value)
    return apply
