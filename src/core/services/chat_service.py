import secrets
import string
import time
from typing import List, Optional
from src.core.models.chat import (
    ChatMessage,
    ChatResult,
    ConversationTurn,
    RetrievedContext,
    UserProfile,
    VectorMatch,
)
from src.core.services.db_service import DatabaseService
from src.core.services.embedding import EmbeddingService
from src.core.services.model_router import ModelRouter
from src.core.services.vector_index import VectorIndexService
from src.core.services.workflow import IngestionDispatcher
from src.processing.content_extractor import ContentExtractor, extract_urls
from src.config.settings import settings
from src.utils.errors import (
    AppError,
    ConversationOwnershipError,
    EmbeddingError,
    InvalidRequestError,
    StorageError,
    VectorIndexError,
)
from src.utils.logging import logger

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_conversation_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"conv-{int(time.time() * 1000)}-{suffix}"


def filter_matches(matches: List[VectorMatch], min_score: float) -> List[VectorMatch]:
    """Keep matches scoring above ``min_score``; a match without a score always passes."""
    return [m for m in matches if m.score is None or m.score > min_score]


class ChatService:
    def __init__(
        self,
        db_service: DatabaseService,
        embedding_service: EmbeddingService,
        vector_index: VectorIndexService,
        router: ModelRouter,
        dispatcher: IngestionDispatcher,
        extractor: Optional[ContentExtractor] = None
    ):
        self.db_service = db_service
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        self.router = router
        self.dispatcher = dispatcher
        self.extractor = extractor or ContentExtractor()

    async def chat(
        self,
        text: str,
        conversation_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> ChatResult:
        if not text or not text.strip():
            raise InvalidRequestError("Please provide a question")
        user_id = user_id or settings.DEFAULT_USER_ID

        if conversation_id:
            await self.verify_conversation_owner(conversation_id, user_id)

        urls = self.queue_url_ingestion(text)
        profile = await self.load_profile(user_id)
        history = await self.load_history(conversation_id) if conversation_id else []
        context = await self.retrieve_context(text)

        messages = self.build_messages(text, profile, history, context)
        generation = await self.router.generate(messages)

        conversation_id = conversation_id or new_conversation_id()
        await self.persist_turns(conversation_id, user_id, text, generation.text)

        response = generation.text
        if urls:
            notices = "\n".join(f"Learning from: {url}" for url in urls)
            response = f"{notices}\n\n{response}"

        return ChatResult(
            response=response,
            conversation_id=conversation_id,
            context_used=context.used,
            urls_extracted=len(urls),
            model=generation.model
        )

    async def verify_conversation_owner(self, conversation_id: str, user_id: str):
        try:
            owner = await self.db_service.get_conversation_owner(conversation_id)
        except StorageError as e:
            logger.warning(f"Could not verify owner of {conversation_id}: {e}")
            return
        if owner is not None and owner != user_id:
            raise ConversationOwnershipError(
                f"Conversation {conversation_id} belongs to another user"
            )

    def queue_url_ingestion(self, text: str) -> List[str]:
        """Start background extraction + ingestion for each distinct URL in ``text``."""
        urls = extract_urls(text)
        for url in urls:
            self.dispatcher.spawn(self._ingest_url(url))
        return urls

    async def _ingest_url(self, url: str):
        content = await self.extractor.extract(url)
        if not content:
            return
        await self.dispatcher.create(content, source_url=url)

    async def load_profile(self, user_id: str) -> Optional[UserProfile]:
        try:
            return await self.db_service.get_user_profile(user_id)
        except StorageError as e:
            logger.warning(f"User profile unavailable, continuing without it: {e}")
            return None

    async def load_history(self, conversation_id: str) -> List[ConversationTurn]:
        try:
            return await self.db_service.get_conversation_history(
                conversation_id,
                settings.HISTORY_LIMIT
            )
        except StorageError as e:
            logger.warning(f"Conversation history unavailable, continuing without it: {e}")
            return []

    async def retrieve_context(self, question: str) -> RetrievedContext:
        chunks: List[str] = []
        try:
            query_embedding = await self.embedding_service.get_query_embedding(question)
        except EmbeddingError as e:
            logger.warning(f"Skipping vector search: {e}")
            query_embedding = None

        if query_embedding is not None:
            chunks = await self.vector_search(query_embedding)

        if not chunks and self.should_use_keyword_fallback(question):
            fallback = await self.keyword_search()
            if fallback:
                logger.info(f"Keyword fallback supplied {len(fallback)} chunks")
                return RetrievedContext(chunks=fallback, via_fallback=True)

        return RetrievedContext(chunks=chunks)

    async def vector_search(self, query_embedding: List[float]) -> List[str]:
        try:
            matches = await self.vector_index.query(query_embedding, settings.RETRIEVAL_TOP_K)
        except VectorIndexError as e:
            logger.warning(f"Vector search failed: {e}")
            return []

        relevant = filter_matches(matches, settings.RETRIEVAL_MIN_SCORE)
        chunk_ids = []
        for match in relevant:
            try:
                chunk_ids.append(int(match.id))
            except ValueError:
                logger.warning(f"Ignoring vector match with non-numeric id {match.id!r}")
        if not chunk_ids:
            return []

        try:
            chunks = await self.db_service.get_chunks_by_ids(chunk_ids)
        except StorageError as e:
            logger.warning(f"Could not resolve matched chunks: {e}")
            return []
        return [chunk.text for chunk in chunks]

    @staticmethod
    def should_use_keyword_fallback(question: str) -> bool:
        lowered = question.lower()
        return any(trigger in lowered for trigger in settings.keyword_triggers_list)

    async def keyword_search(self) -> List[str]:
        try:
            chunks = await self.db_service.keyword_search(
                settings.keyword_terms_list,
                settings.KEYWORD_LIMIT
            )
        except StorageError as e:
            logger.warning(f"Keyword search error: {e}")
            return []
        return [chunk.text for chunk in chunks]

    def prepare_context(self, chunks: List[str]) -> str:
        """Numbered, truncated context block, or an empty string when nothing was retrieved."""
        if not chunks:
            return ""
        limit = settings.CONTEXT_CHUNK_CHARS
        lines = []
        for i, chunk in enumerate(chunks, 1):
            snippet = chunk[:limit] + ("..." if len(chunk) > limit else "")
            lines.append(f"{i}. {snippet}")
        return "Relevant Context from Knowledge Base:\n" + "\n".join(lines)

    def build_system_prompt(self, profile: Optional[UserProfile]) -> str:
        owner = settings.OWNER_NAME
        if profile and profile.info:
            personalization = (
                f"You are a personalized AI assistant for {owner}. "
                f"Here is information about {owner}:\n{profile.info}\n\n"
            )
        else:
            personalization = f"You are a personalized AI assistant for {owner}. "
        return f"{personalization}{settings.SYSTEM_PROMPT}"

    def build_messages(
        self,
        question: str,
        profile: Optional[UserProfile],
        history: List[ConversationTurn],
        context: RetrievedContext
    ) -> List[ChatMessage]:
        system_parts = [self.build_system_prompt(profile), self.prepare_context(context.chunks)]
        messages = [ChatMessage(role="system", content="\n\n".join(p for p in system_parts if p))]
        messages.extend(ChatMessage(role=turn.role, content=turn.content) for turn in history)
        messages.append(ChatMessage(role="user", content=question))
        return messages

    async def persist_turns(self, conversation_id: str, user_id: str, question: str, answer: str):
        """Append the question and answer. Failures are logged, never raised."""
        try:
            owner = await self.db_service.bind_conversation(conversation_id, user_id)
            if owner != user_id:
                raise ConversationOwnershipError(
                    f"Conversation {conversation_id} is bound to another user"
                )
            await self.db_service.append_turns(
                conversation_id,
                user_id,
                [("user", question), ("assistant", answer)]
            )
        except AppError as e:
            logger.error(f"Error storing conversation {conversation_id}: {e}")
