from typing import Optional
from src.config.settings import settings
from src.core.models.chat import UserProfile
from src.core.services.db_service import DatabaseService
from src.core.services.vector_index import VectorIndexService
from src.core.services.workflow import IngestionDispatcher
from src.utils.errors import InvalidRequestError
from src.utils.logging import logger

class KnowledgeService:
    """Administrative operations on the knowledge base and user profiles."""

    def __init__(
        self,
        db_service: DatabaseService,
        vector_index: VectorIndexService,
        dispatcher: IngestionDispatcher
    ):
        self.db_service = db_service
        self.vector_index = vector_index
        self.dispatcher = dispatcher

    async def ingest(self, text: str, source_url: Optional[str] = None) -> str:
        if not text or not text.strip():
            raise InvalidRequestError("Missing text")
        return await self.dispatcher.create(text, source_url)

    async def delete_chunk(self, chunk_id: int) -> bool:
        """Delete the chunk row, then its vector. Not atomic: a failure after
        the first delete leaves the vector behind."""
        deleted = await self.db_service.delete_chunk(chunk_id)
        await self.vector_index.delete_by_ids([str(chunk_id)])
        logger.info(f"Deleted chunk {chunk_id} (row existed: {deleted})")
        return deleted

    async def update_profile(self, info: str, user_id: Optional[str] = None) -> UserProfile:
        if not info or not info.strip():
            raise InvalidRequestError("User information is required")
        return await self.db_service.upsert_user_profile(user_id or settings.DEFAULT_USER_ID, info)
