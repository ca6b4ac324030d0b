from dataclasses import dataclass
from src.core.services.chat_service import ChatService
from src.core.services.db_service import DatabaseService
from src.core.services.embedding import EmbeddingService
from src.core.services.knowledge_service import KnowledgeService
from src.core.services.model_router import ModelRouter
from src.core.services.vector_index import VectorIndexService
from src.core.services.workflow import IngestionDispatcher, IngestionWorkflow
from src.processing.content_extractor import ContentExtractor
from src.utils.logging import logger

@dataclass
class Services:
    db_service: DatabaseService
    vector_index: VectorIndexService
    embedding_service: EmbeddingService
    dispatcher: IngestionDispatcher
    chat_service: ChatService
    knowledge_service: KnowledgeService

    async def start(self, init_schema: bool = True):
        await self.db_service.open()
        if not await self.db_service.check_health():
            raise RuntimeError("Failed to connect to database")
        if init_schema:
            await self.db_service.init_schema()
            await self.vector_index.init_schema()

    async def stop(self):
        if self.dispatcher.pending:
            logger.info(f"Waiting for {self.dispatcher.pending} background tasks")
            await self.dispatcher.drain()
        await self.db_service.close()


def build_services() -> Services:
    db_service = DatabaseService()
    vector_index = VectorIndexService(db_service.pool)
    embedding_service = EmbeddingService()
    workflow = IngestionWorkflow(db_service, embedding_service, vector_index)
    dispatcher = IngestionDispatcher(workflow, db_service)
    chat_service = ChatService(
        db_service,
        embedding_service,
        vector_index,
        ModelRouter.from_settings(),
        dispatcher,
        ContentExtractor()
    )
    knowledge_service = KnowledgeService(db_service, vector_index, dispatcher)
    return Services(
        db_service=db_service,
        vector_index=vector_index,
        embedding_service=embedding_service,
        dispatcher=dispatcher,
        chat_service=chat_service,
        knowledge_service=knowledge_service
    )
