from typing import List
import google.generativeai as genai
from src.utils.errors import EmbeddingError
from src.utils.logging import logger
from src.config.settings import settings

class EmbeddingService:
    def __init__(self):
        genai.configure(api_key=settings.GOOGLE_API_KEY)
        self.model = settings.EMBEDDING_MODEL

    async def get_embedding(self, text: str, task_type: str = "retrieval_document") -> List[float]:
        """Embed a single text. Raises EmbeddingError when no vector comes back."""
        text = text.replace("\n", " ")
        if len(text) > 8000:
            text = text[:8000] + "..."

        try:
            response = await genai.embed_content_async(
                model=self.model,
                content=text,
                task_type=task_type
            )
        except Exception as e:
            logger.error(f"Error getting embedding: {e}")
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        values = response.get("embedding") if response else None
        if not values:
            raise EmbeddingError("Failed to generate vector embedding")
        return list(values)

    async def get_query_embedding(self, text: str) -> List[float]:
        return await self.get_embedding(text, task_type="retrieval_query")
