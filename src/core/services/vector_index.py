from typing import List
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool
from src.config.settings import settings
from src.core.models.chat import VectorMatch
from src.utils.errors import VectorIndexError
from src.utils.logging import logger

class VectorIndexService:
    """Nearest-neighbour index over chunk embeddings, backed by pgvector.

    Entries are keyed by chunk id (as text) and scored by cosine similarity.
    The index shares the relational store's pool but not its transactions:
    nothing keeps ``chunks`` and ``chunk_vectors`` consistent, callers delete
    from both.
    """

    def __init__(self, pool: AsyncConnectionPool, dimensions: int = None):
        self.pool = pool
        self.dimensions = dimensions or settings.EMBEDDING_DIMENSIONS

    async def init_schema(self):
        try:
            async with self.pool.connection() as conn:
                await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
                await conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS chunk_vectors (
                        chunk_id TEXT PRIMARY KEY,
                        embedding vector({int(self.dimensions)}) NOT NULL
                    )
                    """
                )
        except psycopg.Error as e:
            logger.error(f"Error initialising vector index: {e}")
            raise VectorIndexError(f"Vector index schema setup failed: {e}") from e
        logger.info("Vector index is ready")

    async def upsert(self, chunk_id: str, values: List[float]):
        if len(values) != self.dimensions:
            raise VectorIndexError(
                f"Vector for {chunk_id} has {len(values)} dimensions, expected {self.dimensions}"
            )
        try:
            async with self.pool.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO chunk_vectors (chunk_id, embedding)
                    VALUES (%s, %s::vector)
                    ON CONFLICT (chunk_id) DO UPDATE SET embedding = EXCLUDED.embedding
                    """,
                    (chunk_id, values)
                )
        except psycopg.Error as e:
            logger.error(f"Error upserting vector {chunk_id}: {e}")
            raise VectorIndexError(f"Vector upsert rejected: {e}") from e

    async def query(self, values: List[float], top_k: int = 10) -> List[VectorMatch]:
        try:
            async with self.pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        SELECT chunk_id, 1 - (embedding <=> %s::vector) AS score
                        FROM chunk_vectors
                        ORDER BY embedding <=> %s::vector
                        LIMIT %s
                        """,
                        (values, values, top_k)
                    )
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            logger.error(f"Error querying vector index: {e}")
            raise VectorIndexError(f"Vector query rejected: {e}") from e
        return [VectorMatch(id=row["chunk_id"], score=row["score"]) for row in rows]

    async def delete_by_ids(self, chunk_ids: List[str]) -> int:
        try:
            async with self.pool.connection() as conn:
                cur = await conn.execute(
                    "DELETE FROM chunk_vectors WHERE chunk_id = ANY(%s)",
                    (list(chunk_ids),)
                )
                return cur.rowcount
        except psycopg.Error as e:
            logger.error(f"Error deleting vectors {chunk_ids}: {e}")
            raise VectorIndexError(f"Vector delete rejected: {e}") from e
