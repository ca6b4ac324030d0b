from typing import Any, Dict, List, Optional, Sequence, Tuple
import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from src.config.settings import settings
from src.core.models.chat import Chunk, ConversationTurn, UserProfile
from src.utils.errors import StorageError
from src.utils.logging import logger

_db_service: Optional['DatabaseService'] = None

def get_db_service() -> 'DatabaseService':
    """Get or create singleton DatabaseService instance."""
    global _db_service
    if _db_service is None:
        _db_service = DatabaseService()
    return _db_service

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS chunks (
        id BIGSERIAL PRIMARY KEY,
        text TEXT NOT NULL,
        source_url TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "ALTER TABLE chunks ADD COLUMN IF NOT EXISTS workflow_instance_id TEXT",
    "ALTER TABLE chunks ADD COLUMN IF NOT EXISTS chunk_index INTEGER",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS chunks_workflow_step_idx
        ON chunks (workflow_instance_id, chunk_index)
    """,
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        user_id TEXT PRIMARY KEY,
        info TEXT NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_owners (
        conversation_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_turns (
        id BIGSERIAL PRIMARY KEY,
        conversation_id TEXT NOT NULL REFERENCES conversation_owners (conversation_id),
        user_id TEXT NOT NULL,
        role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
        content TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS conversation_turns_conversation_idx
        ON conversation_turns (conversation_id, created_at, id)
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_instances (
        id TEXT PRIMARY KEY,
        payload TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'running',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_steps (
        instance_id TEXT NOT NULL REFERENCES workflow_instances (id) ON DELETE CASCADE,
        step_name TEXT NOT NULL,
        chunk_index INTEGER NOT NULL,
        result JSONB NOT NULL,
        completed_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (instance_id, step_name, chunk_index)
    )
    """,
]

class DatabaseService:
    def __init__(self, conninfo: Optional[str] = None):
        self.pool = None
        self.init_pool(conninfo or settings.postgres_conninfo)

    def init_pool(self, conninfo: str):
        """Create the (unopened) async connection pool."""
        debug_params = " ".join(
            "password=****" if part.startswith("password=") else part
            for part in conninfo.split()
        )
        logger.info(f"Connection parameters: {debug_params}")

        self.pool = AsyncConnectionPool(
            conninfo=conninfo,
            min_size=1,
            max_size=settings.POSTGRES_POOL_MAX_SIZE,
            timeout=30,
            open=False
        )

    async def open(self):
        await self.pool.open()

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
        reraise=True
    )
    async def _execute(self, query: str, params: Sequence[Any] = (), fetch: str = "none"):
        async with self.pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                if fetch == "one":
                    return await cur.fetchone()
                if fetch == "all":
                    return await cur.fetchall()
                return cur.rowcount

    async def _run(self, action: str, query: str, params: Sequence[Any] = (), fetch: str = "none"):
        try:
            return await self._execute(query, params, fetch)
        except psycopg.Error as e:
            logger.error(f"Error {action}: {e}")
            raise StorageError(f"Database error while {action}: {e}") from e

    async def check_health(self) -> bool:
        """Check database connectivity."""
        try:
            await self._execute("SELECT 1", fetch="one")
            return True
        except psycopg.Error as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def init_schema(self):
        for statement in SCHEMA:
            await self._run("initialising schema", statement)
        logger.info("Relational schema is ready")

    # Chunks

    async def insert_chunk(
        self,
        text: str,
        source_url: Optional[str] = None,
        instance_id: Optional[str] = None,
        chunk_index: Optional[int] = None
    ) -> Chunk:
        """Insert a chunk. Repeating an insert for the same (instance_id, chunk_index)
        returns the existing row instead of adding a second one."""
        row = await self._run(
            "inserting chunk",
            """
            INSERT INTO chunks (text, source_url, workflow_instance_id, chunk_index)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (workflow_instance_id, chunk_index) DO UPDATE SET text = EXCLUDED.text
            RETURNING id, text, source_url
            """,
            (text, source_url, instance_id, chunk_index),
            fetch="one"
        )
        if not row:
            raise StorageError("Failed to create chunk")
        return Chunk(**row)

    async def delete_workflow_chunk(self, instance_id: str, chunk_index: int) -> Optional[int]:
        """Remove the chunk written by a workflow step, returning its id if one existed."""
        row = await self._run(
            "deleting workflow chunk",
            "DELETE FROM chunks WHERE workflow_instance_id = %s AND chunk_index = %s RETURNING id",
            (instance_id, chunk_index),
            fetch="one"
        )
        return row["id"] if row else None

    async def get_chunks_by_ids(self, chunk_ids: List[int]) -> List[Chunk]:
        """Resolve chunk ids to chunks, in the order of ``chunk_ids``."""
        if not chunk_ids:
            return []
        rows = await self._run(
            "fetching chunks",
            "SELECT id, text, source_url FROM chunks WHERE id = ANY(%s)",
            (list(chunk_ids),),
            fetch="all"
        )
        by_id = {row["id"]: Chunk(**row) for row in rows}
        return [by_id[chunk_id] for chunk_id in chunk_ids if chunk_id in by_id]

    async def keyword_search(self, terms: List[str], limit: int = 10) -> List[Chunk]:
        """Case-insensitive substring match of any of ``terms`` over chunk text."""
        if not terms:
            return []
        patterns = [f"%{term}%" for term in terms]
        rows = await self._run(
            "running keyword search",
            "SELECT id, text, source_url FROM chunks WHERE text ILIKE ANY(%s) ORDER BY id LIMIT %s",
            (patterns, limit),
            fetch="all"
        )
        return [Chunk(**row) for row in rows]

    async def delete_chunk(self, chunk_id: int) -> bool:
        deleted = await self._run(
            "deleting chunk",
            "DELETE FROM chunks WHERE id = %s",
            (chunk_id,)
        )
        return deleted > 0

    # User profiles

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        row = await self._run(
            "fetching user profile",
            "SELECT user_id, info, updated_at FROM user_profiles WHERE user_id = %s",
            (user_id,),
            fetch="one"
        )
        return UserProfile(**row) if row else None

    async def upsert_user_profile(self, user_id: str, info: str) -> UserProfile:
        row = await self._run(
            "updating user profile",
            """
            INSERT INTO user_profiles (user_id, info, updated_at)
            VALUES (%s, %s, now())
            ON CONFLICT (user_id) DO UPDATE
                SET info = EXCLUDED.info, updated_at = EXCLUDED.updated_at
            RETURNING user_id, info, updated_at
            """,
            (user_id, info),
            fetch="one"
        )
        return UserProfile(**row)

    # Conversations

    async def get_conversation_owner(self, conversation_id: str) -> Optional[str]:
        row = await self._run(
            "fetching conversation owner",
            "SELECT user_id FROM conversation_owners WHERE conversation_id = %s",
            (conversation_id,),
            fetch="one"
        )
        return row["user_id"] if row else None

    async def bind_conversation(self, conversation_id: str, user_id: str) -> str:
        """Bind a conversation to a user if unbound. Returns the bound owner."""
        await self._run(
            "binding conversation",
            """
            INSERT INTO conversation_owners (conversation_id, user_id)
            VALUES (%s, %s)
            ON CONFLICT (conversation_id) DO NOTHING
            """,
            (conversation_id, user_id)
        )
        owner = await self.get_conversation_owner(conversation_id)
        if owner is None:
            raise StorageError(f"Conversation {conversation_id} could not be bound")
        return owner

    async def get_conversation_history(self, conversation_id: str, limit: int = 10) -> List[ConversationTurn]:
        """Most recent ``limit`` turns, oldest first."""
        rows = await self._run(
            "fetching conversation history",
            """
            SELECT conversation_id, user_id, role, content, created_at FROM (
                SELECT id, conversation_id, user_id, role, content, created_at
                FROM conversation_turns
                WHERE conversation_id = %s
                ORDER BY created_at DESC, id DESC
                LIMIT %s
            ) recent
            ORDER BY created_at ASC, id ASC
            """,
            (conversation_id, limit),
            fetch="all"
        )
        return [ConversationTurn(**row) for row in rows]

    async def append_turns(
        self,
        conversation_id: str,
        user_id: str,
        turns: List[Tuple[str, str]]
    ) -> List[ConversationTurn]:
        """Append ``(role, content)`` turns in one transaction: all are stored or none."""
        rows = []
        try:
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor(row_factory=dict_row) as cur:
                        for role, content in turns:
                            await cur.execute(
                                """
                                INSERT INTO conversation_turns (conversation_id, user_id, role, content)
                                VALUES (%s, %s, %s, %s)
                                RETURNING conversation_id, user_id, role, content, created_at
                                """,
                                (conversation_id, user_id, role, content)
                            )
                            rows.append(await cur.fetchone())
        except psycopg.Error as e:
            logger.error(f"Error storing conversation turns: {e}")
            raise StorageError(f"Database error while storing conversation turns: {e}") from e
        return [ConversationTurn(**row) for row in rows]

    # Workflow step log

    async def create_workflow_instance(self, instance_id: str, payload: str):
        await self._run(
            "creating workflow instance",
            """
            INSERT INTO workflow_instances (id, payload)
            VALUES (%s, %s)
            ON CONFLICT (id) DO NOTHING
            """,
            (instance_id, payload)
        )

    async def set_workflow_status(self, instance_id: str, status: str):
        await self._run(
            "updating workflow status",
            "UPDATE workflow_instances SET status = %s, updated_at = now() WHERE id = %s",
            (status, instance_id)
        )

    async def list_incomplete_workflows(self) -> List[Dict[str, Any]]:
        return await self._run(
            "listing incomplete workflows",
            "SELECT id, payload FROM workflow_instances WHERE status = 'running' ORDER BY created_at",
            fetch="all"
        )

    async def get_workflow_step(self, instance_id: str, step_name: str, chunk_index: int) -> Optional[Dict[str, Any]]:
        return await self._run(
            "reading workflow step",
            """
            SELECT result FROM workflow_steps
            WHERE instance_id = %s AND step_name = %s AND chunk_index = %s
            """,
            (instance_id, step_name, chunk_index),
            fetch="one"
        )

    async def save_workflow_step(self, instance_id: str, step_name: str, chunk_index: int, result: Any):
        await self._run(
            "recording workflow step",
            """
            INSERT INTO workflow_steps (instance_id, step_name, chunk_index, result)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (instance_id, step_name, chunk_index) DO NOTHING
            """,
            (instance_id, step_name, chunk_index, Jsonb(result))
        )
