"""
Durable ingestion workflow.

An ingestion run turns one text blob into indexed chunks:

    split text
    for each chunk:  create database record -> generate embedding -> insert vector

Each of those is a named step. A step's result is written to the
workflow_steps log, keyed by (instance id, step name, chunk index), before the
run moves on; re-running an instance replays logged results instead of calling
the store, embedding service or index again. A chunk whose step exhausts its
retry budget is abandoned and the remaining chunks still run.

Persisting is keyed on (instance id, chunk index) in the chunks table too, so
a replayed persist reuses the row it wrote before. An abandoned chunk's row
and vector are removed; if that removal fails the instance stays 'running'
and is picked up again on the next start.
"""

import asyncio
import json
import uuid
from typing import Any, Awaitable, Callable, List, Optional, Set
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from src.config.settings import settings
from src.core.models.chat import IngestionReport
from src.core.services.db_service import DatabaseService
from src.core.services.embedding import EmbeddingService
from src.core.services.vector_index import VectorIndexService
from src.processing.chunker import TextChunker
from src.utils.errors import AppError, ChunkCleanupError, StorageError
from src.utils.logging import logger

WORKFLOW_LEVEL = -1


class StepRunner:
    """Runs named steps for one workflow instance, memoizing results in the step log."""

    def __init__(
        self,
        db_service: DatabaseService,
        instance_id: str,
        attempts: int,
        min_wait: float,
        max_wait: float
    ):
        self.db_service = db_service
        self.instance_id = instance_id
        self.attempts = attempts
        self.min_wait = min_wait
        self.max_wait = max_wait

    async def do(
        self,
        step_name: str,
        action: Callable[[], Awaitable[Any]],
        chunk_index: int = WORKFLOW_LEVEL
    ) -> Any:
        recorded = await self.db_service.get_workflow_step(self.instance_id, step_name, chunk_index)
        if recorded is not None:
            logger.debug(f"[{self.instance_id}] replaying '{step_name}' ({chunk_index})")
            return recorded["result"]

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.min_wait, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception_type(AppError),
            before_sleep=lambda state: logger.warning(
                f"[{self.instance_id}] retrying '{step_name}' after attempt "
                f"{state.attempt_number}: {state.outcome.exception()}"
            ),
            reraise=True
        )
        async for attempt in retrying:
            with attempt:
                result = await action()
                # actions are idempotent on their step key
                await self.db_service.save_workflow_step(self.instance_id, step_name, chunk_index, result)
        return result


class IngestionWorkflow:
    def __init__(
        self,
        db_service: DatabaseService,
        embedding_service: EmbeddingService,
        vector_index: VectorIndexService,
        chunker: Optional[TextChunker] = None,
        attempts: Optional[int] = None,
        min_wait: Optional[float] = None,
        max_wait: Optional[float] = None,
        concurrency: Optional[int] = None
    ):
        self.db_service = db_service
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        self.chunker = chunker or TextChunker()
        self.attempts = attempts or settings.WORKFLOW_STEP_ATTEMPTS
        self.min_wait = settings.WORKFLOW_RETRY_MIN_WAIT if min_wait is None else min_wait
        self.max_wait = settings.WORKFLOW_RETRY_MAX_WAIT if max_wait is None else max_wait
        self.concurrency = concurrency or settings.INGEST_CONCURRENCY

    async def run(self, instance_id: str, text: str, source_url: Optional[str] = None) -> IngestionReport:
        steps = StepRunner(self.db_service, instance_id, self.attempts, self.min_wait, self.max_wait)

        async def split():
            return self.chunker.split(text)

        texts: List[str] = await steps.do("split text", split)
        logger.info(f"[{instance_id}] text splitter generated {len(texts)} chunks")

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(index: int, chunk_text: str):
            async with semaphore:
                return await self._process_chunk(steps, index, len(texts), chunk_text, source_url)

        outcomes = await asyncio.gather(
            *(bounded(i, t) for i, t in enumerate(texts)),
            return_exceptions=True
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        chunk_ids: List[Optional[int]] = list(outcomes)

        report = IngestionReport(
            instance_id=instance_id,
            total_chunks=len(texts),
            chunk_ids=[chunk_id for chunk_id in chunk_ids if chunk_id is not None],
            failed_chunks=[i for i, chunk_id in enumerate(chunk_ids) if chunk_id is None]
        )
        if report.failed_chunks:
            logger.warning(
                f"[{instance_id}] ingestion {report.status}: "
                f"{len(report.chunk_ids)}/{report.total_chunks} chunks indexed, "
                f"abandoned chunks {report.failed_chunks}"
            )
        else:
            logger.info(f"[{instance_id}] ingestion completed: {report.total_chunks} chunks indexed")
        return report

    async def _process_chunk(
        self,
        steps: StepRunner,
        index: int,
        total: int,
        chunk_text: str,
        source_url: Optional[str]
    ) -> Optional[int]:
        label = f"{index}/{total}"
        chunk_id = None

        async def persist():
            chunk = await self.db_service.insert_chunk(chunk_text, source_url, steps.instance_id, index)
            return chunk.id

        async def embed():
            return await self.embedding_service.get_embedding(chunk_text)

        try:
            chunk_id = await steps.do("create database record", persist, index)
            values = await steps.do("generate embedding", embed, index)

            async def index_vector():
                await self.vector_index.upsert(str(chunk_id), values)
                return str(chunk_id)

            await steps.do("insert vector", index_vector, index)
        except AppError as e:
            logger.error(f"[{steps.instance_id}] abandoning chunk {label}: {e}")
            await self._discard_chunk(steps.instance_id, index, chunk_id)
            return None
        return chunk_id

    async def _discard_chunk(self, instance_id: str, index: int, chunk_id: Optional[int]):
        """Remove whatever an abandoned chunk left in the index and the store."""
        try:
            if chunk_id is not None:
                await self.vector_index.delete_by_ids([str(chunk_id)])
            await self.db_service.delete_workflow_chunk(instance_id, index)
        except AppError as e:
            raise ChunkCleanupError(
                f"Abandoned chunk {index} could not be removed: {e}"
            ) from e


class IngestionDispatcher:
    """Starts ingestion runs as detached tasks and resumes unfinished ones.

    Run failures surface only in the log, never to whoever triggered the run.
    """

    def __init__(self, workflow: IngestionWorkflow, db_service: DatabaseService):
        self.workflow = workflow
        self.db_service = db_service
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def create(self, text: str, source_url: Optional[str] = None) -> str:
        """Record a new workflow instance and start it in the background."""
        instance_id = uuid.uuid4().hex
        payload = json.dumps({"text": text, "source_url": source_url})
        await self.db_service.create_workflow_instance(instance_id, payload)
        self._spawn(instance_id, text, source_url)
        logger.info(f"[{instance_id}] ingestion queued ({len(text)} chars)")
        return instance_id

    async def run_instance(self, instance_id: str, text: str, source_url: Optional[str] = None) -> IngestionReport:
        try:
            report = await self.workflow.run(instance_id, text, source_url)
        except ChunkCleanupError as e:
            logger.error(f"[{instance_id}] ingestion left unfinished, it resumes on next start: {e}")
            raise
        except Exception as e:
            logger.error(f"[{instance_id}] ingestion failed: {e!r}")
            await self._mark(instance_id, "failed")
            raise
        await self._mark(instance_id, report.status)
        return report

    async def resume_incomplete(self) -> int:
        """Restart every instance left in the 'running' state by a previous process."""
        rows = await self.db_service.list_incomplete_workflows()
        for row in rows:
            payload = json.loads(row["payload"])
            logger.info(f"[{row['id']}] resuming ingestion")
            self._spawn(row["id"], payload["text"], payload.get("source_url"))
        return len(rows)

    async def drain(self):
        """Wait for all background runs started by this dispatcher."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Run any coroutine as a tracked background task."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _spawn(self, instance_id: str, text: str, source_url: Optional[str]):
        self.spawn(self.run_instance(instance_id, text, source_url))

    async def _mark(self, instance_id: str, status: str):
        try:
            await self.db_service.set_workflow_status(instance_id, status)
        except StorageError as e:
            logger.error(f"[{instance_id}] could not record status '{status}': {e}")

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background ingestion task failed: {exc!r}")
