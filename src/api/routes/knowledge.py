from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse
from src.api.dependencies.auth import verify_token
from src.api.dependencies.services import get_knowledge_service
from src.api.errors import http_error
from src.api.models.chat import IngestRequest
from src.core.services.knowledge_service import KnowledgeService
from src.utils.logging import logger

router = APIRouter()

@router.post("/notes", status_code=201, response_class=PlainTextResponse)
async def create_note(
    request: IngestRequest,
    authenticated: bool = Depends(verify_token),
    knowledge_service: KnowledgeService = Depends(get_knowledge_service)
):
    try:
        instance_id = await knowledge_service.ingest(request.text)
    except Exception as e:
        logger.error(f"Error queueing note: {e}")
        raise http_error(e)
    return PlainTextResponse("Created note", status_code=201, headers={"x-workflow-id": instance_id})

@router.delete("/notes/{chunk_id}", status_code=204)
async def delete_note(
    chunk_id: int,
    authenticated: bool = Depends(verify_token),
    knowledge_service: KnowledgeService = Depends(get_knowledge_service)
):
    try:
        await knowledge_service.delete_chunk(chunk_id)
    except Exception as e:
        logger.error(f"Error deleting note {chunk_id}: {e}")
        raise http_error(e)
    return Response(status_code=204)
