from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import PlainTextResponse
from src.api.dependencies.auth import verify_token
from src.api.dependencies.services import get_chat_service
from src.api.errors import http_error
from src.api.models.chat import ChatRequest, ChatResponse
from src.core.services.chat_service import ChatService
from src.utils.logging import logger

router = APIRouter()

@router.post("/chat", response_model=ChatResponse, response_model_by_alias=True)
async def chat_endpoint(
    request: ChatRequest,
    response: Response,
    authenticated: bool = Depends(verify_token),
    chat_service: ChatService = Depends(get_chat_service)
):
    try:
        result = await chat_service.chat(
            request.text,
            conversation_id=request.conversation_id,
            user_id=request.user_id
        )
    except Exception as e:
        logger.error(f"Error in chat endpoint: {e}")
        raise http_error(e)

    response.headers["x-model-used"] = result.model
    return ChatResponse(
        response=result.response,
        conversation_id=result.conversation_id,
        context_used=result.context_used,
        urls_extracted=result.urls_extracted
    )

@router.get("/chat", response_class=PlainTextResponse)
async def chat_query_endpoint(
    text: str = Query(None, description="The user's question"),
    authenticated: bool = Depends(verify_token),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Single-shot question via query string, answered as plain text."""
    if not text:
        raise HTTPException(
            status_code=400,
            detail="Please provide a question using the ?text= parameter"
        )
    try:
        result = await chat_service.chat(text)
    except Exception as e:
        logger.error(f"Error in chat query endpoint: {e}")
        raise http_error(e)
    return PlainTextResponse(result.response, headers={"x-model-used": result.model})
