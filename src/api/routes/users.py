from fastapi import APIRouter, Depends
from src.api.dependencies.auth import verify_token
from src.api.dependencies.services import get_knowledge_service
from src.api.errors import http_error
from src.api.models.chat import UserInfoRequest, UserInfoResponse
from src.core.services.knowledge_service import KnowledgeService
from src.utils.logging import logger

router = APIRouter()

@router.post("/user-info", response_model=UserInfoResponse)
async def update_user_info(
    request: UserInfoRequest,
    authenticated: bool = Depends(verify_token),
    knowledge_service: KnowledgeService = Depends(get_knowledge_service)
):
    try:
        await knowledge_service.update_profile(request.info, user_id=request.user_id)
    except Exception as e:
        logger.error(f"Error updating user info: {e}")
        raise http_error(e)
    return UserInfoResponse(success=True, message="User information updated successfully")
