from .auth import verify_token
from .services import get_chat_service, get_knowledge_service

__all__ = ['verify_token', 'get_chat_service', 'get_knowledge_service']
