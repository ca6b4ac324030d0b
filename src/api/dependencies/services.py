from fastapi import Request
from src.core.services.chat_service import ChatService
from src.core.services.knowledge_service import KnowledgeService

def get_chat_service(request: Request) -> ChatService:
    return request.app.state.services.chat_service

def get_knowledge_service(request: Request) -> KnowledgeService:
    return request.app.state.services.knowledge_service
