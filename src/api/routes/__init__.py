from .chat import router as chat_router
from .knowledge import router as knowledge_router
from .users import router as users_router

__all__ = ['chat_router', 'knowledge_router', 'users_router']
