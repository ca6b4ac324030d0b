from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from src.config.settings import settings
from src.core.services.container import build_services
from src.utils.logging import logger
from .routes import chat_router, knowledge_router, users_router

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: connect, make sure the schema exists, pick up unfinished ingestion runs
    services = build_services()
    await services.start()
    app.state.services = services
    resumed = await services.dispatcher.resume_incomplete()
    if resumed:
        logger.info(f"Resumed {resumed} unfinished ingestion workflows")

    yield  # Server is running and handling requests

    # Shutdown: let background ingestion finish, then release the pool
    await services.stop()

def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.API_TITLE,
        description=settings.API_DESCRIPTION,
        version=settings.API_VERSION,
        lifespan=lifespan if use_lifespan else None
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-model-used"],
    )

    # Register routers
    app.include_router(chat_router, prefix="/api")
    app.include_router(users_router, prefix="/api")
    app.include_router(knowledge_router)

    return app

app = create_app()
