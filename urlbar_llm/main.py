"""
URLBar LLM - Main FastAPI Application
"""

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .config import settings
from .api import chat_router, providers_router, sessions_router
from .core.logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .services.conversations import ConversationRegistry
from .storage import LocalStorage, SessionStore

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    setup_logging(settings)

    storage = LocalStorage(settings.local_storage_path)
    session_store = SessionStore(
        storage,
        max_messages=settings.session_max_messages,
        max_per_provider=settings.session_max_per_provider,
        title_max_chars=settings.session_title_max_chars,
        max_content_chars=settings.session_max_content_chars,
    )
    migrated = await session_store.migrate_legacy_if_present()
    if migrated:
        logger.info(f"Migrated {migrated} legacy conversations")

    app.state.session_store = session_store
    app.state.registry = ConversationRegistry(settings, session_store=session_store)

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Storage path: {settings.local_storage_path}")
    logger.info(f"Default provider: {settings.default_provider}")
    logger.info(f"Web search: {'enabled' if settings.search_enabled else 'disabled'}")
    logger.info(f"Log level: {settings.log_level.upper()}")
    yield
    # Shutdown
    await app.state.registry.close_all()
    logger.info(f"Shutting down {settings.app_name}")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Address bar assistant backend: search-augmented streaming chat with saved sessions",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware (after CORS)
if settings.log_api_requests:
    app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(chat_router)
app.include_router(providers_router)
app.include_router(sessions_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "enabled": settings.enabled,
        "version": settings.app_version
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "urlbar_llm.main:app",
        host="127.0.0.1",
        port=8000,
        reload=settings.debug
    )
