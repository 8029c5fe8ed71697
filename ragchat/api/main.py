"""FastAPI application for the RAG chat backend."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ragchat import __version__
from ragchat.config import get_settings
from ragchat.api.routers import chat_router, conversations_router
from ragchat.api.schemas import HealthResponse
from ragchat.core.retrieval import get_retriever
from ragchat.services.message_store import get_message_store

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _model_configured(settings) -> bool:
    generation = settings.generation
    if generation.provider == "openai":
        return bool(generation.openai_api_key)
    if generation.provider == "anthropic":
        return bool(generation.anthropic_api_key)
    return generation.provider == "ollama"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting RAG Chat...")
    settings = get_settings()
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(
        f"RAG: k={settings.rag.k}, max cosine distance={settings.rag.max_cosine_distance}, "
        f"collection={settings.vector_store.collection_name}"
    )
    yield
    # Shutdown
    logger.info("Shutting down RAG Chat...")
    await get_retriever().close()
    get_message_store().close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="RAG Chat",
        description="Chat backend with retrieval-augmented generation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug else "An unexpected error occurred",
            },
        )

    # Health check endpoint
    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Check system health."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            services={
                "api": True,
                "vector_store": bool(settings.database.url),
                "model": _model_configured(settings),
            },
        )

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "RAG Chat",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    # Include routers
    api_prefix = settings.api_prefix
    app.include_router(chat_router, prefix=api_prefix)
    app.include_router(conversations_router, prefix=api_prefix)

    return app


# Create app instance
app = create_app()
