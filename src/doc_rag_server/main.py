"""
Document RAG Server Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures logging and exception handling, and provides a test-friendly
application factory.
"""

from __future__ import annotations

import logging
from fastapi import FastAPI

from .config import settings
from .core.errors import EXCEPTION_HANDLERS, RegistryUnavailableError
from .core.logging_config import configure_logging
from .ingestion.chunker import validate_chunking

from .api import (
    document_routes,
    health_routes,
    retrieval_routes,
)
from .api.dependencies import get_registry


logger = logging.getLogger("rag.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    configure_logging(settings.log_level)

    app = FastAPI(
        title="doc-rag-server",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # --------------------------------------------------------------
    # Exception Handling (specific first, catch-all last)
    # --------------------------------------------------------------

    for exc_class, handler in EXCEPTION_HANDLERS:
        app.add_exception_handler(exc_class, handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(document_routes.router)
    app.include_router(retrieval_routes.router)

    # --------------------------------------------------------------
    # Startup Validation Hook
    # --------------------------------------------------------------

    @app.on_event("startup")
    async def _startup_validation() -> None:
        """
        Fail fast on invalid chunking configuration, then warm the registry.

        A registry that cannot load yet is not fatal: requests retry the
        load and fail with 503 until the store is reachable.
        """
        logger.info("Starting doc-rag-server (search backend: %s)", settings.search_backend)

        validate_chunking(
            settings.chunk_size_tokens,
            settings.chunk_overlap_tokens,
            settings.chars_per_token,
            1,
        )
        if not settings.openai_api_key.get_secret_value():
            logger.warning("OPENAI_API_KEY is not set; OpenAI-embedded documents cannot be queried")

        try:
            documents = await get_registry().refresh(force=True)
            logger.info("Registry warmed with %d documents", len(documents))
        except RegistryUnavailableError as exc:
            logger.warning("Registry not loaded at startup: %s", exc)

        logger.info("Configuration validated successfully")

    @app.on_event("shutdown")
    async def _shutdown_cleanup() -> None:
        logger.info("Shutting down doc-rag-server")

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
