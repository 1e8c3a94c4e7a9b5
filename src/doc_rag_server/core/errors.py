"""
Error Taxonomy and Global Error Handling

This module defines the exception hierarchy shared by the ingestion and query
flows, plus the FastAPI exception handlers that turn them into deterministic
JSON responses.

Categories
----------
- Configuration errors: invalid chunking/batching parameters, fail fast.
- Item failures: a single chunk's embedding call failed (EmbeddingError,
  RateLimitError). The batch pipeline records these instead of raising.
- Batch failures: a bulk insert failed (ChunkWriteError), carrying the number
  of chunks already persisted.
- Validation failures: a multi-document request mixes owners or embedding
  models (DocumentSetValidationError).
- Retrieval failures: the similarity search itself broke (RetrievalError) or
  ran past its deadline (RetrievalTimeoutError). Neither is ever reported as
  "no results".
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("rag.errors")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class RagError(RuntimeError):
    """Base error for the ingestion and retrieval core."""


class ConfigurationError(RagError, ValueError):
    """Raised when processing parameters are invalid."""


class EmbeddingError(RagError):
    """Raised when an embedding call fails or returns malformed data."""


class RateLimitError(EmbeddingError):
    """Raised when the embedding provider rejects a call for rate limiting."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ChunkWriteError(RagError):
    """
    Raised when a bulk insert batch fails.

    The write is aborted at the failing batch; `persisted_count` chunks were
    committed before it and remain stored.
    """

    def __init__(self, message: str, persisted_count: int, failed_batch: int) -> None:
        super().__init__(message)
        self.persisted_count = persisted_count
        self.failed_batch = failed_batch


class DocumentNotFoundError(RagError, LookupError):
    """Raised when a slug does not resolve to an active document."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"Document not found: {slug}")
        self.slug = slug


class DocumentSetValidationError(RagError):
    """
    Raised when a multi-document set mixes owners or embedding models.

    `validation` is the structured validity result naming the conflicting
    values.
    """

    def __init__(self, message: str, validation: Any) -> None:
        super().__init__(message)
        self.validation = validation


class RegistryUnavailableError(RagError):
    """Raised when the document store is down and no cached copy exists."""


class RetrievalError(RagError):
    """Raised when the similarity search operation fails."""


class RetrievalTimeoutError(RagError):
    """Raised when retrieval exceeds the caller's deadline."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Retrieval timed out after {timeout:.2f}s")
        self.timeout = timeout


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

def _error_response(status_code: int, error: str, detail: Any) -> JSONResponse:
    payload: Dict[str, Any] = {"error": error, "detail": detail}
    return JSONResponse(status_code=status_code, content=payload)


async def document_not_found_handler(
    request: Request,
    exc: DocumentNotFoundError,
) -> JSONResponse:
    return _error_response(404, "document_not_found", str(exc))


async def document_set_validation_handler(
    request: Request,
    exc: DocumentSetValidationError,
) -> JSONResponse:
    """
    Reject mixed-owner or mixed-model document sets.

    The detail includes the conflicting values so clients can tell the user
    which documents cannot be combined.
    """
    validation = exc.validation
    detail: Dict[str, Any] = {"message": str(exc)}
    if hasattr(validation, "model_dump"):
        detail["validation"] = validation.model_dump(mode="json")
    return _error_response(400, "invalid_document_set", detail)


async def configuration_error_handler(
    request: Request,
    exc: ConfigurationError,
) -> JSONResponse:
    return _error_response(400, "invalid_configuration", str(exc))


async def retrieval_error_handler(
    request: Request,
    exc: RetrievalError,
) -> JSONResponse:
    logger.error(
        "Retrieval failed during request: %s %s (%s)",
        request.method,
        request.url.path,
        exc,
    )
    return _error_response(502, "retrieval_failed", "Similarity search failed")


async def retrieval_timeout_handler(
    request: Request,
    exc: RetrievalTimeoutError,
) -> JSONResponse:
    logger.warning(
        "Retrieval timed out during request: %s %s (%.2fs)",
        request.method,
        request.url.path,
        exc.timeout,
    )
    return _error_response(504, "retrieval_timed_out", str(exc))


async def embedding_error_handler(
    request: Request,
    exc: EmbeddingError,
) -> JSONResponse:
    logger.error(
        "Embedding failed during request: %s %s (%s)",
        request.method,
        request.url.path,
        exc,
    )
    status_code = 429 if isinstance(exc, RateLimitError) else 502
    return _error_response(status_code, "embedding_failed", str(exc))


async def registry_unavailable_handler(
    request: Request,
    exc: RegistryUnavailableError,
) -> JSONResponse:
    return _error_response(503, "registry_unavailable", "Document registry unavailable")


async def chunk_write_error_handler(
    request: Request,
    exc: ChunkWriteError,
) -> JSONResponse:
    return _error_response(
        500,
        "chunk_write_failed",
        {
            "message": str(exc),
            "persisted_count": exc.persisted_count,
            "failed_batch": exc.failed_batch,
        },
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Logs the full stack trace internally and returns a generic 500 with no
    internal details.
    """
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return _error_response(500, "internal_server_error", "Internal server error")


EXCEPTION_HANDLERS = (
    (DocumentNotFoundError, document_not_found_handler),
    (DocumentSetValidationError, document_set_validation_handler),
    (ConfigurationError, configuration_error_handler),
    (RetrievalTimeoutError, retrieval_timeout_handler),
    (RetrievalError, retrieval_error_handler),
    (RegistryUnavailableError, registry_unavailable_handler),
    (ChunkWriteError, chunk_write_error_handler),
    (EmbeddingError, embedding_error_handler),
    (Exception, unhandled_exception_handler),
)
