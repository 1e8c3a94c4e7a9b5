"""
Embedding Providers

This module implements the embedding providers used at ingestion and query
time. Each provider serves exactly one `EmbeddingModel`:

- `OpenAIEmbedder`: OpenAI embeddings API (1536 dimensions) over httpx.
- `LocalEmbedder`: a sentence-transformers model (384 dimensions) running
  in-process.

Providers are responsible for:

- Network and transport error isolation
- Reporting rate limiting (HTTP 429) distinctly from other failures
- Strict response validation, including vector dimensionality

Providers perform no batching policy, retries or caching; the batch pipeline
owns those concerns.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from .models import EmbeddingModel
from ..config import Settings, settings
from ..core.errors import EmbeddingError, RateLimitError

logger = logging.getLogger("rag.embedder")


class EmbeddingProvider(Protocol):
    """Produces one vector per input text for a single embedding model."""

    model: EmbeddingModel

    async def embed(self, text: str) -> List[float]:
        ...


# ---------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------

class OpenAIEmbedder:
    """
    Asynchronous OpenAI embeddings client.

    The class is stateless apart from its configuration and safe to share
    across concurrent requests.
    """

    model = EmbeddingModel.OPENAI

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize an OpenAIEmbedder.

        Parameters
        ----------
        api_key : Optional[str]
            Override for the API key. Defaults to settings.openai_api_key.

        model_name : Optional[str]
            Override for the embeddings model name.

        base_url : Optional[str]
            Embeddings endpoint URL.

        timeout : Optional[float]
            HTTP timeout per request in seconds.

        client : Optional[httpx.AsyncClient]
            Shared client. When omitted a client is opened per request.
        """
        self.api_key = api_key or settings.openai_api_key.get_secret_value()
        self.model_name = model_name or settings.openai_embedding_model
        self.base_url = base_url or settings.openai_embeddings_url
        self.timeout = timeout or settings.embedding_timeout_seconds
        self._client = client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> List[float]:
        """
        Generate the embedding for a single text.

        Raises
        ------
        RateLimitError
            If the provider answered 429.

        EmbeddingError
            For any other transport, HTTP or format failure.
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text.")

        vectors = await self._request([text])
        if len(vectors) != 1:
            raise EmbeddingError(
                f"Expected 1 embedding, received {len(vectors)}."
            )
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate embeddings for several texts in one request.

        The response must contain exactly one vector per input.
        """
        if not texts:
            return []

        vectors = await self._request(list(texts))
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Mismatch: received {len(vectors)} embeddings for {len(texts)} texts."
            )
        return vectors

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, inputs: List[str]) -> List[List[float]]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = {
            "model": self.model_name,
            "input": inputs,
            "encoding_format": "float",
        }

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.base_url, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        self.base_url, json=payload, headers=headers
                    )
        except httpx.HTTPError as exc:
            logger.error(
                "Embedding request failed (%s): inputs=%d, error=%s",
                type(exc).__name__,
                len(inputs),
                str(exc),
            )
            raise EmbeddingError(
                f"Embedding generation failed: {type(exc).__name__}"
            ) from exc

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("retry-after"))
            raise RateLimitError(
                "Embedding provider rate limit exceeded",
                retry_after=retry_after,
            )

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Embedding request rejected: status=%d, inputs=%d",
                response.status_code,
                len(inputs),
            )
            raise EmbeddingError(
                f"Embedding generation failed: HTTP {response.status_code}"
            ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            logger.error(
                "Embedding response is not JSON: status=%d, content-type=%s",
                response.status_code,
                response.headers.get("content-type", ""),
            )
            raise EmbeddingError("Embedding response is not valid JSON.") from exc

        return _extract_embeddings(data, self.model.dimensions)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _extract_embeddings(data: Dict[str, Any], dimensions: int) -> List[List[float]]:
    """
    Parse and validate embedding output format.

    OpenAI returns:
        { "data": [ {"embedding": [...], "index": 0}, ... ] }
    """
    if not isinstance(data, dict) or "data" not in data:
        raise EmbeddingError("Embedding response missing 'data' field.")

    records = data["data"]
    if not isinstance(records, list):
        raise EmbeddingError("'data' field must be a list.")

    embeddings: List[List[float]] = []

    for index, record in enumerate(records):
        if not isinstance(record, dict) or "embedding" not in record:
            raise EmbeddingError(
                f"Malformed embedding record at index {index}: {record!r}"
            )

        emb = record["embedding"]
        if not isinstance(emb, list) or not all(
            isinstance(x, (float, int)) for x in emb
        ):
            raise EmbeddingError(
                f"Invalid embedding vector at index {index}: must be float list."
            )
        if len(emb) != dimensions:
            raise EmbeddingError(
                f"Embedding at index {index} has {len(emb)} dimensions, expected {dimensions}."
            )

        embeddings.append([float(x) for x in emb])

    return embeddings


# ---------------------------------------------------------------------
# Local (sentence-transformers)
# ---------------------------------------------------------------------

class LocalEmbedder:
    """
    In-process embeddings from a sentence-transformers model.

    The model is loaded on first use and encoding runs in a worker thread so
    the event loop is not blocked.
    """

    model = EmbeddingModel.LOCAL

    def __init__(self, model_name: Optional[str] = None) -> None:
        self.model_name = model_name or settings.local_embedding_model
        self._model = None

    def _load_model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading local embedding model: %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def _encode(self, text: str) -> List[float]:
        vector = self._load_model().encode(
            text,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return [float(x) for x in vector.tolist()]

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text.")

        try:
            vector = await asyncio.to_thread(self._encode, text)
        except Exception as exc:
            raise EmbeddingError(
                f"Local embedding failed: {type(exc).__name__}"
            ) from exc

        if len(vector) != self.model.dimensions:
            raise EmbeddingError(
                f"Local model produced {len(vector)} dimensions, expected {self.model.dimensions}."
            )
        return vector


# ---------------------------------------------------------------------
# Provider wiring
# ---------------------------------------------------------------------

def build_providers(
    config: Optional[Settings] = None,
) -> Dict[EmbeddingModel, EmbeddingProvider]:
    """Return one provider per supported embedding model."""
    config = config or settings
    return {
        EmbeddingModel.OPENAI: OpenAIEmbedder(
            api_key=config.openai_api_key.get_secret_value(),
            model_name=config.openai_embedding_model,
            base_url=config.openai_embeddings_url,
            timeout=config.embedding_timeout_seconds,
        ),
        EmbeddingModel.LOCAL: LocalEmbedder(model_name=config.local_embedding_model),
    }
