"""
Document Registry

Serves document metadata to the query path without hitting the document
store on every request, and guards multi-document queries: every document in
a target set must share one owning group and one embedding model.

Refresh policy
--------------
- Lookups refresh first when the cache is stale (TTL expired or invalidated).
- If the store fails and a snapshot exists, the stale snapshot is served and
  a warning is logged.
- If the store fails and no snapshot exists, RegistryUnavailableError is
  raised.
- Concurrent refreshes are not serialized; the last one to finish wins.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Protocol

from .cache import RegistryCache
from .models import (
    Document,
    DocumentSet,
    EmbeddingModelValidation,
    OwnerValidation,
)
from ..core.errors import (
    DocumentNotFoundError,
    DocumentSetValidationError,
    RegistryUnavailableError,
)
from ..embeddings.models import EmbeddingModel

logger = logging.getLogger("rag.registry")


class DocumentStore(Protocol):
    """Backing store for document metadata."""

    async def list_active_documents(self) -> List[Document]:
        ...

    async def list_documents_by_owner(self, owner: str) -> List[Document]:
        ...


def _unique(values: Iterable) -> List:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


class DocumentRegistry:
    """
    Cached view over the active documents.

    Parameters
    ----------
    store : DocumentStore
        Source of truth for document metadata.

    cache : RegistryCache
        Snapshot holder carrying its own TTL.
    """

    def __init__(self, store: DocumentStore, cache: RegistryCache) -> None:
        self._store = store
        self._cache = cache

    @property
    def cache(self) -> RegistryCache:
        return self._cache

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, force: bool = False) -> List[Document]:
        """
        Reload active documents from the store when stale or forced.

        Returns
        -------
        List[Document]
            The snapshot now in effect (fresh, or stale on store failure).

        Raises
        ------
        RegistryUnavailableError
            If the store fails and there is no snapshot to fall back on.
        """
        if not force and not self._cache.is_stale():
            return self._cache.documents

        try:
            documents = await self._store.list_active_documents()
        except Exception as exc:
            if self._cache.has_snapshot:
                logger.warning(
                    "Document store refresh failed (%s); serving stale registry v%d",
                    type(exc).__name__,
                    self._cache.version,
                )
                return self._cache.documents
            raise RegistryUnavailableError(
                f"Could not load documents: {type(exc).__name__}"
            ) from exc

        self._cache.replace(documents)
        logger.info(
            "Loaded %d active documents into registry v%d",
            len(documents),
            self._cache.version,
        )
        return self._cache.documents

    def invalidate(self) -> None:
        self._cache.invalidate()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def active_documents(self) -> List[Document]:
        return await self.refresh()

    async def lookup_by_slug(self, slug: str) -> Optional[Document]:
        """Return the active document with `slug`, or None."""
        for doc in await self.refresh():
            if doc.slug == slug:
                return doc
        logger.debug("Document not found: %s", slug)
        return None

    async def require(self, slug: str) -> Document:
        doc = await self.lookup_by_slug(slug)
        if doc is None:
            raise DocumentNotFoundError(slug)
        return doc

    async def active_slugs(self) -> List[str]:
        return [doc.slug for doc in await self.refresh()]

    async def is_valid_slug(self, slug: str) -> bool:
        return await self.lookup_by_slug(slug) is not None

    async def documents_by_owner(self, owner: str) -> List[Document]:
        """
        Documents of one owning group, read through to the store.

        Falls back to filtering the cached snapshot if the store fails.
        """
        try:
            return await self._store.list_documents_by_owner(owner)
        except Exception as exc:
            if not self._cache.has_snapshot:
                raise RegistryUnavailableError(
                    f"Could not load documents for owner {owner}: {type(exc).__name__}"
                ) from exc
            logger.warning(
                "Owner lookup failed (%s); filtering cached registry",
                type(exc).__name__,
            )
            return [doc for doc in self._cache.documents if doc.owner == owner]

    async def group_by_owner(self) -> Dict[str, List[Document]]:
        grouped: Dict[str, List[Document]] = {}
        for doc in await self.refresh():
            grouped.setdefault(doc.owner, []).append(doc)
        return grouped

    async def documents_by_embedding_model(self, model: EmbeddingModel) -> List[Document]:
        return [doc for doc in await self.refresh() if doc.embedding_model is model]

    # ------------------------------------------------------------------
    # Cross-document validation
    # ------------------------------------------------------------------

    async def _resolve(self, slugs: List[str]) -> tuple[List[Document], List[str]]:
        documents = await self.refresh()
        by_slug = {doc.slug: doc for doc in documents}
        found = [by_slug[s] for s in slugs if s in by_slug]
        missing = [s for s in slugs if s not in by_slug]
        return found, missing

    async def validate_same_owner(self, slugs: List[str]) -> OwnerValidation:
        """
        Check that every slug resolves and all share one owning group.
        """
        slugs = _unique(slugs)
        if not slugs:
            return OwnerValidation(valid=False, error="No documents provided")

        docs, missing = await self._resolve(slugs)
        if missing:
            return OwnerValidation(
                valid=False,
                missing=missing,
                error=f"Documents not found: {', '.join(missing)}",
            )

        owners = _unique(doc.owner for doc in docs)
        if len(owners) > 1:
            return OwnerValidation(
                valid=False,
                owners=owners,
                error=f"Cannot combine documents from different owners: {', '.join(owners)}",
            )

        return OwnerValidation(valid=True, owner=owners[0], owners=owners)

    async def validate_same_embedding_model(self, slugs: List[str]) -> EmbeddingModelValidation:
        """
        Check that every slug resolves and all share one embedding model.
        """
        slugs = _unique(slugs)
        if not slugs:
            return EmbeddingModelValidation(valid=False, error="No documents provided")

        docs, missing = await self._resolve(slugs)
        if missing:
            return EmbeddingModelValidation(
                valid=False,
                missing=missing,
                error=f"Documents not found: {', '.join(missing)}",
            )

        models = _unique(doc.embedding_model for doc in docs)
        if len(models) > 1:
            return EmbeddingModelValidation(
                valid=False,
                embedding_models=models,
                error=(
                    "Cannot combine documents with different embedding models: "
                    + ", ".join(m.value for m in models)
                ),
            )

        return EmbeddingModelValidation(
            valid=True,
            embedding_model=models[0],
            embedding_models=models,
        )

    async def resolve_document_set(self, slugs: List[str]) -> DocumentSet:
        """
        Resolve slugs into a validated DocumentSet.

        Raises
        ------
        DocumentNotFoundError
            If any slug does not resolve to an active document.

        DocumentSetValidationError
            If the documents mix owners or embedding models.
        """
        slugs = _unique(slugs)
        if not slugs:
            raise DocumentSetValidationError(
                "No documents provided",
                OwnerValidation(valid=False, error="No documents provided"),
            )

        docs, missing = await self._resolve(slugs)
        if missing:
            raise DocumentNotFoundError(missing[0])

        owner_check = await self.validate_same_owner(slugs)
        if not owner_check.valid:
            raise DocumentSetValidationError(owner_check.error or "Mixed owners", owner_check)

        model_check = await self.validate_same_embedding_model(slugs)
        if not model_check.valid:
            raise DocumentSetValidationError(
                model_check.error or "Mixed embedding models", model_check
            )

        return DocumentSet(
            documents=docs,
            owner=owner_check.owner,
            embedding_model=model_check.embedding_model,
        )
