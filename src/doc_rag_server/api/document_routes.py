"""
Document Routes

Registry listing, forced refresh, and ingestion of extracted document text.
Text extraction (PDF to text) happens upstream; callers post the raw text
and the page count.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from .dependencies import get_ingestion_pipeline, get_registry
from .models import DocumentListResponse, DocumentSummary, IngestRequest, RefreshResponse
from ..ingestion.pipeline import IngestionPipeline, IngestionReport
from ..registry.registry import DocumentRegistry

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get(
    "",
    response_model=DocumentListResponse,
    summary="List active documents",
)
async def list_documents(
    registry: Annotated[DocumentRegistry, Depends(get_registry)],
) -> DocumentListResponse:
    documents = await registry.active_documents()
    return DocumentListResponse(
        documents=[DocumentSummary.from_document(doc) for doc in documents],
        cache_version=registry.cache.version,
    )


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    summary="Reload the document registry",
)
async def refresh_documents(
    registry: Annotated[DocumentRegistry, Depends(get_registry)],
) -> RefreshResponse:
    documents = await registry.refresh(force=True)
    return RefreshResponse(count=len(documents), cache_version=registry.cache.version)


@router.post(
    "/{slug}/ingest",
    response_model=IngestionReport,
    status_code=status.HTTP_201_CREATED,
    summary="Chunk, embed and store a document's text",
)
async def ingest_document(
    slug: str,
    req: IngestRequest,
    registry: Annotated[DocumentRegistry, Depends(get_registry)],
    pipeline: Annotated[IngestionPipeline, Depends(get_ingestion_pipeline)],
) -> IngestionReport:
    """
    Ingest `req.text` for the registered document `slug`.

    Item-level embedding failures are reported in the response counts. A
    document where nothing could be embedded, or a failed insert batch, is
    mapped to an error response by the global handlers.
    """
    document = await registry.require(slug)
    return await pipeline.ingest(
        document,
        req.text,
        req.total_pages,
        replace_existing=req.replace_existing,
        retry_failures=req.retry_failures,
    )
