"""
Retrieval Routes

Resolves the requested document set, retrieves the top chunks per document
and returns them together with the assembled prompt for a chat-completion
call.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from .dependencies import get_prompt_assembler, get_registry, get_retrieval_engine
from .models import RetrievedChunk, RetrieveRequest, RetrieveResponse
from ..prompts.assembler import PromptAssembler
from ..registry.registry import DocumentRegistry
from ..retrieval.engine import RetrievalEngine

router = APIRouter(tags=["retrieval"])


@router.post(
    "/retrieve",
    response_model=RetrieveResponse,
    summary="Retrieve relevant chunks and build the system prompt",
)
async def retrieve(
    req: RetrieveRequest,
    registry: Annotated[DocumentRegistry, Depends(get_registry)],
    engine: Annotated[RetrievalEngine, Depends(get_retrieval_engine)],
    assembler: Annotated[PromptAssembler, Depends(get_prompt_assembler)],
) -> RetrieveResponse:
    # Mixed owners or models are rejected here, before any embedding call.
    document_set = await registry.resolve_document_set(req.document_slugs)

    result = await engine.retrieve(
        req.query,
        document_set,
        k=req.k,
        mode=req.mode,
        timeout=req.timeout_seconds,
    )
    prompt = assembler.assemble(
        result,
        document_set,
        req.query,
        history=[turn.model_dump() for turn in req.history],
        style=req.style,
    )

    return RetrieveResponse(
        chunks=[RetrievedChunk.from_ranked(chunk) for chunk in result.chunks],
        mode=result.mode,
        embedding_model=result.embedding_model,
        threshold=result.threshold,
        limit_per_document=result.limit_per_document,
        system_prompt=prompt.system_prompt,
        messages=prompt.messages,
    )
