"""
Document Metadata Store

Access to the `documents` table. The registry reads through it; the
ingestion script registers new documents through it. Each
call opens its own session so the registry can refresh outside of any
request scope.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import DocumentRecord
from ..embeddings.models import EmbeddingModel
from ..registry.models import Document


class DocumentMetadataStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_active_documents(self) -> List[Document]:
        stmt = (
            select(DocumentRecord)
            .where(DocumentRecord.active.is_(True))
            .order_by(DocumentRecord.created_at)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [record.to_document() for record in result.scalars().all()]

    async def create_document(
        self,
        slug: str,
        title: str,
        owner: str,
        embedding_model: EmbeddingModel,
        year: Optional[int] = None,
        chunk_limit_override: Optional[int] = None,
    ) -> Document:
        """Insert a new active document row and return it."""
        record = DocumentRecord(
            id=uuid.uuid4(),
            slug=slug,
            title=title,
            owner=owner,
            embedding_type=embedding_model.value,
            active=True,
            year=year,
            chunk_limit_override=chunk_limit_override,
        )
        async with self._session_factory() as session:
            session.add(record)
            document = record.to_document()
            await session.commit()
        return document

    async def list_documents_by_owner(self, owner: str) -> List[Document]:
        stmt = (
            select(DocumentRecord)
            .where(
                DocumentRecord.owner == owner,
                DocumentRecord.active.is_(True),
            )
            .order_by(DocumentRecord.created_at)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [record.to_document() for record in result.scalars().all()]
