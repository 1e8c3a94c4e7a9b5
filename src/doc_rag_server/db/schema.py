"""
Database schema creation.

Creates the pgvector extension and every table registered on `Base`.
Idempotent: existing tables are left unchanged.

Usage:
    python -m doc_rag_server.db.schema
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from .models import Base
from .session import async_engine

logger = logging.getLogger("rag.db")


async def create_schema(engine: AsyncEngine = async_engine) -> None:
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema created: %s", ", ".join(sorted(Base.metadata.tables)))


async def drop_schema(engine: AsyncEngine = async_engine) -> None:
    """Drop all tables. Development only: irreversible."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


if __name__ == "__main__":
    asyncio.run(create_schema())
