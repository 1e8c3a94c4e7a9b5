import argparse
import asyncio
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from doc_rag_server.config import settings
from doc_rag_server.core.logging_config import configure_logging
from doc_rag_server.db import AsyncSessionLocal, DocumentMetadataStore
from doc_rag_server.db.schema import create_schema
from doc_rag_server.embeddings.embedder import build_providers
from doc_rag_server.embeddings.models import EmbeddingModel
from doc_rag_server.ingestion.pipeline import IngestionPipeline
from doc_rag_server.registry.cache import RegistryCache
from doc_rag_server.registry.registry import DocumentRegistry


def parse_args():
    parser = argparse.ArgumentParser(
        description="Ingest the extracted text of a document (one file per document)."
    )
    parser.add_argument("slug", help="Document slug")
    parser.add_argument("text_file", help="UTF-8 text extracted from the PDF")
    parser.add_argument("--pages", type=int, required=True, help="Total page count of the source PDF")
    parser.add_argument("--init-db", action="store_true", help="Create the extension and tables first")
    parser.add_argument("--create", action="store_true", help="Register the document if it does not exist")
    parser.add_argument("--title", help="Title for --create")
    parser.add_argument("--owner", help="Owning group for --create")
    parser.add_argument(
        "--model",
        choices=[m.value for m in EmbeddingModel],
        default=EmbeddingModel.OPENAI.value,
        help="Embedding model for --create",
    )
    parser.add_argument("--retry-failures", action="store_true", help="Re-embed failed chunks once")
    return parser.parse_args()


async def main():
    args = parse_args()
    configure_logging(settings.log_level)

    if args.init_db:
        print("Creating schema...")
        await create_schema()

    store = DocumentMetadataStore(AsyncSessionLocal)
    registry = DocumentRegistry(store, RegistryCache(ttl_seconds=settings.registry_ttl_seconds))

    document = await registry.lookup_by_slug(args.slug)
    if document is None:
        if not args.create:
            print(f"Unknown document '{args.slug}'. Use --create --title ... --owner ... to register it.")
            sys.exit(1)
        if not args.title or not args.owner:
            print("--create requires --title and --owner.")
            sys.exit(1)
        document = await store.create_document(
            slug=args.slug,
            title=args.title,
            owner=args.owner,
            embedding_model=EmbeddingModel(args.model),
        )
        print(f"Registered {document.slug} ({document.embedding_model.value}).")

    with open(args.text_file, encoding="utf-8") as f:
        text = f.read()

    async def progress(batch_number, total_batches):
        print(f"Embedding batch {batch_number}/{total_batches}...")

    pipeline = IngestionPipeline(build_providers(settings), AsyncSessionLocal, settings)
    report = await pipeline.ingest(
        document,
        text,
        args.pages,
        progress=progress,
        retry_failures=args.retry_failures,
    )

    print(
        f"Done! {report.persisted_count}/{report.chunk_count} chunks stored "
        f"({report.failed_count} failed, {report.rate_limited_count} rate limited, "
        f"{report.page_markers_found} page markers)."
    )


if __name__ == "__main__":
    asyncio.run(main())
