"""
Document Registry Tests

Covers the TTL cache, stale-on-failure refresh, lookups and multi-document
validation.
"""

import pytest

from conftest import FakeDocumentStore, make_document
from doc_rag_server.core.errors import (
    DocumentNotFoundError,
    DocumentSetValidationError,
    RegistryUnavailableError,
)
from doc_rag_server.embeddings.models import EmbeddingModel
from doc_rag_server.registry.cache import RegistryCache
from doc_rag_server.registry.registry import DocumentRegistry


class TestRegistryCache:

    def test_new_cache_is_stale(self, clock):
        cache = RegistryCache(ttl_seconds=60, clock=clock)
        assert cache.is_stale()
        assert not cache.has_snapshot
        assert cache.version == 0

    def test_ttl_expiry(self, clock):
        cache = RegistryCache(ttl_seconds=60, clock=clock)
        cache.replace([make_document("a")])

        clock.advance(59)
        assert not cache.is_stale()
        clock.advance(1)
        assert cache.is_stale()

    def test_replace_bumps_version(self, clock):
        cache = RegistryCache(clock=clock)
        cache.replace([])
        cache.replace([make_document("a")])
        assert cache.version == 2

    def test_invalidate_keeps_snapshot(self, clock):
        cache = RegistryCache(clock=clock)
        cache.replace([make_document("a")])
        cache.invalidate()

        assert cache.is_stale()
        assert cache.has_snapshot
        assert [d.slug for d in cache.documents] == ["a"]


class TestRefresh:

    async def test_fresh_cache_does_not_hit_store(self, registry, store):
        await registry.active_documents()
        await registry.active_documents()
        assert store.calls == 1

    async def test_expired_cache_reloads(self, registry, store, clock):
        await registry.active_documents()
        clock.advance(301)
        await registry.active_documents()
        assert store.calls == 2

    async def test_store_failure_serves_stale_snapshot(self, registry, store, clock):
        first = await registry.active_documents()
        store.fail = True
        clock.advance(1000)

        assert await registry.active_documents() == first

    async def test_store_failure_without_snapshot_raises(self, registry, store):
        store.fail = True
        with pytest.raises(RegistryUnavailableError):
            await registry.active_documents()

    async def test_force_refresh_picks_up_new_documents(self, registry, store):
        await registry.active_documents()
        store.documents.append(make_document("new"))

        assert not await registry.is_valid_slug("new")
        await registry.refresh(force=True)
        assert await registry.is_valid_slug("new")

    async def test_independent_registries_do_not_share_state(self, clock):
        a = DocumentRegistry(FakeDocumentStore([make_document("a")]), RegistryCache(clock=clock))
        b = DocumentRegistry(FakeDocumentStore([make_document("b")]), RegistryCache(clock=clock))

        assert await a.active_slugs() == ["a"]
        assert await b.active_slugs() == ["b"]


class TestLookups:

    async def test_lookup_by_slug(self, registry):
        doc = await registry.lookup_by_slug("smh")
        assert doc is not None and doc.owner == "ukidney"
        assert await registry.lookup_by_slug("nope") is None

    async def test_require_raises_for_unknown(self, registry):
        with pytest.raises(DocumentNotFoundError):
            await registry.require("nope")

    async def test_inactive_documents_are_hidden(self, clock):
        hidden = make_document("old").model_copy(update={"active": False})
        registry = DocumentRegistry(FakeDocumentStore([hidden]), RegistryCache(clock=clock))
        assert await registry.lookup_by_slug("old") is None

    async def test_group_by_owner(self, registry):
        groups = await registry.group_by_owner()
        assert sorted(groups) == ["uhn", "ukidney"]
        assert [d.slug for d in groups["ukidney"]] == ["smh", "smh-tx", "local-doc"]

    async def test_documents_by_embedding_model(self, registry):
        local = await registry.documents_by_embedding_model(EmbeddingModel.LOCAL)
        assert [d.slug for d in local] == ["local-doc"]

    async def test_documents_by_owner_falls_back_to_cache(self, registry, store):
        await registry.active_documents()
        store.fail = True

        docs = await registry.documents_by_owner("uhn")
        assert [d.slug for d in docs] == ["uhn"]


class TestValidateSameOwner:

    async def test_different_owners_named(self, registry):
        result = await registry.validate_same_owner(["smh", "uhn"])

        assert not result.valid
        assert set(result.owners) == {"ukidney", "uhn"}
        assert "ukidney" in result.error and "uhn" in result.error

    async def test_same_owner(self, registry):
        result = await registry.validate_same_owner(["smh", "smh-tx"])

        assert result.valid
        assert result.owner == "ukidney"

    async def test_empty_list(self, registry):
        result = await registry.validate_same_owner([])
        assert not result.valid
        assert result.error == "No documents provided"

    async def test_missing_slugs_listed(self, registry):
        result = await registry.validate_same_owner(["smh", "ghost"])
        assert not result.valid
        assert result.missing == ["ghost"]


class TestValidateSameEmbeddingModel:

    async def test_mixed_models_named(self, registry):
        result = await registry.validate_same_embedding_model(["smh", "local-doc"])

        assert not result.valid
        assert set(result.embedding_models) == {EmbeddingModel.OPENAI, EmbeddingModel.LOCAL}
        assert "openai" in result.error and "local" in result.error

    async def test_same_model(self, registry):
        result = await registry.validate_same_embedding_model(["smh", "smh-tx"])
        assert result.valid
        assert result.embedding_model is EmbeddingModel.OPENAI


class TestResolveDocumentSet:

    async def test_valid_set(self, registry):
        document_set = await registry.resolve_document_set(["smh", "smh-tx", "smh"])

        assert document_set.slugs == ["smh", "smh-tx"]
        assert document_set.owner == "ukidney"
        assert document_set.is_multi

    async def test_mixed_owner_rejected(self, registry):
        with pytest.raises(DocumentSetValidationError) as excinfo:
            await registry.resolve_document_set(["smh", "uhn"])
        assert not excinfo.value.validation.valid

    async def test_mixed_model_rejected(self, registry):
        with pytest.raises(DocumentSetValidationError):
            await registry.resolve_document_set(["smh", "local-doc"])

    async def test_unknown_slug(self, registry):
        with pytest.raises(DocumentNotFoundError):
            await registry.resolve_document_set(["smh", "ghost"])
