"""Tests for the Chroma chunk store, run against an in-process Chroma client."""

from __future__ import annotations

import math
import uuid

import chromadb
import pytest
from conftest import FakeEmbeddings

from knowledge_base.ingestion.coordinator import IngestionCoordinator
from knowledge_base.ingestion.embedder import EmbeddingClient
from knowledge_base.models import ChunkMetadata, ChunkRecord, DocumentStatus, KnowledgeDocument
from knowledge_base.retrieval.chroma_store import ChromaChunkStore, _build_where
from knowledge_base.retrieval.memory_store import InMemoryDocumentStore

QUERY_VECTOR = [1.0, 0.0]


def _unit(score: float) -> list[float]:
    return [score, math.sqrt(1.0 - score * score)]


def _record(
    document_id: str,
    index: int = 0,
    *,
    tenant_id: str = "tenant-a",
    content: str = "",
    embedding: list[float] | None = None,
    category_id: str | None = None,
) -> ChunkRecord:
    content = content or f"{document_id} chunk {index}"
    return ChunkRecord(
        document_id=document_id,
        tenant_id=tenant_id,
        chunk_index=index,
        content=content,
        embedding=embedding,
        metadata=ChunkMetadata.from_content(content),
        category_id=category_id,
        document_title=f"Title of {document_id}",
    )


@pytest.fixture(scope="module")
def chroma_client():
    return chromadb.EphemeralClient()


@pytest.fixture()
def store(chroma_client) -> ChromaChunkStore:
    return ChromaChunkStore(f"test-{uuid.uuid4().hex[:12]}", client=chroma_client, dimensions=2)


class TestBuildWhere:
    def test_tenant_only(self) -> None:
        assert _build_where("t", None, embedded_only=False) == {"tenant_id": {"$eq": "t"}}

    def test_all_clauses(self) -> None:
        where = _build_where("t", ["a", "b"], embedded_only=True)
        assert where == {
            "$and": [
                {"tenant_id": {"$eq": "t"}},
                {"category_id": {"$in": ["a", "b"]}},
                {"embedded": {"$eq": True}},
            ]
        }

    def test_empty_category_list_is_ignored(self) -> None:
        assert _build_where("t", [], embedded_only=False) == {"tenant_id": {"$eq": "t"}}


class TestChromaChunkStore:
    @pytest.mark.asyncio
    async def test_insert_and_select_round_trip(self, store: ChromaChunkStore) -> None:
        records = [
            _record("doc", 1, embedding=_unit(0.2), category_id="faq"),
            _record("doc", 0, embedding=_unit(0.4), category_id="faq"),
        ]
        inserted = await store.insert_chunks(records)
        assert [c.id for c in inserted] == ["doc:1", "doc:0"]

        chunks = await store.select_chunks_for_document("doc")

        assert [c.chunk_index for c in chunks] == [0, 1]
        first = chunks[0]
        assert first.id == "doc:0"
        assert first.tenant_id == "tenant-a"
        assert first.category_id == "faq"
        assert first.document_title == "Title of doc"
        assert first.content == "doc chunk 0"
        assert first.metadata.char_count == len("doc chunk 0")
        assert first.embedding == pytest.approx(_unit(0.4), abs=1e-6)
        assert first.created_at == inserted[1].created_at

    @pytest.mark.asyncio
    async def test_insert_empty_is_noop(self, store: ChromaChunkStore) -> None:
        assert await store.insert_chunks([]) == []

    @pytest.mark.asyncio
    async def test_delete_is_scoped_to_document(self, store: ChromaChunkStore) -> None:
        await store.insert_chunks(
            [
                _record("a", 0, embedding=_unit(0.1)),
                _record("a", 1, embedding=_unit(0.2)),
                _record("b", 0, embedding=_unit(0.3)),
            ]
        )

        assert await store.delete_chunks_for_document("a") == 2
        assert await store.delete_chunks_for_document("a") == 0
        assert await store.select_chunks_for_document("a") == []
        assert len(await store.select_chunks_for_document("b")) == 1

    @pytest.mark.asyncio
    async def test_reinsert_overwrites_same_ids(self, store: ChromaChunkStore) -> None:
        await store.insert_chunks([_record("a", 0, content="old text", embedding=_unit(0.1))])
        await store.insert_chunks([_record("a", 0, content="new text", embedding=_unit(0.1))])

        chunks = await store.select_chunks_for_document("a")
        assert [c.content for c in chunks] == ["new text"]

    @pytest.mark.asyncio
    async def test_similarity_search_ranks_and_filters(self, store: ChromaChunkStore) -> None:
        await store.insert_chunks(
            [
                _record("a", embedding=_unit(0.9)),
                _record("b", embedding=_unit(0.5)),
                _record("c", embedding=_unit(0.85)),
            ]
        )

        results = await store.similarity_search("tenant-a", QUERY_VECTOR, limit=5, min_score=0.8)

        assert [r.chunk.document_id for r in results] == ["a", "c"]
        assert [r.score for r in results] == pytest.approx([0.9, 0.85], abs=1e-4)

    @pytest.mark.asyncio
    async def test_similarity_search_respects_limit(self, store: ChromaChunkStore) -> None:
        await store.insert_chunks([_record(f"d{i}", embedding=_unit(i / 10)) for i in range(1, 8)])

        results = await store.similarity_search("tenant-a", QUERY_VECTOR, limit=2)

        assert [r.chunk.document_id for r in results] == ["d7", "d6"]

    @pytest.mark.asyncio
    async def test_unembedded_chunks_are_text_searchable_only(self, store: ChromaChunkStore) -> None:
        await store.insert_chunks(
            [
                _record("vec", content="refund policy with vector", embedding=_unit(0.6)),
                _record("novec", content="refund window without vector"),
            ]
        )

        vector_hits = await store.similarity_search("tenant-a", QUERY_VECTOR, min_score=-1.0)
        text_hits = await store.text_search("tenant-a", "refund window")

        assert [r.chunk.document_id for r in vector_hits] == ["vec"]
        assert [r.chunk.document_id for r in text_hits] == ["novec", "vec"]
        assert [r.score for r in text_hits] == pytest.approx([1.0, 0.5])

        [stored] = await store.select_chunks_for_document("novec")
        assert stored.embedding is None
        assert not stored.has_embedding

    @pytest.mark.asyncio
    async def test_unembedded_batch_uses_configured_dimensions(self, store: ChromaChunkStore) -> None:
        await store.insert_chunks([_record("novec", 0), _record("novec", 1)])
        await store.insert_chunks([_record("vec", embedding=_unit(0.7))])

        results = await store.similarity_search("tenant-a", QUERY_VECTOR)

        assert [r.chunk.document_id for r in results] == ["vec"]

    @pytest.mark.asyncio
    async def test_tenant_and_category_filters(self, store: ChromaChunkStore) -> None:
        await store.insert_chunks(
            [
                _record("policy", embedding=_unit(0.5), category_id="policies"),
                _record("faq", embedding=_unit(0.6), category_id="faq"),
                _record("loose", embedding=_unit(0.7)),
                _record("theirs", tenant_id="tenant-b", embedding=_unit(0.99), category_id="policies"),
            ]
        )

        everything = await store.similarity_search("tenant-a", QUERY_VECTOR)
        policies = await store.similarity_search("tenant-a", QUERY_VECTOR, category_ids=["policies"])
        both = await store.similarity_search("tenant-a", QUERY_VECTOR, category_ids=["policies", "faq"])

        assert [r.chunk.document_id for r in everything] == ["loose", "faq", "policy"]
        assert [r.chunk.document_id for r in policies] == ["policy"]
        assert [r.chunk.document_id for r in both] == ["faq", "policy"]
        assert everything[0].chunk.category_id is None

    @pytest.mark.asyncio
    async def test_upsert_batching(self, chroma_client) -> None:
        store = ChromaChunkStore(
            f"test-{uuid.uuid4().hex[:12]}",
            client=chroma_client,
            dimensions=2,
            upsert_batch_size=2,
        )
        await store.insert_chunks([_record("d", i, embedding=_unit(0.5)) for i in range(5)])

        chunks = await store.select_chunks_for_document("d")

        assert [c.chunk_index for c in chunks] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_health_check(self, store: ChromaChunkStore) -> None:
        assert await store.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_reports_failure(self, store: ChromaChunkStore) -> None:
        class DeadClient:
            def heartbeat(self) -> int:
                raise ConnectionError("refused")

        store._client = DeadClient()
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_update_embeddings_keeps_chunks(self, store: ChromaChunkStore) -> None:
        await store.insert_chunks([_record("d", 0), _record("d", 1, content="second chunk")])
        assert await store.similarity_search("tenant-a", QUERY_VECTOR, min_score=-1.0) == []

        updated = await store.update_embeddings("d", {1: _unit(0.8), 5: _unit(0.3)})

        chunks = await store.select_chunks_for_document("d")
        assert updated == 1
        assert [c.has_embedding for c in chunks] == [False, True]
        assert chunks[1].content == "second chunk"
        assert chunks[1].document_title == "Title of d"
        results = await store.similarity_search("tenant-a", QUERY_VECTOR, min_score=-1.0)
        assert [r.chunk.id for r in results] == ["d:1"]
        assert results[0].score == pytest.approx(0.8, abs=1e-4)

    @pytest.mark.asyncio
    async def test_update_embeddings_unknown_document(self, store: ChromaChunkStore) -> None:
        assert await store.update_embeddings("missing", {0: _unit(0.5)}) == 0
        assert await store.update_embeddings("missing", {}) == 0


class TestPlaceholderDimensions:
    """Placeholder vectors follow the collection, not the configured length."""

    @pytest.mark.asyncio
    async def test_unembedded_document_indexes_after_smaller_vectors(self, chroma_client) -> None:
        store = ChromaChunkStore(f"test-{uuid.uuid4().hex[:12]}", client=chroma_client, dimensions=1536)
        embedded = KnowledgeDocument(id="with-vec", tenant_id="tenant-a", title="Vectors", content="Refunds take thirty days.")
        degraded = KnowledgeDocument(id="no-vec", tenant_id="tenant-a", title="Fallback", content="Shipping takes a week.")
        docs = InMemoryDocumentStore([embedded, degraded])

        first = await IngestionCoordinator(docs, store, EmbeddingClient(FakeEmbeddings(8))).ingest("with-vec", "tenant-a")
        second = await IngestionCoordinator(docs, store, EmbeddingClient(FakeEmbeddings(8, fail=True))).ingest(
            "no-vec", "tenant-a"
        )

        assert first.success and first.embedded
        assert second.success is True
        assert second.embedded is False
        assert (await docs.get_document("no-vec", "tenant-a")).status == DocumentStatus.INDEXED
        [chunk] = await store.select_chunks_for_document("no-vec")
        assert chunk.embedding is None
        assert [r.chunk.document_id for r in await store.text_search("tenant-a", "shipping")] == ["no-vec"]

    @pytest.mark.asyncio
    async def test_reopened_store_reads_length_from_collection(self, chroma_client) -> None:
        name = f"test-{uuid.uuid4().hex[:12]}"
        await ChromaChunkStore(name, client=chroma_client, dimensions=2).insert_chunks([_record("vec", embedding=_unit(0.6))])

        reopened = ChromaChunkStore(name, client=chroma_client, dimensions=1536)
        await reopened.insert_chunks([_record("novec")])

        [chunk] = await reopened.select_chunks_for_document("novec")
        assert chunk.embedding is None
        hits = await reopened.similarity_search("tenant-a", QUERY_VECTOR, min_score=-1.0)
        assert [r.chunk.document_id for r in hits] == ["vec"]
