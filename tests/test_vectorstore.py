"""Tests for cosine similarity and the vector stores."""

import math
import uuid

import pytest

from hybridkb.rag import (
    ChromaVectorStore,
    DimensionMismatchError,
    MemoryVectorStore,
    VectorIndexError,
    chunk_text,
    cosine_similarity,
    create_vector_store,
)


def make_chunks(*contents: str, source: str = "test.txt"):
    return [
        chunk_text(content, source, document_id=f"doc{i}", metadata={"lang": "en"})[0]
        for i, content in enumerate(contents)
    ]


class TestCosineSimilarity:
    """Tests for cosine similarity."""

    def test_identical_vectors(self):
        """Test similarity of a vector with itself."""
        vec = [0.3, -1.2, 4.5, 0.0]
        assert cosine_similarity(vec, vec) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        """Test orthogonal vectors."""
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        """Test opposite vectors."""
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    def test_symmetric(self):
        """Test that similarity does not depend on argument order."""
        a = [0.1, 0.7, -0.2]
        b = [0.5, -0.3, 0.9]
        assert cosine_similarity(a, b) == cosine_similarity(b, a)

    def test_scale_invariant(self):
        """Test that magnitude does not matter."""
        a = [1.0, 2.0, 3.0]
        b = [2.0, 4.0, 6.0]
        assert cosine_similarity(a, b) == pytest.approx(1.0)

    def test_zero_vector(self):
        """Test that a zero vector has similarity 0."""
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_different_lengths(self):
        """Test that mismatched lengths raise."""
        with pytest.raises(DimensionMismatchError) as exc_info:
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])

        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 3


class TestMemoryVectorStore:
    """Tests for MemoryVectorStore."""

    @pytest.mark.asyncio
    async def test_upsert_and_search(self):
        """Test storing and searching vectors."""
        store = MemoryVectorStore()
        chunks = make_chunks("north", "east", "north-east")
        vectors = [[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]

        ids = await store.upsert(chunks, vectors)
        results = await store.search([1.0, 0.0], top_k=2)

        assert ids == [c.id for c in chunks]
        assert await store.count() == 3
        assert [r.id for r in results] == [chunks[0].id, chunks[2].id]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(1 / math.sqrt(2))

    @pytest.mark.asyncio
    async def test_ties_keep_insertion_order(self):
        """Test that equal similarities keep insertion order."""
        store = MemoryVectorStore()
        chunks = make_chunks("a one", "a two", "a three")
        await store.upsert(chunks, [[1.0, 1.0], [1.0, 1.0], [1.0, 1.0]])

        results = await store.search([1.0, 1.0], top_k=3)

        assert [r.id for r in results] == [c.id for c in chunks]

    @pytest.mark.asyncio
    async def test_upsert_replaces_existing_id(self):
        """Test that upserting an existing ID overwrites it."""
        store = MemoryVectorStore()
        chunks = make_chunks("first")
        await store.upsert(chunks, [[1.0, 0.0]])
        await store.upsert(chunks, [[0.0, 1.0]])

        results = await store.search([0.0, 1.0], top_k=1)

        assert await store.count() == 1
        assert results[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_dimension_fixed_by_first_vector(self):
        """Test that vectors of another dimension are rejected."""
        store = MemoryVectorStore()
        await store.upsert(make_chunks("first"), [[1.0, 0.0, 0.0]])

        with pytest.raises(DimensionMismatchError):
            await store.upsert(make_chunks("second", source="other.txt"), [[1.0, 0.0]])
        with pytest.raises(DimensionMismatchError):
            await store.search([1.0, 0.0])

        assert store.dimension == 3
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_mixed_dimensions_in_batch_rejected_atomically(self):
        """Test that a bad batch writes nothing."""
        store = MemoryVectorStore()

        with pytest.raises(DimensionMismatchError):
            await store.upsert(make_chunks("a", "b"), [[1.0, 0.0], [1.0]])

        assert await store.count() == 0
        assert store.dimension is None

    @pytest.mark.asyncio
    async def test_length_mismatch(self):
        """Test that chunks and vectors must pair up."""
        with pytest.raises(VectorIndexError):
            await MemoryVectorStore().upsert(make_chunks("a", "b"), [[1.0]])

    @pytest.mark.asyncio
    async def test_delete_and_dimension_reset(self):
        """Test deletion and dimension reset when the store empties."""
        store = MemoryVectorStore()
        chunks = make_chunks("a", "b")
        await store.upsert(chunks, [[1.0, 0.0], [0.0, 1.0]])

        await store.delete([chunks[0].id, "unknown"])
        assert await store.count() == 1
        assert await store.get(chunks[0].id) is None

        await store.delete([chunks[1].id])
        assert store.dimension is None
        await store.upsert(chunks[:1], [[1.0, 0.0, 0.0]])
        assert store.dimension == 3

    @pytest.mark.asyncio
    async def test_delete_by_metadata(self):
        """Test deleting chunks by source."""
        store = MemoryVectorStore()
        keep = make_chunks("kept", source="keep.txt")
        drop = chunk_text("dropped", "drop.txt", document_id="other")
        await store.upsert(keep + drop, [[1.0, 0.0], [0.0, 1.0]])

        await store.delete_by_metadata({"source": "drop.txt"})

        assert await store.count() == 1
        assert await store.get(keep[0].id) is not None

    @pytest.mark.asyncio
    async def test_clear(self):
        """Test clearing the store."""
        store = MemoryVectorStore()
        await store.upsert(make_chunks("a"), [[1.0]])

        await store.clear()

        assert await store.count() == 0
        assert await store.search([1.0]) == []

    @pytest.mark.asyncio
    async def test_search_empty_store(self):
        """Test searching an empty store."""
        assert await MemoryVectorStore().search([1.0, 0.0]) == []


class TestCreateVectorStore:
    """Tests for the vector store factory."""

    def test_memory(self):
        """Test the default in-memory store."""
        store = create_vector_store("memory", "kb1")

        assert isinstance(store, MemoryVectorStore)
        assert store.namespace == "kb1"

    def test_chroma_collection_name(self):
        """Test that ChromaDB collections are prefixed per knowledge base."""
        store = create_vector_store("chroma", "kb1", collection_prefix="test_")

        assert isinstance(store, ChromaVectorStore)
        assert store.collection_name == "test_kb1"

    def test_unknown_provider(self):
        """Test an unknown provider."""
        with pytest.raises(ValueError):
            create_vector_store("faiss", "kb1")


class TestChromaVectorStore:
    """Tests for ChromaVectorStore (requires chromadb)."""

    @pytest.mark.asyncio
    async def test_upsert_search_roundtrip_metadata(self):
        """Test that chunk metadata survives storage in ChromaDB."""
        pytest.importorskip("chromadb")
        store = ChromaVectorStore(collection_name=f"test_{uuid.uuid4().hex[:8]}")
        chunks = make_chunks("north", "east")

        await store.upsert(chunks, [[1.0, 0.0], [0.0, 1.0]])
        results = await store.search([1.0, 0.1], top_k=1)

        assert results[0].id == chunks[0].id
        assert results[0].chunk.metadata.source == "test.txt"
        assert results[0].chunk.metadata.extra == {"lang": "en"}

        await store.clear()
        assert await store.count() == 0
