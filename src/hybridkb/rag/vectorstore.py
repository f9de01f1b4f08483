"""Vector store implementations."""

import asyncio
import logging
import math
from typing import Any, Callable, Optional

from .base import BaseVectorStore
from .document import Chunk, ChunkMetadata, SearchResult
from .exceptions import DimensionMismatchError, VectorIndexError

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)


def _check_lengths(chunks: list[Chunk], vectors: list[list[float]]) -> None:
    if len(chunks) != len(vectors):
        raise VectorIndexError(
            f"Number of chunks ({len(chunks)}) must match number of vectors ({len(vectors)})"
        )


class MemoryVectorStore(BaseVectorStore):
    """In-memory brute-force vector store.

    Every search computes the cosine similarity against all stored vectors,
    O(n) per query. The first stored vector fixes the dimension until the
    store is emptied again.
    """

    def __init__(self, namespace: str = "default") -> None:
        """Initialize the memory vector store.

        Args:
            namespace: Name of the knowledge base the store belongs to
        """
        self.namespace = namespace
        self._chunks: dict[str, Chunk] = {}
        self._vectors: dict[str, list[float]] = {}
        self._dimension: Optional[int] = None

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    async def upsert(
        self,
        chunks: list[Chunk],
        vectors: list[list[float]],
    ) -> list[str]:
        """Store chunks with their vectors.

        All checks run before the first write, so a rejected batch leaves
        the store untouched.
        """
        _check_lengths(chunks, vectors)
        if not chunks:
            return []

        dimension = self._dimension if self._dimension is not None else len(vectors[0])
        for vector in vectors:
            if len(vector) != dimension:
                raise DimensionMismatchError(dimension, len(vector))

        ids = []
        for chunk, vector in zip(chunks, vectors):
            self._chunks[chunk.id] = chunk
            self._vectors[chunk.id] = list(vector)
            ids.append(chunk.id)
        self._dimension = dimension

        logger.debug(f"Upserted {len(ids)} vectors into '{self.namespace}'")
        return ids

    async def search(
        self,
        query_vector: list[float],
        top_k: int = 10,
    ) -> list[SearchResult]:
        """Search for similar chunks using cosine similarity."""
        if not self._vectors or top_k <= 0:
            return []

        if len(query_vector) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(query_vector))

        similarities = [
            (chunk_id, cosine_similarity(query_vector, vector))
            for chunk_id, vector in self._vectors.items()
        ]

        # Stable sort: equal similarities keep insertion order
        similarities.sort(key=lambda x: x[1], reverse=True)

        return [
            SearchResult(chunk=self._chunks[chunk_id], score=score)
            for chunk_id, score in similarities[:top_k]
        ]

    async def delete(self, ids: list[str]) -> None:
        """Delete chunks by their IDs."""
        for id in ids:
            self._chunks.pop(id, None)
            self._vectors.pop(id, None)
        if not self._chunks:
            self._dimension = None

    async def delete_by_metadata(self, filter: dict[str, Any]) -> None:
        """Delete chunks whose metadata matches every filter entry."""
        ids = [
            chunk_id for chunk_id, chunk in self._chunks.items()
            if chunk.metadata.matches(filter)
        ]
        await self.delete(ids)

    async def get(self, id: str) -> Optional[Chunk]:
        """Get a chunk by its ID."""
        return self._chunks.get(id)

    async def count(self) -> int:
        """Return the number of chunks."""
        return len(self._chunks)

    async def clear(self) -> None:
        """Clear all chunks."""
        self._chunks.clear()
        self._vectors.clear()
        self._dimension = None


_FIXED_METADATA_KEYS = (
    "source",
    "chunk_index",
    "total_chunks",
    "start_char",
    "end_char",
    "word_count",
    "document_id",
)


def _chunk_from_record(chunk_id: str, content: str, metadata: dict[str, Any]) -> Chunk:
    """Rebuild a chunk from a flattened metadata record."""
    metadata = dict(metadata or {})
    fixed = {key: metadata.pop(key) for key in _FIXED_METADATA_KEYS if key in metadata}
    return Chunk(
        id=chunk_id,
        content=content or "",
        metadata=ChunkMetadata(
            source=fixed.get("source", "unknown"),
            chunk_index=fixed.get("chunk_index", 0),
            total_chunks=fixed.get("total_chunks", 0),
            start_char=fixed.get("start_char", 0),
            end_char=fixed.get("end_char", 0),
            word_count=fixed.get("word_count", 0),
            document_id=fixed.get("document_id"),
            extra=metadata,
        ),
    )


def _where_clause(filter: dict[str, Any]) -> dict[str, Any]:
    if len(filter) == 1:
        return dict(filter)
    return {"$and": [{key: value} for key, value in filter.items()]}


class ChromaVectorStore(BaseVectorStore):
    """ChromaDB vector store implementation.

    Uses one ChromaDB collection (cosine space) per knowledge base.
    Requires the 'vector' extra to be installed.
    """

    def __init__(
        self,
        collection_name: str = "default",
        persist_directory: Optional[str] = None,
    ):
        """Initialize the ChromaDB vector store.

        Args:
            collection_name: Name of the ChromaDB collection
            persist_directory: Directory for persistent storage (None for in-memory)
        """
        self.collection_name = collection_name
        self.persist_directory = persist_directory
        self._client = None
        self._collection = None
        self._dimension: Optional[int] = None

    def _get_client(self):
        """Get or create the ChromaDB client."""
        if self._client is None:
            try:
                import chromadb
            except ImportError:
                raise ImportError(
                    "ChromaDB vector store requires 'chromadb'. "
                    "Install it with: pip install chromadb"
                )

            if self.persist_directory:
                self._client = chromadb.PersistentClient(path=self.persist_directory)
            else:
                self._client = chromadb.Client()
        return self._client

    def _get_collection(self):
        """Get or create the collection."""
        if self._collection is None:
            client = self._get_client()
            self._collection = client.get_or_create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        return self._collection

    async def _run(self, operation: str, func: Callable[[], Any]) -> Any:
        """Run a blocking ChromaDB call in a thread, mapping failures."""
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, func)
        except ImportError:
            raise
        except Exception as e:
            raise VectorIndexError(
                f"ChromaDB {operation} failed on '{self.collection_name}': {e}"
            ) from e

    async def upsert(
        self,
        chunks: list[Chunk],
        vectors: list[list[float]],
    ) -> list[str]:
        """Upsert chunks with vectors into ChromaDB."""
        _check_lengths(chunks, vectors)
        if not chunks:
            return []

        dimension = self._dimension if self._dimension is not None else len(vectors[0])
        for vector in vectors:
            if len(vector) != dimension:
                raise DimensionMismatchError(dimension, len(vector))

        ids = [chunk.id for chunk in chunks]
        documents = [chunk.content for chunk in chunks]
        metadatas = [chunk.metadata.to_flat_dict() for chunk in chunks]
        embeddings = [list(vector) for vector in vectors]

        await self._run(
            "upsert",
            lambda: self._get_collection().upsert(
                ids=ids,
                documents=documents,
                embeddings=embeddings,
                metadatas=metadatas,
            ),
        )
        self._dimension = dimension

        logger.debug(f"Upserted {len(ids)} chunks into ChromaDB collection '{self.collection_name}'")
        return ids

    async def search(
        self,
        query_vector: list[float],
        top_k: int = 10,
    ) -> list[SearchResult]:
        """Search for similar chunks in ChromaDB."""
        if self._dimension is not None and len(query_vector) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(query_vector))

        count = await self.count()
        if count == 0 or top_k <= 0:
            return []

        results = await self._run(
            "query",
            lambda: self._get_collection().query(
                query_embeddings=[query_vector],
                n_results=min(top_k, count),
                include=["documents", "metadatas", "distances"],
            ),
        )

        search_results = []
        if results and results["ids"] and results["ids"][0]:
            for i, chunk_id in enumerate(results["ids"][0]):
                metadata = results["metadatas"][0][i] if results["metadatas"] else {}
                content = results["documents"][0][i] if results["documents"] else ""
                chunk = _chunk_from_record(chunk_id, content, metadata)

                # ChromaDB returns cosine distance, convert to similarity
                distance = results["distances"][0][i] if results["distances"] else 0
                search_results.append(SearchResult(chunk=chunk, score=1 - distance))

        search_results.sort(key=lambda r: r.score, reverse=True)
        return search_results

    async def delete(self, ids: list[str]) -> None:
        """Delete chunks from ChromaDB."""
        if not ids:
            return
        await self._run("delete", lambda: self._get_collection().delete(ids=ids))

    async def delete_by_metadata(self, filter: dict[str, Any]) -> None:
        """Delete chunks matching a metadata filter."""
        if not filter:
            await self.clear()
            return
        where = _where_clause(filter)
        await self._run("delete", lambda: self._get_collection().delete(where=where))

    async def get(self, id: str) -> Optional[Chunk]:
        """Get a chunk by its ID."""
        results = await self._run(
            "get",
            lambda: self._get_collection().get(
                ids=[id],
                include=["documents", "metadatas"],
            ),
        )

        if results and results["ids"]:
            metadata = results["metadatas"][0] if results["metadatas"] else {}
            content = results["documents"][0] if results["documents"] else ""
            return _chunk_from_record(results["ids"][0], content, metadata)

        return None

    async def count(self) -> int:
        """Return the number of chunks in the collection."""
        return await self._run("count", lambda: self._get_collection().count())

    async def clear(self) -> None:
        """Drop the collection; it is recreated on next use."""
        client = self._get_client()
        collection_names = await self._run(
            "list", lambda: [getattr(c, "name", c) for c in client.list_collections()]
        )
        if self.collection_name in collection_names:
            await self._run("clear", lambda: client.delete_collection(self.collection_name))

        self._collection = None
        self._dimension = None


def create_vector_store(
    provider: str = "memory",
    namespace: str = "default",
    **kwargs: Any,
) -> BaseVectorStore:
    """Build the vector store for one knowledge base.

    Args:
        provider: ``memory`` or ``chroma``
        namespace: Knowledge base ID the store belongs to
        **kwargs: ``persist_directory`` and ``collection_prefix`` for ChromaDB

    Raises:
        ValueError: If the provider is unknown
    """
    if provider == "memory":
        return MemoryVectorStore(namespace)
    if provider == "chroma":
        prefix = kwargs.get("collection_prefix", "kb_")
        return ChromaVectorStore(
            collection_name=f"{prefix}{namespace}",
            persist_directory=kwargs.get("persist_directory"),
        )
    raise ValueError(f"Unknown vector store provider: {provider}")
