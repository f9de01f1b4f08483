"""Base classes and abstract interfaces for retrieval components."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from .exceptions import EmbeddingServiceError

if TYPE_CHECKING:
    from .document import Chunk, ParsedDocument, SearchResult

# text-embedding-3-small accepts 8191 tokens; 4 characters per token is a
# conservative proxy that keeps inputs under the limit without a tokenizer.
DEFAULT_MAX_TOKENS = 8191
DEFAULT_CHARS_PER_TOKEN = 4


class BaseEmbedding(ABC):
    """Adapter over an embedding service.

    Subclasses implement ``_embed``; callers use ``embed`` and
    ``embed_batch``, which truncate every input to
    ``max_tokens * chars_per_token`` characters before dispatch and turn
    any failure of the underlying call into ``EmbeddingServiceError``.
    """

    max_tokens: int = DEFAULT_MAX_TOKENS
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN

    @property
    def max_input_chars(self) -> int:
        return self.max_tokens * self.chars_per_token

    def truncate(self, text: str) -> str:
        """Cut text to the character budget of the embedding model."""
        return text[: self.max_input_chars]

    @abstractmethod
    async def _embed(self, texts: list[str]) -> list[list[float]]:
        """Embed already-truncated texts.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text, in order
        """
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of the embedding vectors."""
        pass

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingServiceError: If the embedding call fails
        """
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of texts in one batched call.

        Raises:
            EmbeddingServiceError: If the embedding call fails or returns
                the wrong number of vectors
        """
        if not texts:
            return []

        truncated = [self.truncate(text) for text in texts]
        try:
            vectors = await self._embed(truncated)
        except (EmbeddingServiceError, ImportError):
            raise
        except Exception as e:
            raise EmbeddingServiceError(f"Embedding call failed: {e}") from e

        if len(vectors) != len(texts):
            raise EmbeddingServiceError(
                f"Embedding service returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors


class BaseVectorStore(ABC):
    """Abstract base class for vector indices.

    A vector index stores chunk-id to vector associations for one
    knowledge base together with the chunk itself, so that search results
    can be materialized without a second lookup.
    """

    @abstractmethod
    async def upsert(
        self,
        chunks: list["Chunk"],
        vectors: list[list[float]],
    ) -> list[str]:
        """Insert or replace chunks with their vectors.

        Args:
            chunks: Chunks to store
            vectors: Vectors for ``chunks``, same length and order

        Returns:
            List of stored chunk IDs

        Raises:
            VectorIndexError: If the lists differ in length
            DimensionMismatchError: If a vector has the wrong dimension
        """
        pass

    @abstractmethod
    async def search(
        self,
        query_vector: list[float],
        top_k: int = 10,
    ) -> list["SearchResult"]:
        """Return the ``top_k`` chunks most similar to ``query_vector``.

        Results are sorted by descending cosine similarity.
        """
        pass

    @abstractmethod
    async def delete(self, ids: list[str]) -> None:
        """Delete chunks by their IDs. Unknown IDs are ignored."""
        pass

    @abstractmethod
    async def delete_by_metadata(self, filter: dict[str, Any]) -> None:
        """Delete every chunk whose flattened metadata matches ``filter``."""
        pass

    @abstractmethod
    async def get(self, id: str) -> Optional["Chunk"]:
        """Get a chunk by its ID, or None."""
        pass

    @abstractmethod
    async def count(self) -> int:
        """Return the number of stored chunks."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every chunk from the index."""
        pass


class BaseChunker(ABC):
    """Abstract base class for chunking strategies."""

    strategy: str = ""

    @abstractmethod
    def chunk(
        self,
        text: str,
        source: str,
        document_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> list["Chunk"]:
        """Split text into chunks.

        Args:
            text: Source text
            source: Name of the originating document
            document_id: ID prefix for the chunks (random if omitted)
            metadata: Document metadata copied into every chunk

        Returns:
            List of chunks with ``total_chunks`` filled in
        """
        pass


class BaseDocumentParser(ABC):
    """Turns an uploaded file into text plus metadata."""

    @abstractmethod
    def supports(self, filename: str) -> bool:
        """Return True if this parser handles the file type of ``filename``."""
        pass

    @abstractmethod
    async def parse(self, data: bytes, filename: str) -> "ParsedDocument":
        """Extract text and metadata.

        Raises:
            UnsupportedFileTypeError: If the file type is not handled
            ParseError: If the content cannot be decoded
        """
        pass
