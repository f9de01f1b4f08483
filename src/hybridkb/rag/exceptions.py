"""
Retrieval engine exceptions.
"""

from typing import Optional


class RAGError(Exception):
    """Base exception for retrieval engine errors."""

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ChunkingConfigError(RAGError):
    """Raised for an invalid chunk size, overlap or strategy.

    Always a caller bug; never retried.
    """

    def __init__(self, message: str):
        super().__init__(message, code=1001)


class EmbeddingServiceError(RAGError):
    """Raised when the embedding service fails or times out.

    Transient: the ingestion pipeline retries it with backoff.
    """

    def __init__(
        self,
        message: str = "Embedding service call failed",
        failed_indices: Optional[list[int]] = None,
    ):
        self.failed_indices = failed_indices
        super().__init__(message, code=1002)


class VectorIndexError(RAGError):
    """Raised when the vector index rejects or fails an operation."""

    def __init__(self, message: str):
        super().__init__(message, code=1003)


class LexicalIndexError(RAGError):
    """Raised when the lexical index rejects or fails an update."""

    def __init__(self, message: str):
        super().__init__(message, code=1004)


class DimensionMismatchError(RAGError):
    """Raised when two vectors that must be compared differ in length."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}",
            code=1005,
        )


class NotFoundError(RAGError):
    """Raised when a knowledge base id is unknown."""

    def __init__(self, knowledge_base_id: str):
        self.knowledge_base_id = knowledge_base_id
        super().__init__(f"Knowledge base '{knowledge_base_id}' not found", code=1006)


class DuplicateKnowledgeBaseError(RAGError):
    """Raised when creating a knowledge base whose id is already taken."""

    def __init__(self, knowledge_base_id: str):
        self.knowledge_base_id = knowledge_base_id
        super().__init__(f"Knowledge base '{knowledge_base_id}' already exists", code=1007)


class DuplicateChunkError(RAGError):
    """Raised when indexing chunk ids that a knowledge base already holds."""

    def __init__(self, knowledge_base_id: str, chunk_ids: list[str]):
        self.knowledge_base_id = knowledge_base_id
        self.chunk_ids = chunk_ids
        super().__init__(
            f"Chunks already indexed in '{knowledge_base_id}': {', '.join(chunk_ids)}",
            code=1010,
        )


class ParseError(RAGError):
    """Raised when a document cannot be turned into text."""

    def __init__(self, filename: str, message: str):
        self.filename = filename
        super().__init__(f"Failed to parse '{filename}': {message}", code=1008)


class UnsupportedFileTypeError(RAGError):
    """Raised when no parser handles the document's file type."""

    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"Unsupported file type: '{filename}'", code=1009)
