"""Hybrid retrieval engine for HybridKB.

This module provides:
- Chunking strategies (fixed-size, sentence, paragraph)
- Embedding adapters (hashing, OpenAI, local)
- Vector stores (memory, ChromaDB)
- A BM25 lexical index
- Weighted hybrid ranking with graceful degradation
- Knowledge bases, an atomic ingestion pipeline and a service facade

Example:
    ```python
    from hybridkb.rag import KnowledgeBaseService, HashingEmbedding

    service = KnowledgeBaseService(HashingEmbedding())
    service.create_knowledge_base("pets", name="Pets")

    await service.ingest_document(b"Cats are small pets.", "cats.txt", "pets")
    result = await service.query_knowledge_base("pets", "cats", top_k=3)
    print(result.formatted_context)
    ```

For lower-level use:
    ```python
    from hybridkb.rag import BM25Index, chunk_text

    index = BM25Index()
    index.add_documents(chunk_text(text, "notes.md"))
    results = index.search("fox", top_k=5)
    ```
"""

# Data structures
from .document import (
    Chunk,
    ChunkMetadata,
    SearchResult,
    HybridSearchResponse,
    ParsedDocument,
    KnowledgeBaseInfo,
    DocumentRecord,
    ChunkFailure,
    IngestResult,
    QueryContext,
    QueryResult,
)

# Base classes
from .base import (
    BaseEmbedding,
    BaseVectorStore,
    BaseChunker,
    BaseDocumentParser,
)

# Errors
from .exceptions import (
    RAGError,
    ChunkingConfigError,
    EmbeddingServiceError,
    VectorIndexError,
    LexicalIndexError,
    DimensionMismatchError,
    NotFoundError,
    DuplicateKnowledgeBaseError,
    DuplicateChunkError,
    ParseError,
    UnsupportedFileTypeError,
)

# Chunking strategies
from .chunking import (
    ChunkingOptions,
    ChunkingStrategy,
    FixedSizeChunker,
    SentenceChunker,
    ParagraphChunker,
    create_chunker,
    chunk_text,
    chunk_document,
)

# Embedding providers
from .embeddings import (
    HashingEmbedding,
    OpenAIEmbedding,
    LocalEmbedding,
    create_embedding,
)

# Indices
from .vectorstore import (
    MemoryVectorStore,
    ChromaVectorStore,
    cosine_similarity,
    create_vector_store,
)
from .lexical import BM25Index, tokenize

# Retrieval
from .retriever import (
    HybridRetriever,
    HybridSearchOptions,
    fuse_results,
    normalize_scores,
    format_context,
)

# Knowledge bases and ingestion
from .knowledge_base import KnowledgeBase, KnowledgeBaseRegistry, DEFAULT_KNOWLEDGE_BASE_ID
from .parsers import (
    DocumentParser,
    DocxDocumentParser,
    PdfDocumentParser,
    TextDocumentParser,
)
from .pipeline import IngestionPipeline
from .service import KnowledgeBaseService

__all__ = [
    # Data structures
    "Chunk",
    "ChunkMetadata",
    "SearchResult",
    "HybridSearchResponse",
    "ParsedDocument",
    "KnowledgeBaseInfo",
    "DocumentRecord",
    "ChunkFailure",
    "IngestResult",
    "QueryContext",
    "QueryResult",
    # Base classes
    "BaseEmbedding",
    "BaseVectorStore",
    "BaseChunker",
    "BaseDocumentParser",
    # Errors
    "RAGError",
    "ChunkingConfigError",
    "EmbeddingServiceError",
    "VectorIndexError",
    "LexicalIndexError",
    "DimensionMismatchError",
    "NotFoundError",
    "DuplicateKnowledgeBaseError",
    "DuplicateChunkError",
    "ParseError",
    "UnsupportedFileTypeError",
    # Chunking
    "ChunkingOptions",
    "ChunkingStrategy",
    "FixedSizeChunker",
    "SentenceChunker",
    "ParagraphChunker",
    "create_chunker",
    "chunk_text",
    "chunk_document",
    # Embeddings
    "HashingEmbedding",
    "OpenAIEmbedding",
    "LocalEmbedding",
    "create_embedding",
    # Indices
    "MemoryVectorStore",
    "ChromaVectorStore",
    "cosine_similarity",
    "create_vector_store",
    "BM25Index",
    "tokenize",
    # Retrieval
    "HybridRetriever",
    "HybridSearchOptions",
    "fuse_results",
    "normalize_scores",
    "format_context",
    # Knowledge bases and ingestion
    "KnowledgeBase",
    "KnowledgeBaseRegistry",
    "DEFAULT_KNOWLEDGE_BASE_ID",
    "DocumentParser",
    "TextDocumentParser",
    "PdfDocumentParser",
    "DocxDocumentParser",
    "IngestionPipeline",
    "KnowledgeBaseService",
]
