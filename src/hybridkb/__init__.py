"""
HybridKB - Hybrid (vector + BM25) retrieval over named knowledge bases.
"""

from hybridkb.rag import (
    # Service
    KnowledgeBaseService,
    IngestionPipeline,
    KnowledgeBaseRegistry,
    KnowledgeBase,
    # Data structures
    Chunk,
    ChunkMetadata,
    SearchResult,
    IngestResult,
    QueryResult,
    # Retrieval
    HybridRetriever,
    HybridSearchOptions,
    BM25Index,
    # Errors
    RAGError,
)
from hybridkb.utils.config import EngineConfig, load_config

__version__ = "0.1.0"
__all__ = [
    # Service
    "KnowledgeBaseService",
    "IngestionPipeline",
    "KnowledgeBaseRegistry",
    "KnowledgeBase",
    # Data structures
    "Chunk",
    "ChunkMetadata",
    "SearchResult",
    "IngestResult",
    "QueryResult",
    # Retrieval
    "HybridRetriever",
    "HybridSearchOptions",
    "BM25Index",
    # Errors
    "RAGError",
    # Config
    "EngineConfig",
    "load_config",
]
