"""Chunk, search result and ingestion data structures."""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

MetadataValue = Union[str, int, float, bool]


def coerce_metadata(values: Optional[dict[str, Any]]) -> dict[str, MetadataValue]:
    """Reduce arbitrary document metadata to the scalar types chunks carry.

    ``None`` values are dropped, lists and tuples are joined with ``", "``
    and anything else that is not a string, number or boolean is ``str()``-ed.
    """
    coerced: dict[str, MetadataValue] = {}
    for key, value in (values or {}).items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            coerced[str(key)] = value
        elif isinstance(value, (list, tuple)):
            coerced[str(key)] = ", ".join(str(v) for v in value)
        else:
            coerced[str(key)] = str(value)
    return coerced


class ChunkMetadata(BaseModel):
    """Provenance of a chunk within its source document.

    Attributes:
        source: Originating document name (usually the filename)
        chunk_index: 0-based position among the chunks of the same source
        total_chunks: Number of chunks produced from the source
        start_char: Start offset into the source text
        end_char: End offset into the source text (exclusive)
        word_count: Whitespace-separated words in the chunk content
        document_id: ID of the ingested document the chunk belongs to
        extra: Caller-supplied document metadata (scalar values only)
    """

    model_config = ConfigDict(frozen=True)

    source: str
    chunk_index: int
    total_chunks: int = 0
    start_char: int
    end_char: int
    word_count: int
    document_id: Optional[str] = None
    extra: dict[str, MetadataValue] = Field(default_factory=dict)

    def to_flat_dict(self) -> dict[str, MetadataValue]:
        """Merge the fixed fields over ``extra`` into one flat mapping."""
        flat: dict[str, MetadataValue] = dict(self.extra)
        flat.update(
            source=self.source,
            chunk_index=self.chunk_index,
            total_chunks=self.total_chunks,
            start_char=self.start_char,
            end_char=self.end_char,
            word_count=self.word_count,
        )
        if self.document_id is not None:
            flat["document_id"] = self.document_id
        return flat

    def matches(self, filter: dict[str, Any]) -> bool:
        """Check whether every filter key is present with an equal value."""
        flat = self.to_flat_dict()
        return all(key in flat and flat[key] == value for key, value in filter.items())


class Chunk(BaseModel):
    """A bounded passage of a source document, the unit of retrieval.

    Chunks are created by the chunkers during ingestion and never modified
    afterwards.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    metadata: ChunkMetadata

    @property
    def source(self) -> str:
        return self.metadata.source

    def __repr__(self) -> str:
        content_preview = self.content[:30] + "..." if len(self.content) > 30 else self.content
        return f"Chunk(id={self.id!r}, source={self.source!r}, content={content_preview!r})"


class SearchResult(BaseModel):
    """A ranked chunk returned by one of the indices or the hybrid ranker.

    Attributes:
        chunk: The matching chunk
        score: Relevance score (higher is better)
        vector_score: Normalized vector contribution, set by hybrid ranking
        keyword_score: Normalized keyword contribution, set by hybrid ranking
    """

    chunk: Chunk
    score: float
    vector_score: Optional[float] = None
    keyword_score: Optional[float] = None

    @property
    def id(self) -> str:
        return self.chunk.id

    @property
    def content(self) -> str:
        return self.chunk.content

    @property
    def source(self) -> str:
        return self.chunk.source

    @property
    def metadata(self) -> dict[str, MetadataValue]:
        return self.chunk.metadata.to_flat_dict()

    def __repr__(self) -> str:
        return f"SearchResult(chunk_id={self.chunk.id!r}, score={self.score:.4f})"


class HybridSearchResponse(BaseModel):
    """Fused results plus a record of any signal that failed.

    ``partial`` is set when one of the two signals could not be queried and
    the results come from the other one alone.
    """

    results: list[SearchResult] = Field(default_factory=list)
    partial: bool = False
    failed_signals: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)


class ParsedDocument(BaseModel):
    """Text and metadata extracted from an uploaded file."""

    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class KnowledgeBaseInfo(BaseModel):
    """Descriptive state of a knowledge base."""

    id: str
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    document_count: int = 0
    chunk_count: int = 0


class DocumentRecord(BaseModel):
    """Bookkeeping for one ingested document inside a knowledge base."""

    id: str
    filename: str
    chunk_ids: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)


class ChunkFailure(BaseModel):
    """A chunk that could not be indexed, and why."""

    chunk_index: int
    chunk_id: str
    reason: str


class IngestResult(BaseModel):
    """Summary of one document ingestion."""

    document_id: str
    filename: str
    knowledge_base_id: str
    chunk_count: int = 0
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_chunks: list[ChunkFailure] = Field(default_factory=list)


class QueryContext(BaseModel):
    """One passage returned to the caller of a knowledge base query."""

    content: str
    score: float
    source: str
    metadata: Optional[dict[str, MetadataValue]] = None


class QueryResult(BaseModel):
    """Passages for a query plus a display-ready context block."""

    contexts: list[QueryContext] = Field(default_factory=list)
    formatted_context: str = ""
    partial: bool = False
    failed_signals: list[str] = Field(default_factory=list)
