"""Document chunking strategies.

Three strategies are available and they treat overlap
differently:

- ``fixed`` slides a character window and overlaps consecutive chunks by
  exactly ``chunk_overlap`` characters.
- ``sentence`` carries the last one or two sentences of a chunk into the
  next one, as long as they fit in ``chunk_overlap`` characters, so the
  overlap is approximate.
- ``paragraph`` never splits a paragraph and carries no overlap at all.

Every chunk's content is a contiguous slice of the source text and
``start_char``/``end_char`` are exact offsets of that slice.
"""

import logging
import re
import uuid
from enum import Enum
from typing import Any, Optional

from hybridkb.utils.config import ChunkingOptions

from .base import BaseChunker
from .document import Chunk, ChunkMetadata, coerce_metadata
from .exceptions import ChunkingConfigError

logger = logging.getLogger(__name__)

_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

Span = tuple[int, int]


class ChunkingStrategy(str, Enum):
    """Names of the available chunking strategies."""

    FIXED = "fixed"
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"


def _check_sizes(chunk_size: int, chunk_overlap: int) -> None:
    if chunk_size <= 0:
        raise ChunkingConfigError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise ChunkingConfigError(f"chunk_overlap must not be negative, got {chunk_overlap}")
    if chunk_overlap >= chunk_size:
        raise ChunkingConfigError(
            f"chunk_overlap ({chunk_overlap}) must be less than chunk_size ({chunk_size})"
        )


def validate_options(options: ChunkingOptions) -> ChunkingStrategy:
    """Reject invalid options before any chunking happens.

    Returns:
        The parsed strategy

    Raises:
        ChunkingConfigError: For a non-positive size, a negative overlap,
            an overlap not smaller than the size, or an unknown strategy
    """
    _check_sizes(options.chunk_size, options.chunk_overlap)
    try:
        return ChunkingStrategy(options.strategy)
    except ValueError:
        valid = ", ".join(s.value for s in ChunkingStrategy)
        raise ChunkingConfigError(
            f"Unknown chunking strategy '{options.strategy}' (expected one of: {valid})"
        ) from None


def _strip_span(text: str, start: int, end: int) -> Optional[Span]:
    """Shrink a span to exclude surrounding whitespace; None if nothing is left."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start >= end:
        return None
    return start, end


def _build_chunks(
    text: str,
    spans: list[Span],
    source: str,
    document_id: Optional[str],
    metadata: Optional[dict[str, Any]],
) -> list[Chunk]:
    """Materialize spans into chunks, filling in ``total_chunks``."""
    document_id = document_id or uuid.uuid4().hex[:12]
    extra = coerce_metadata(metadata)
    total = len(spans)

    chunks = []
    for index, (start, end) in enumerate(spans):
        content = text[start:end]
        chunks.append(Chunk(
            id=f"{document_id}_chunk_{index}",
            content=content,
            metadata=ChunkMetadata(
                source=source,
                chunk_index=index,
                total_chunks=total,
                start_char=start,
                end_char=end,
                word_count=len(content.split()),
                document_id=document_id,
                extra=extra,
            ),
        ))
    return chunks


class FixedSizeChunker(BaseChunker):
    """Split text into fixed-size character windows with exact overlap."""

    strategy = ChunkingStrategy.FIXED.value

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200):
        """Initialize the fixed-size chunker.

        Args:
            chunk_size: Characters per chunk
            chunk_overlap: Characters shared by consecutive chunks

        Raises:
            ChunkingConfigError: If ``chunk_overlap >= chunk_size``
        """
        _check_sizes(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def spans(self, text: str) -> list[Span]:
        if not text.strip():
            return []

        spans = []
        length = len(text)
        start = 0

        while start < length:
            end = min(start + self.chunk_size, length)
            spans.append((start, end))

            # The next window starts inside this one; once it would only
            # repeat the overlap, the text is exhausted.
            start = end - self.chunk_overlap
            if start >= length - self.chunk_overlap:
                break

        return spans

    def chunk(
        self,
        text: str,
        source: str,
        document_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> list[Chunk]:
        """Split text into fixed-size chunks."""
        return _build_chunks(text, self.spans(text), source, document_id, metadata)


class SentenceChunker(BaseChunker):
    """Group whole sentences into chunks of at most ``chunk_size`` characters.

    When a chunk is closed, its last one or two sentences seed the next
    chunk, provided they fit within ``chunk_overlap`` characters. A single
    sentence longer than ``chunk_size`` becomes its own chunk.
    """

    strategy = ChunkingStrategy.SENTENCE.value

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200):
        _check_sizes(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def _sentences(self, text: str) -> list[Span]:
        sentences = []
        for match in _SENTENCE_PATTERN.finditer(text):
            span = _strip_span(text, match.start(), match.end())
            if span is not None:
                sentences.append(span)
        return sentences

    def _overlap_seed(self, current: list[Span]) -> list[Span]:
        """Pick the trailing sentences carried into the next chunk."""
        for count in (2, 1):
            # The seed must be shorter than the chunk it comes from.
            if count >= len(current):
                continue
            tail = current[-count:]
            if tail[-1][1] - tail[0][0] <= self.chunk_overlap:
                return list(tail)
        return []

    def spans(self, text: str) -> list[Span]:
        spans: list[Span] = []
        current: list[Span] = []

        for sentence in self._sentences(text):
            if current and sentence[1] - current[0][0] > self.chunk_size:
                spans.append((current[0][0], current[-1][1]))
                current = self._overlap_seed(current)
            current.append(sentence)

        if current:
            spans.append((current[0][0], current[-1][1]))

        return spans

    def chunk(
        self,
        text: str,
        source: str,
        document_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> list[Chunk]:
        """Split text on sentence boundaries."""
        return _build_chunks(text, self.spans(text), source, document_id, metadata)


class ParagraphChunker(BaseChunker):
    """Group whole paragraphs (separated by blank lines) into chunks.

    Paragraphs are never split, so a paragraph longer than ``chunk_size``
    becomes a chunk of its own. No overlap is carried between chunks.
    """

    strategy = ChunkingStrategy.PARAGRAPH.value

    def __init__(self, chunk_size: int = 1000):
        if chunk_size <= 0:
            raise ChunkingConfigError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size

    def _paragraphs(self, text: str) -> list[Span]:
        paragraphs = []
        position = 0
        for match in _PARAGRAPH_BREAK.finditer(text):
            span = _strip_span(text, position, match.start())
            if span is not None:
                paragraphs.append(span)
            position = match.end()

        span = _strip_span(text, position, len(text))
        if span is not None:
            paragraphs.append(span)
        return paragraphs

    def spans(self, text: str) -> list[Span]:
        spans: list[Span] = []
        start: Optional[int] = None
        end = 0

        for para_start, para_end in self._paragraphs(text):
            if start is not None and para_end - start > self.chunk_size:
                spans.append((start, end))
                start = None
            if start is None:
                start = para_start
            end = para_end

        if start is not None:
            spans.append((start, end))

        return spans

    def chunk(
        self,
        text: str,
        source: str,
        document_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> list[Chunk]:
        """Split text on paragraph boundaries."""
        return _build_chunks(text, self.spans(text), source, document_id, metadata)


def create_chunker(options: Optional[ChunkingOptions] = None) -> BaseChunker:
    """Build the chunker selected by ``options.strategy``.

    Raises:
        ChunkingConfigError: If the options are invalid
    """
    options = options or ChunkingOptions()
    strategy = validate_options(options)

    if strategy is ChunkingStrategy.FIXED:
        return FixedSizeChunker(options.chunk_size, options.chunk_overlap)
    if strategy is ChunkingStrategy.SENTENCE:
        return SentenceChunker(options.chunk_size, options.chunk_overlap)
    return ParagraphChunker(options.chunk_size)


def chunk_text(
    text: str,
    source: str,
    options: Optional[ChunkingOptions] = None,
    document_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> list[Chunk]:
    """Split text into chunks with the configured strategy.

    Empty or whitespace-only text yields an empty list.

    Args:
        text: Source text
        source: Name of the originating document
        options: Chunking options (defaults: 1000/200, paragraph)
        document_id: ID prefix for the chunks (random if omitted)
        metadata: Document metadata copied into every chunk

    Returns:
        List of chunks in source order
    """
    chunker = create_chunker(options)
    chunks = chunker.chunk(text, source, document_id, metadata)
    logger.debug(f"Chunked '{source}' into {len(chunks)} chunks ({chunker.strategy})")
    return chunks


def chunk_document(
    content: str,
    document_metadata: dict[str, Any],
    options: Optional[ChunkingOptions] = None,
    document_id: Optional[str] = None,
) -> list[Chunk]:
    """Chunk a parsed document, using its ``filename`` as the chunk source."""
    source = str(document_metadata.get("filename") or "unknown")
    return chunk_text(content, source, options, document_id, document_metadata)
