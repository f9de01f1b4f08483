"""BM25 lexical index.

A from-scratch Okapi BM25 inverted index over chunk text. Tokenization is
simple: lowercase, punctuation to whitespace, tokens shorter
than three characters dropped. There is no stemming or stopword removal, so
``dogs`` does not match ``dog``.
"""

import logging
import math
import re
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .document import Chunk, SearchResult
from .exceptions import LexicalIndexError

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 3

_NON_WORD = re.compile(r"[^\w\s]")


def tokenize(text: str) -> list[str]:
    """Split text into lowercase terms of at least three characters."""
    text = _NON_WORD.sub(" ", text.lower())
    return [token for token in text.split() if len(token) >= MIN_TOKEN_LENGTH]


@dataclass
class BM25State:
    """Inverted-index bookkeeping for one lexical index.

    Attributes:
        chunks: Indexed chunks by ID, in insertion order
        term_freqs: Per-chunk term frequencies
        doc_lengths: Per-chunk token counts
        doc_freqs: Number of chunks containing each term
        total_length: Sum of all chunk token counts
        avg_doc_length: ``total_length / len(chunks)``
    """

    chunks: dict[str, Chunk] = field(default_factory=dict)
    term_freqs: dict[str, Counter] = field(default_factory=dict)
    doc_lengths: dict[str, int] = field(default_factory=dict)
    doc_freqs: Counter = field(default_factory=Counter)
    total_length: int = 0
    avg_doc_length: float = 0.0

    def copy(self) -> "BM25State":
        # Per-chunk Counters are never mutated once stored
        return BM25State(
            chunks=dict(self.chunks),
            term_freqs=dict(self.term_freqs),
            doc_lengths=dict(self.doc_lengths),
            doc_freqs=Counter(self.doc_freqs),
            total_length=self.total_length,
            avg_doc_length=self.avg_doc_length,
        )

    def add(self, chunk: Chunk) -> None:
        """Index a chunk, replacing any previous chunk with the same ID in place."""
        previous = self.term_freqs.get(chunk.id)
        if previous is not None:
            for term in previous:
                self.doc_freqs[term] -= 1
                if self.doc_freqs[term] <= 0:
                    del self.doc_freqs[term]
            self.total_length -= self.doc_lengths[chunk.id]

        tokens = tokenize(chunk.content)
        term_freq = Counter(tokens)

        self.chunks[chunk.id] = chunk
        self.term_freqs[chunk.id] = term_freq
        self.doc_lengths[chunk.id] = len(tokens)
        self.total_length += len(tokens)
        for term in term_freq:
            self.doc_freqs[term] += 1

    def recompute_average(self) -> None:
        count = len(self.chunks)
        self.avg_doc_length = self.total_length / count if count else 0.0


class BM25Index:
    """Okapi BM25 index over the chunks of one knowledge base.

    Writers (``add_documents``, ``rebuild``, ``clear``) are serialized by a
    lock and publish a fresh ``BM25State``; ``search`` reads whichever state
    is current when it starts, so a reader sees the index from just before
    or just after a concurrent write, never a half-applied one.
    """

    def __init__(self, k1: float = 1.5, b: float = 0.75):
        """Initialize an empty index.

        Args:
            k1: Term frequency saturation
            b: Document length normalization
        """
        self.k1 = k1
        self.b = b
        self._state = BM25State()
        self._write_lock = threading.Lock()

    @property
    def avg_doc_length(self) -> float:
        return self._state.avg_doc_length

    def document_frequency(self, term: str) -> int:
        """Return the number of chunks containing ``term``."""
        return self._state.doc_freqs.get(term, 0)

    def check_batch(self, chunks: list[Chunk]) -> None:
        """Validate a batch without indexing it.

        Raises:
            LexicalIndexError: If the batch contains a non-chunk or a
                duplicate ID
        """
        seen: set[str] = set()
        for chunk in chunks:
            if not isinstance(chunk, Chunk):
                raise LexicalIndexError(f"Expected Chunk, got {type(chunk).__name__}")
            if chunk.id in seen:
                raise LexicalIndexError(f"Duplicate chunk id in batch: {chunk.id}")
            seen.add(chunk.id)

    def add_documents(self, chunks: Iterable[Chunk]) -> None:
        """Index chunks and recompute the average chunk length.

        Raises:
            LexicalIndexError: If the batch contains a non-chunk or a
                duplicate ID; the index is left unchanged
        """
        chunks = list(chunks)
        self.check_batch(chunks)
        if not chunks:
            return

        with self._write_lock:
            state = self._state.copy()
            for chunk in chunks:
                state.add(chunk)
            state.recompute_average()
            self._state = state

        logger.debug(
            f"Indexed {len(chunks)} chunks (total={len(state.chunks)}, "
            f"avgdl={state.avg_doc_length:.2f})"
        )

    def rebuild(self, chunks: Iterable[Chunk]) -> None:
        """Replace the whole index with ``chunks`` in a single swap."""
        chunks = list(chunks)
        self.check_batch(chunks)

        state = BM25State()
        for chunk in chunks:
            state.add(chunk)
        state.recompute_average()

        with self._write_lock:
            self._state = state

    def clear(self) -> None:
        """Reset all bookkeeping. Safe to call repeatedly."""
        with self._write_lock:
            self._state = BM25State()

    def _score(self, state: BM25State, query_tokens: list[str]) -> list[tuple[str, float]]:
        total_chunks = len(state.chunks)
        scored = []

        for chunk_id, term_freq in state.term_freqs.items():
            score = 0.0
            doc_length = state.doc_lengths[chunk_id]

            for token in query_tokens:
                tf = term_freq.get(token, 0)
                df = state.doc_freqs.get(token, 0)
                if tf == 0 or df == 0:
                    continue

                idf = math.log((total_chunks - df + 0.5) / (df + 0.5) + 1)
                tf_norm = (tf * (self.k1 + 1)) / (
                    tf + self.k1 * (1 - self.b + self.b * doc_length / state.avg_doc_length)
                )
                score += idf * tf_norm

            if score > 0:
                scored.append((chunk_id, score))

        return scored

    def search(self, query: str, top_k: int = 10) -> list[SearchResult]:
        """Return chunks with a positive BM25 score for ``query``.

        Results are sorted by descending score; equal scores keep insertion
        order. A query without any token of three or more characters
        returns an empty list.
        """
        query_tokens = tokenize(query)
        state = self._state

        if not query_tokens or not state.chunks or top_k <= 0:
            return []

        scored = self._score(state, query_tokens)
        scored.sort(key=lambda item: item[1], reverse=True)

        return [
            SearchResult(chunk=state.chunks[chunk_id], score=score)
            for chunk_id, score in scored[:top_k]
        ]

    def get(self, chunk_id: str) -> Optional[Chunk]:
        return self._state.chunks.get(chunk_id)

    def chunks(self) -> list[Chunk]:
        """Return all indexed chunks in insertion order."""
        return list(self._state.chunks.values())

    def count(self) -> int:
        return len(self._state.chunks)

    def __len__(self) -> int:
        return self.count()
