"""Hybrid retrieval: vector and BM25 search fused by normalized weights."""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Union

from pydantic import BaseModel

from .base import BaseEmbedding
from .document import HybridSearchResponse, SearchResult
from .exceptions import EmbeddingServiceError, LexicalIndexError, VectorIndexError

if TYPE_CHECKING:
    from .knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

VECTOR_SIGNAL = "vector"
KEYWORD_SIGNAL = "keyword"

# Each index is asked for top_k * this many candidates
DEFAULT_CANDIDATE_MULTIPLIER = 3

_DEGRADABLE_ERRORS = {
    VECTOR_SIGNAL: (EmbeddingServiceError, VectorIndexError),
    KEYWORD_SIGNAL: (LexicalIndexError,),
}


class HybridSearchOptions(BaseModel):
    """Options for one hybrid query.

    The weights do not need to sum to 1.
    """

    top_k: int = 10
    vector_weight: float = 0.7
    keyword_weight: float = 0.3


def normalize_scores(results: list[SearchResult]) -> dict[str, float]:
    """Min-max normalize a result list's scores into [0, 1].

    A single result, or a list whose scores are all equal, normalizes to 1.0.
    """
    if not results:
        return {}

    max_score = max(r.score for r in results)
    min_score = min(r.score for r in results)
    if max_score == min_score:
        return {r.id: 1.0 for r in results}

    score_range = max_score - min_score
    return {r.id: (r.score - min_score) / score_range for r in results}


def fuse_results(
    vector_results: list[SearchResult],
    keyword_results: list[SearchResult],
    vector_weight: float,
    keyword_weight: float,
    top_k: int,
) -> list[SearchResult]:
    """Combine two independently scored lists into one ranking.

    ``score = vector_weight * v + keyword_weight * k`` where ``v`` and ``k``
    are the normalized scores (0 when the chunk is absent from a list).
    Equal scores are ordered by rank in the more heavily weighted list, then
    by rank in the other one.
    """
    vector_norm = normalize_scores(vector_results)
    keyword_norm = normalize_scores(keyword_results)
    vector_rank = {r.id: i for i, r in enumerate(vector_results)}
    keyword_rank = {r.id: i for i, r in enumerate(keyword_results)}

    candidates = {}
    for result in [*vector_results, *keyword_results]:
        candidates.setdefault(result.id, result.chunk)

    fused = []
    for chunk_id, chunk in candidates.items():
        score = (
            vector_weight * vector_norm.get(chunk_id, 0.0)
            + keyword_weight * keyword_norm.get(chunk_id, 0.0)
        )
        fused.append(SearchResult(
            chunk=chunk,
            score=score,
            vector_score=vector_norm.get(chunk_id),
            keyword_score=keyword_norm.get(chunk_id),
        ))

    if vector_weight >= keyword_weight:
        primary, secondary = vector_rank, keyword_rank
    else:
        primary, secondary = keyword_rank, vector_rank
    absent = len(candidates)

    fused.sort(key=lambda r: (-r.score, primary.get(r.id, absent), secondary.get(r.id, absent)))
    return fused[:top_k]


def format_context(results: list[SearchResult]) -> str:
    """Render results as numbered source blocks for display or prompting."""
    return "\n\n---\n\n".join(
        f"[Source {i + 1}: {result.source}]\n{result.content}"
        for i, result in enumerate(results)
    )


class HybridRetriever:
    """Hybrid retriever combining vector and keyword search.

    Both indices are queried concurrently with ``top_k *
    candidate_multiplier`` candidates each. Vector similarities and BM25
    scores live on different scales, so each list is min-max normalized on
    its own before the weighted sum.

    If one signal fails (embedding error, vector index error or timeout on
    the vector side; lexical index error on the keyword side) the response
    falls back to the other signal and is flagged ``partial``.
    """

    def __init__(
        self,
        embedding: BaseEmbedding,
        candidate_multiplier: int = DEFAULT_CANDIDATE_MULTIPLIER,
        embedding_timeout: Optional[float] = 30.0,
        vector_timeout: Optional[float] = 30.0,
    ):
        """Initialize the hybrid retriever.

        Args:
            embedding: Embedding model for queries
            candidate_multiplier: Over-fetch factor for each index
            embedding_timeout: Seconds allowed for the query embedding
            vector_timeout: Seconds allowed for the vector index search
        """
        self.embedding = embedding
        self.candidate_multiplier = candidate_multiplier
        self.embedding_timeout = embedding_timeout
        self.vector_timeout = vector_timeout

    async def _vector_candidates(
        self,
        knowledge_base: "KnowledgeBase",
        query: str,
        fetch_k: int,
    ) -> list[SearchResult]:
        try:
            query_vector = await asyncio.wait_for(
                self.embedding.embed(query), timeout=self.embedding_timeout
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingServiceError(
                f"Query embedding timed out after {self.embedding_timeout}s"
            ) from e

        try:
            return await asyncio.wait_for(
                knowledge_base.vector_index.search(query_vector, fetch_k),
                timeout=self.vector_timeout,
            )
        except asyncio.TimeoutError as e:
            raise VectorIndexError(
                f"Vector search timed out after {self.vector_timeout}s"
            ) from e

    async def _keyword_candidates(
        self,
        knowledge_base: "KnowledgeBase",
        query: str,
        fetch_k: int,
    ) -> list[SearchResult]:
        return knowledge_base.lexical_index.search(query, fetch_k)

    def _resolve(
        self,
        signal: str,
        outcome: Union[list[SearchResult], BaseException],
        response: HybridSearchResponse,
    ) -> list[SearchResult]:
        """Unwrap a gathered outcome, recording degradable failures."""
        if not isinstance(outcome, BaseException):
            return outcome

        if not isinstance(outcome, _DEGRADABLE_ERRORS[signal]):
            raise outcome

        logger.warning(f"{signal} search failed, continuing without it: {outcome}")
        response.partial = True
        response.failed_signals.append(signal)
        response.errors[signal] = str(outcome)
        return []

    async def search(
        self,
        query: str,
        knowledge_base: "KnowledgeBase",
        options: Optional[HybridSearchOptions] = None,
    ) -> HybridSearchResponse:
        """Run a hybrid query against one knowledge base.

        Raises:
            DimensionMismatchError: If the query vector does not match the
                stored vectors
            EmbeddingServiceError, VectorIndexError: If both signals fail
        """
        options = options or HybridSearchOptions()
        response = HybridSearchResponse()
        if options.top_k <= 0:
            return response

        fetch_k = options.top_k * self.candidate_multiplier
        vector_outcome, keyword_outcome = await asyncio.gather(
            self._vector_candidates(knowledge_base, query, fetch_k),
            self._keyword_candidates(knowledge_base, query, fetch_k),
            return_exceptions=True,
        )

        vector_results = self._resolve(VECTOR_SIGNAL, vector_outcome, response)
        keyword_results = self._resolve(KEYWORD_SIGNAL, keyword_outcome, response)

        if len(response.failed_signals) == 2:
            raise vector_outcome

        response.results = fuse_results(
            vector_results,
            keyword_results,
            options.vector_weight,
            options.keyword_weight,
            options.top_k,
        )

        logger.debug(
            f"Hybrid search on '{knowledge_base.id}': {len(vector_results)} vector, "
            f"{len(keyword_results)} keyword candidates -> {len(response.results)} results"
        )
        return response
