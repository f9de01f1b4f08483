"""Ingestion pipeline: parse, chunk, embed and index documents."""

import asyncio
import logging
import random
import uuid
from typing import Any, Optional

from hybridkb.utils.config import RetryConfig

from .base import BaseDocumentParser, BaseEmbedding
from .chunking import ChunkingOptions, chunk_document
from .document import Chunk, ChunkFailure, DocumentRecord, IngestResult
from .exceptions import (
    DimensionMismatchError,
    DuplicateChunkError,
    EmbeddingServiceError,
    NotFoundError,
    RAGError,
    VectorIndexError,
)
from .knowledge_base import DEFAULT_KNOWLEDGE_BASE_ID, KnowledgeBase, KnowledgeBaseRegistry
from .parsers import DocumentParser

logger = logging.getLogger(__name__)


def _new_document_id() -> str:
    return uuid.uuid4().hex[:16]


class IngestionPipeline:
    """The only writer to a knowledge base's indices.

    A document is either fully searchable in both indices or absent from
    both. Embedding happens before any index is touched; the vector upsert
    and lexical add then run under the knowledge base's write lock, and a
    failure in either step deletes the vectors that were just written.

    Example:
        ```python
        registry = KnowledgeBaseRegistry()
        pipeline = IngestionPipeline(registry, HashingEmbedding())

        result = await pipeline.ingest(b"Cats are small pets.", "cats.txt")
        if not result.success:
            print(result.error)
        ```
    """

    def __init__(
        self,
        registry: KnowledgeBaseRegistry,
        embedding: BaseEmbedding,
        parser: Optional[BaseDocumentParser] = None,
        chunk_options: Optional[ChunkingOptions] = None,
        retry_config: Optional[RetryConfig] = None,
        embedding_timeout: Optional[float] = 30.0,
        vector_timeout: Optional[float] = 30.0,
    ):
        """Initialize the pipeline.

        Args:
            registry: Knowledge base registry
            embedding: Embedding model for chunks
            parser: Document parser (default: DocumentParser)
            chunk_options: Default chunking options
            retry_config: Backoff settings for embedding calls
            embedding_timeout: Seconds allowed per embedding attempt
            vector_timeout: Seconds allowed per vector index write
        """
        self.registry = registry
        self.embedding = embedding
        self.parser = parser or DocumentParser()
        self.chunk_options = chunk_options or ChunkingOptions()
        self.retry_config = retry_config or RetryConfig()
        self.embedding_timeout = embedding_timeout
        self.vector_timeout = vector_timeout

    def _calculate_delay(self, attempt: int) -> float:
        """Calculate delay with exponential backoff and optional jitter."""
        config = self.retry_config
        delay = config.base_delay * (config.exponential_base**attempt)
        delay = min(delay, config.max_delay)
        if config.jitter:
            delay = delay * (0.5 + random.random())
        return delay

    async def _embed_once(self, texts: list[str]) -> list[list[float]]:
        try:
            return await asyncio.wait_for(
                self.embedding.embed_batch(texts), timeout=self.embedding_timeout
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingServiceError(
                f"Embedding timed out after {self.embedding_timeout}s"
            ) from e

    async def embed_chunks(self, chunks: list[Chunk]) -> list[list[float]]:
        """Embed chunk contents in one batch, retrying transient failures.

        Raises:
            EmbeddingServiceError: If every attempt failed
        """
        config = self.retry_config
        texts = [chunk.content for chunk in chunks]
        last_error: Optional[EmbeddingServiceError] = None

        for attempt in range(config.max_retries + 1):
            try:
                return await self._embed_once(texts)
            except EmbeddingServiceError as e:
                last_error = e
                if attempt < config.max_retries:
                    delay = self._calculate_delay(attempt)
                    logger.warning(
                        f"Embedding failed (attempt {attempt + 1}/{config.max_retries + 1}): {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"Embedding failed after {config.max_retries + 1} attempts: {e}"
                    )

        raise last_error

    async def _rollback_vectors(self, kb: KnowledgeBase, ids: list[str]) -> None:
        """Delete vectors written by a commit that did not complete."""
        try:
            await asyncio.wait_for(kb.vector_index.delete(ids), timeout=self.vector_timeout)
        except Exception as e:
            logger.error(f"Rollback of {len(ids)} vectors in '{kb.id}' failed: {e}")
            raise VectorIndexError(
                f"Rollback failed, vector index of '{kb.id}' may hold orphaned entries: {e}"
            ) from e
        logger.warning(f"Rolled back {len(ids)} vectors in '{kb.id}'")

    async def _compensate(self, kb: KnowledgeBase, ids: list[str]) -> None:
        # Runs to completion even if the calling task is cancelled
        await asyncio.shield(self._rollback_vectors(kb, ids))

    async def _commit(
        self,
        kb: KnowledgeBase,
        record: DocumentRecord,
        chunks: list[Chunk],
        vectors: list[list[float]],
    ) -> None:
        """Write chunks to both indices, or to neither.

        Everything that can reject the batch without writing is checked
        first. Once the vector upsert has started, any failure, including
        cancellation of the calling task, deletes the vectors of this batch
        before the error propagates.

        Raises:
            NotFoundError: If the knowledge base was deleted meanwhile
            DuplicateChunkError: If a chunk id is already indexed
            LexicalIndexError: If the batch is not a valid lexical batch
            VectorIndexError: If the vector write fails or times out
            DimensionMismatchError: If the vectors do not fit the index
        """
        ids = [chunk.id for chunk in chunks]

        async with kb.write_lock:
            if kb.deleted:
                raise NotFoundError(kb.id)

            kb.lexical_index.check_batch(chunks)
            existing = [id for id in ids if kb.lexical_index.get(id) is not None]
            if existing:
                raise DuplicateChunkError(kb.id, existing)

            try:
                await asyncio.wait_for(
                    kb.vector_index.upsert(chunks, vectors), timeout=self.vector_timeout
                )
            except DimensionMismatchError:
                raise
            except asyncio.TimeoutError as e:
                await self._compensate(kb, ids)
                raise VectorIndexError(
                    f"Vector upsert timed out after {self.vector_timeout}s"
                ) from e
            except BaseException:
                await self._compensate(kb, ids)
                raise

            try:
                kb.lexical_index.add_documents(chunks)
            except BaseException:
                await self._compensate(kb, ids)
                raise

            kb._register_document(record)

    @staticmethod
    def _failed_chunks(chunks: list[Chunk], error: EmbeddingServiceError) -> list[ChunkFailure]:
        if error.failed_indices:
            indices = [i for i in error.failed_indices if 0 <= i < len(chunks)]
        else:
            indices = list(range(len(chunks)))
        return [
            ChunkFailure(chunk_index=i, chunk_id=chunks[i].id, reason=error.message)
            for i in indices
        ]

    async def _index(
        self,
        knowledge_base_id: str,
        document_id: str,
        filename: str,
        chunks: list[Chunk],
        vectors: Optional[list[list[float]]],
        metadata: dict[str, Any],
    ) -> IngestResult:
        result = IngestResult(
            document_id=document_id,
            filename=filename,
            knowledge_base_id=knowledge_base_id,
            success=False,
        )

        if not chunks:
            result.error = "No content to index"
            return result

        try:
            if vectors is None:
                vectors = await self.embed_chunks(chunks)
        except EmbeddingServiceError as e:
            result.error = f"Embedding failed, document not indexed: {e.message}"
            result.error_type = type(e).__name__
            result.failed_chunks = self._failed_chunks(chunks, e)
            return result

        created = not self.registry.exists(knowledge_base_id)
        kb = self.registry.get_or_create(knowledge_base_id)
        record = DocumentRecord(
            id=document_id,
            filename=filename,
            chunk_ids=[chunk.id for chunk in chunks],
            metadata=metadata,
        )

        kb.pending_writes += 1
        try:
            await self._commit(kb, record, chunks, vectors)
        except BaseException:
            # A knowledge base created for this write alone does not outlive it
            if created and kb.pending_writes == 1 and not kb.documents():
                self.registry.discard(kb)
            raise
        finally:
            kb.pending_writes -= 1

        result.success = True
        result.chunk_count = len(chunks)
        logger.info(
            f"Indexed '{filename}' into '{knowledge_base_id}': "
            f"{len(chunks)} chunks (document {document_id})"
        )
        return result

    async def ingest(
        self,
        data: bytes,
        filename: str,
        knowledge_base_id: str = DEFAULT_KNOWLEDGE_BASE_ID,
        chunk_options: Optional[ChunkingOptions] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> IngestResult:
        """Parse, chunk, embed and index one uploaded file.

        Errors from the engine's own taxonomy are reported in the result;
        anything else propagates.

        Args:
            data: Raw file contents
            filename: Original filename (selects the parser, becomes the chunk source)
            knowledge_base_id: Target knowledge base (created on first use)
            chunk_options: Overrides the pipeline's default chunking options
            metadata: Extra metadata copied onto every chunk

        Returns:
            IngestResult describing what was indexed
        """
        document_id = _new_document_id()
        try:
            parsed = await self.parser.parse(data, filename)
            document_metadata = {**parsed.metadata, **(metadata or {}), "filename": filename}
            chunks = chunk_document(
                parsed.content,
                document_metadata,
                chunk_options or self.chunk_options,
                document_id=document_id,
            )
            return await self._index(
                knowledge_base_id, document_id, filename, chunks, None, document_metadata
            )
        except RAGError as e:
            logger.error(f"Ingestion of '{filename}' into '{knowledge_base_id}' failed: {e}")
            return IngestResult(
                document_id=document_id,
                filename=filename,
                knowledge_base_id=knowledge_base_id,
                success=False,
                error=e.message,
                error_type=type(e).__name__,
            )

    async def index_chunks(
        self,
        knowledge_base_id: str,
        chunks: list[Chunk],
        vectors: Optional[list[list[float]]] = None,
    ) -> IngestResult:
        """Index chunks produced outside the pipeline.

        If ``vectors`` is omitted the chunks are embedded first. All chunks
        are recorded as one document.
        """
        document_id = next(
            (c.metadata.document_id for c in chunks if c.metadata.document_id),
            None,
        ) or _new_document_id()
        filename = chunks[0].source if chunks else "unknown"

        try:
            if vectors is not None and len(vectors) != len(chunks):
                raise VectorIndexError(
                    f"Got {len(vectors)} vectors for {len(chunks)} chunks"
                )
            return await self._index(
                knowledge_base_id, document_id, filename, chunks, vectors, {"filename": filename}
            )
        except RAGError as e:
            logger.error(f"Indexing {len(chunks)} chunks into '{knowledge_base_id}' failed: {e}")
            return IngestResult(
                document_id=document_id,
                filename=filename,
                knowledge_base_id=knowledge_base_id,
                success=False,
                error=e.message,
                error_type=type(e).__name__,
            )

    async def delete_document(self, knowledge_base_id: str, document_id: str) -> bool:
        """Remove one document from both indices.

        Returns:
            False if the document is not in the knowledge base

        Raises:
            NotFoundError: If the knowledge base does not exist
            VectorIndexError: If the vector delete fails (lexical index untouched)
        """
        kb = self.registry.get(knowledge_base_id)

        async with kb.write_lock:
            record = kb.get_document(document_id)
            if record is None:
                return False

            doomed = set(record.chunk_ids)
            remaining = [c for c in kb.lexical_index.chunks() if c.id not in doomed]

            try:
                await asyncio.wait_for(
                    kb.vector_index.delete(record.chunk_ids), timeout=self.vector_timeout
                )
            except asyncio.TimeoutError as e:
                raise VectorIndexError(
                    f"Vector delete timed out after {self.vector_timeout}s"
                ) from e

            kb.lexical_index.rebuild(remaining)
            kb._forget_document(document_id)

        logger.info(
            f"Deleted document {document_id} ({len(record.chunk_ids)} chunks) "
            f"from '{knowledge_base_id}'"
        )
        return True
