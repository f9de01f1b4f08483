"""Knowledge base service: the engine's public entry point."""

from typing import Any, Optional

from hybridkb.utils.config import EmbeddingConfig, EngineConfig, RetryConfig, SearchConfig
from hybridkb.utils.logging import get_logger, set_log_level

from .base import BaseDocumentParser, BaseEmbedding
from .chunking import ChunkingOptions
from .document import IngestResult, KnowledgeBaseInfo, QueryContext, QueryResult
from .embeddings import create_embedding
from .knowledge_base import DEFAULT_KNOWLEDGE_BASE_ID, KnowledgeBase, KnowledgeBaseRegistry
from .pipeline import IngestionPipeline
from .retriever import HybridRetriever, HybridSearchOptions, format_context
from .vectorstore import create_vector_store

logger = get_logger(__name__)


def _embedding_kwargs(config: EmbeddingConfig) -> dict[str, Any]:
    """Map embedding settings onto the selected provider's constructor."""
    kwargs: dict[str, Any] = {"chars_per_token": config.chars_per_token}
    if config.provider == "hashing":
        kwargs.update(dimension=config.dimension, max_tokens=config.max_tokens)
    elif config.provider == "openai":
        kwargs.update(
            api_key=config.api_key,
            base_url=config.base_url,
            batch_size=config.batch_size,
            max_tokens=config.max_tokens,
        )
        if config.model:
            kwargs["model"] = config.model
    elif config.provider == "local":
        if config.model:
            kwargs["model_name"] = config.model
    return kwargs


class KnowledgeBaseService:
    """Create knowledge bases, ingest documents into them and query them.

    Example:
        ```python
        service = KnowledgeBaseService.from_config(load_config())

        await service.ingest_document(b"Cats are small pets.", "cats.txt")
        result = await service.query_knowledge_base("default", "pets", top_k=3)
        print(result.formatted_context)
        ```
    """

    def __init__(
        self,
        embedding: BaseEmbedding,
        registry: Optional[KnowledgeBaseRegistry] = None,
        parser: Optional[BaseDocumentParser] = None,
        chunk_options: Optional[ChunkingOptions] = None,
        search_config: Optional[SearchConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        embedding_timeout: Optional[float] = 30.0,
        vector_timeout: Optional[float] = 30.0,
        default_knowledge_base: str = DEFAULT_KNOWLEDGE_BASE_ID,
    ):
        self.search_config = search_config or SearchConfig()
        self.registry = registry or KnowledgeBaseRegistry(
            k1=self.search_config.k1, b=self.search_config.b
        )
        self.default_knowledge_base = default_knowledge_base
        self.pipeline = IngestionPipeline(
            self.registry,
            embedding,
            parser=parser,
            chunk_options=chunk_options,
            retry_config=retry_config,
            embedding_timeout=embedding_timeout,
            vector_timeout=vector_timeout,
        )
        self.retriever = HybridRetriever(
            embedding,
            candidate_multiplier=self.search_config.candidate_multiplier,
            embedding_timeout=embedding_timeout,
            vector_timeout=vector_timeout,
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[EngineConfig] = None,
        parser: Optional[BaseDocumentParser] = None,
    ) -> "KnowledgeBaseService":
        """Wire embedder, vector stores, parser and registry from configuration."""
        config = config or EngineConfig()
        set_log_level(config.log_level)

        embedding = create_embedding(
            config.embedding.provider, **_embedding_kwargs(config.embedding)
        )
        store_config = config.vector_store
        registry = KnowledgeBaseRegistry(
            vector_store_factory=lambda namespace: create_vector_store(
                store_config.provider,
                namespace,
                persist_directory=store_config.persist_directory,
                collection_prefix=store_config.collection_prefix,
            ),
            k1=config.search.k1,
            b=config.search.b,
        )

        logger.info(
            f"Knowledge base service using {config.embedding.provider} embeddings "
            f"and {store_config.provider} vector store"
        )
        return cls(
            embedding,
            registry=registry,
            parser=parser,
            chunk_options=config.chunking.model_copy(),
            search_config=config.search,
            retry_config=config.retry,
            embedding_timeout=config.embedding.timeout,
            vector_timeout=store_config.timeout,
            default_knowledge_base=config.default_knowledge_base,
        )

    def _resolve(self, knowledge_base_id: str) -> KnowledgeBase:
        # The default knowledge base exists as soon as anyone asks for it
        if knowledge_base_id == self.default_knowledge_base:
            return self.registry.get_or_create(knowledge_base_id)
        return self.registry.get(knowledge_base_id)

    def create_knowledge_base(
        self,
        id: str,
        name: Optional[str] = None,
        description: str = "",
    ) -> KnowledgeBaseInfo:
        """Create an empty knowledge base.

        Raises:
            DuplicateKnowledgeBaseError: If ``id`` is already taken
        """
        return self.registry.create(id, name=name, description=description).info

    async def delete_knowledge_base(self, id: str) -> None:
        """Delete a knowledge base and everything indexed in it.

        Raises:
            NotFoundError: If ``id`` does not exist
        """
        await self.registry.delete(id)

    def list_knowledge_bases(self) -> list[KnowledgeBaseInfo]:
        return self.registry.list()

    def get_knowledge_base(self, id: str) -> KnowledgeBaseInfo:
        """Return info for one knowledge base.

        Raises:
            NotFoundError: If ``id`` does not exist
        """
        return self._resolve(id).info

    async def ingest_document(
        self,
        data: bytes,
        filename: str,
        knowledge_base_id: Optional[str] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        strategy: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> IngestResult:
        """Ingest one file. Unset chunking arguments fall back to the defaults."""
        overrides = {
            key: value
            for key, value in {
                "chunk_size": chunk_size,
                "chunk_overlap": chunk_overlap,
                "strategy": strategy,
            }.items()
            if value is not None
        }
        options = self.pipeline.chunk_options.model_copy(update=overrides)

        return await self.pipeline.ingest(
            data,
            filename,
            knowledge_base_id or self.default_knowledge_base,
            chunk_options=options,
            metadata=metadata,
        )

    async def query_knowledge_base(
        self,
        knowledge_base_id: str,
        query: str,
        top_k: int = 5,
        vector_weight: Optional[float] = None,
        keyword_weight: Optional[float] = None,
        include_metadata: bool = True,
    ) -> QueryResult:
        """Run a hybrid query and format the passages it returns.

        Raises:
            NotFoundError: If the knowledge base does not exist
            DimensionMismatchError: If the query embedding does not fit the index
        """
        kb = self._resolve(knowledge_base_id)
        options = HybridSearchOptions(
            top_k=top_k,
            vector_weight=(
                self.search_config.vector_weight if vector_weight is None else vector_weight
            ),
            keyword_weight=(
                self.search_config.keyword_weight if keyword_weight is None else keyword_weight
            ),
        )

        response = await self.retriever.search(query, kb, options)

        return QueryResult(
            contexts=[
                QueryContext(
                    content=result.content,
                    score=result.score,
                    source=result.source,
                    metadata=result.metadata if include_metadata else None,
                )
                for result in response.results
            ],
            formatted_context=format_context(response.results),
            partial=response.partial,
            failed_signals=list(response.failed_signals),
        )

    async def delete_document(self, knowledge_base_id: str, document_id: str) -> bool:
        """Remove one document from a knowledge base.

        Returns:
            False if the document was not found in the knowledge base
        """
        return await self.pipeline.delete_document(knowledge_base_id, document_id)
