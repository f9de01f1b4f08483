"""Knowledge bases and their registry."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from .base import BaseVectorStore
from .document import DocumentRecord, KnowledgeBaseInfo
from .exceptions import DuplicateKnowledgeBaseError, NotFoundError
from .lexical import BM25Index
from .vectorstore import MemoryVectorStore

logger = logging.getLogger(__name__)

DEFAULT_KNOWLEDGE_BASE_ID = "default"

VectorStoreFactory = Callable[[str], BaseVectorStore]


class KnowledgeBase:
    """A named, isolated retrieval scope.

    Owns one lexical index and one vector index. The indices are exposed
    read-only to the ranker; they are written only by the ingestion
    pipeline, which holds ``write_lock`` while it updates both.
    """

    def __init__(
        self,
        id: str,
        name: Optional[str] = None,
        description: str = "",
        vector_index: Optional[BaseVectorStore] = None,
        lexical_index: Optional[BM25Index] = None,
    ):
        self.info = KnowledgeBaseInfo(id=id, name=name or id, description=description)
        self._vector_index = vector_index or MemoryVectorStore(id)
        self._lexical_index = lexical_index or BM25Index()
        self._documents: dict[str, DocumentRecord] = {}
        self.write_lock = asyncio.Lock()
        self.deleted = False
        # Ingestions holding a reference to this knowledge base
        self.pending_writes = 0

    @property
    def id(self) -> str:
        return self.info.id

    @property
    def vector_index(self) -> BaseVectorStore:
        return self._vector_index

    @property
    def lexical_index(self) -> BM25Index:
        return self._lexical_index

    def documents(self) -> list[DocumentRecord]:
        return list(self._documents.values())

    def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        return self._documents.get(document_id)

    def _register_document(self, record: DocumentRecord) -> None:
        self._documents[record.id] = record
        self._touch()

    def _forget_document(self, document_id: str) -> Optional[DocumentRecord]:
        record = self._documents.pop(document_id, None)
        self._touch()
        return record

    def _touch(self) -> None:
        self.info.document_count = len(self._documents)
        self.info.chunk_count = self._lexical_index.count()
        self.info.updated_at = datetime.now()

    async def clear(self) -> None:
        """Empty both indices and forget all documents."""
        self._lexical_index.clear()
        await self._vector_index.clear()
        self._documents.clear()
        self._touch()

    def __repr__(self) -> str:
        return f"KnowledgeBase(id={self.id!r}, chunks={self.info.chunk_count})"


class KnowledgeBaseRegistry:
    """Owns the lifecycle of knowledge bases.

    ``get`` raises ``NotFoundError`` for an unknown ID; callers that want
    first-use materialization (ingestion, the default knowledge base) use
    ``get_or_create`` instead.
    """

    def __init__(
        self,
        vector_store_factory: Optional[VectorStoreFactory] = None,
        k1: float = 1.5,
        b: float = 0.75,
    ):
        """Initialize the registry.

        Args:
            vector_store_factory: Builds the vector index for a knowledge
                base ID (defaults to an in-memory store)
            k1: BM25 k1 for new lexical indices
            b: BM25 b for new lexical indices
        """
        self._vector_store_factory = vector_store_factory or MemoryVectorStore
        self.k1 = k1
        self.b = b
        self._knowledge_bases: dict[str, KnowledgeBase] = {}

    def create(
        self,
        id: str,
        name: Optional[str] = None,
        description: str = "",
    ) -> KnowledgeBase:
        """Create and register a new knowledge base.

        Raises:
            DuplicateKnowledgeBaseError: If ``id`` is already registered
        """
        if id in self._knowledge_bases:
            raise DuplicateKnowledgeBaseError(id)

        kb = KnowledgeBase(
            id,
            name=name,
            description=description,
            vector_index=self._vector_store_factory(id),
            lexical_index=BM25Index(k1=self.k1, b=self.b),
        )
        self._knowledge_bases[id] = kb
        logger.info(f"Created knowledge base '{id}'")
        return kb

    def get(self, id: str) -> KnowledgeBase:
        """Return a registered knowledge base.

        Raises:
            NotFoundError: If ``id`` is not registered
        """
        kb = self._knowledge_bases.get(id)
        if kb is None:
            raise NotFoundError(id)
        return kb

    def get_or_create(
        self,
        id: str = DEFAULT_KNOWLEDGE_BASE_ID,
        name: Optional[str] = None,
        description: str = "",
    ) -> KnowledgeBase:
        """Return the knowledge base, creating it on first access."""
        kb = self._knowledge_bases.get(id)
        if kb is None:
            kb = self.create(id, name=name, description=description)
        return kb

    def exists(self, id: str) -> bool:
        return id in self._knowledge_bases

    async def delete(self, id: str) -> None:
        """Clear both indices of a knowledge base and unregister it.

        Waits for any in-flight ingestion into the knowledge base to finish.

        Raises:
            NotFoundError: If ``id`` is not registered
        """
        kb = self.get(id)
        async with kb.write_lock:
            await kb.clear()
            kb.deleted = True
            self._knowledge_bases.pop(id, None)
        logger.info(f"Deleted knowledge base '{id}'")

    def discard(self, kb: KnowledgeBase) -> None:
        """Unregister a knowledge base that never received a document.

        Unlike ``delete`` this neither waits for the write lock nor touches
        the indices. Does nothing if ``kb`` is no longer the registered
        instance for its ID.
        """
        if self._knowledge_bases.get(kb.id) is not kb:
            return
        kb.deleted = True
        del self._knowledge_bases[kb.id]
        logger.info(f"Discarded empty knowledge base '{kb.id}'")

    def __len__(self) -> int:
        return len(self._knowledge_bases)

    def list(self) -> list[KnowledgeBaseInfo]:
        """Return info for every registered knowledge base, in creation order."""
        return [kb.info for kb in self._knowledge_bases.values()]
