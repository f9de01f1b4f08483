"""
Test configuration and fixtures.
"""

import pytest

from hybridkb.rag import (
    BM25Index,
    HashingEmbedding,
    IngestionPipeline,
    KnowledgeBaseRegistry,
    KnowledgeBaseService,
    chunk_text,
)
from hybridkb.utils.config import RetryConfig


@pytest.fixture
def embedding():
    """Deterministic offline embedding."""
    return HashingEmbedding(dimension=256)


@pytest.fixture
def fast_retry():
    """Retry settings that do not sleep."""
    return RetryConfig(max_retries=2, base_delay=0.0, jitter=False)


@pytest.fixture
def registry():
    return KnowledgeBaseRegistry()


@pytest.fixture
def pipeline(registry, embedding, fast_retry):
    return IngestionPipeline(registry, embedding, retry_config=fast_retry)


@pytest.fixture
def service(embedding, fast_retry):
    return KnowledgeBaseService(embedding, retry_config=fast_retry)


@pytest.fixture
def sample_text():
    """Three short paragraphs about animals."""
    return (
        "Cats are independent animals. They sleep most of the day.\n\n"
        "Dogs are loyal companions. They enjoy long walks and playing fetch.\n\n"
        "Parrots can imitate human speech. Some parrots live for decades."
    )


@pytest.fixture
def fox_index():
    """BM25 index over two tiny chunks."""
    index = BM25Index()
    chunks = chunk_text("the quick brown fox", "fox.txt", document_id="fox")
    chunks += chunk_text("lazy dogs sleep", "dogs.txt", document_id="dogs")
    index.add_documents(chunks)
    return index
