"""Embedding model implementations."""

import asyncio
import hashlib
import logging
import math
from typing import Any, Optional

from .base import DEFAULT_CHARS_PER_TOKEN, DEFAULT_MAX_TOKENS, BaseEmbedding
from .exceptions import EmbeddingServiceError
from .lexical import tokenize

logger = logging.getLogger(__name__)


class HashingEmbedding(BaseEmbedding):
    """Deterministic bag-of-words embedding using feature hashing.

    Each token produced by the lexical tokenizer is hashed into one of
    ``dimension`` buckets with a hash-derived sign, and the resulting
    vector is L2-normalized. Texts sharing words get positive cosine
    similarity, which makes this a useful offline default and test double.
    No model or network access is required.
    """

    def __init__(
        self,
        dimension: int = 384,
        seed: int = 42,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    ):
        """Initialize the hashing embedding.

        Args:
            dimension: Dimension of the embedding vectors
            seed: Hash seed; different seeds give unrelated vector spaces
            max_tokens: Token budget used for input truncation
            chars_per_token: Characters assumed per token when truncating
        """
        self._dimension = dimension
        self.seed = seed
        self.max_tokens = max_tokens
        self.chars_per_token = chars_per_token

    @property
    def dimension(self) -> int:
        return self._dimension

    def _hash_text(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for token in tokenize(text):
            digest = hashlib.sha256(f"{self.seed}:{token}".encode()).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        return [self._hash_text(text) for text in texts]


class OpenAIEmbedding(BaseEmbedding):
    """OpenAI embedding model.

    Uses OpenAI's embedding API (text-embedding-3-small/large).

    Note: Requires the 'openai' extra to be installed.
    """

    # Known model dimensions
    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        batch_size: int = 100,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    ):
        """Initialize the OpenAI embedding model.

        Args:
            model: Model name (text-embedding-3-small, text-embedding-3-large)
            api_key: OpenAI API key (optional, uses env var if not provided)
            base_url: Optional base URL for API
            batch_size: Texts per embeddings request
            max_tokens: Token budget used for input truncation
            chars_per_token: Characters assumed per token when truncating
        """
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.batch_size = batch_size
        self.max_tokens = max_tokens
        self.chars_per_token = chars_per_token
        self._client = None

    @property
    def dimension(self) -> int:
        return self.MODEL_DIMENSIONS.get(self.model, 1536)

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "OpenAI embedding requires the 'openai' package. "
                    "Install it with: pip install openai"
                )

            kwargs: dict[str, Any] = {}
            if self.api_key:
                kwargs["api_key"] = self.api_key
            if self.base_url:
                kwargs["base_url"] = self.base_url

            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts using the OpenAI API, one request per batch."""
        client = self._get_client()
        all_embeddings: list[list[float]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]

            try:
                response = await client.embeddings.create(
                    model=self.model,
                    input=batch,
                )
            except Exception as e:
                raise EmbeddingServiceError(
                    f"OpenAI embeddings request failed: {e}",
                    failed_indices=list(range(i, i + len(batch))),
                ) from e

            all_embeddings.extend(item.embedding for item in response.data)

        return all_embeddings


class LocalEmbedding(BaseEmbedding):
    """Local embedding model using sentence-transformers.

    Uses HuggingFace sentence-transformers models locally.
    No API calls required, runs entirely on the local machine.

    Note: Requires the 'vector' extra to be installed.
    """

    # Known model dimensions
    MODEL_DIMENSIONS = {
        "all-MiniLM-L6-v2": 384,
        "all-mpnet-base-v2": 768,
        "paraphrase-multilingual-MiniLM-L12-v2": 384,
        "multi-qa-mpnet-base-dot-v1": 768,
    }

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        device: Optional[str] = None,
        normalize: bool = True,
        max_tokens: int = 256,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    ):
        """Initialize the local embedding model.

        Args:
            model_name: Name of the sentence-transformers model
            device: Device to run on (cuda, cpu, mps). Auto-detected if None.
            normalize: Whether to normalize embeddings
            max_tokens: Token budget used for input truncation
            chars_per_token: Characters assumed per token when truncating
        """
        self.model_name = model_name
        self.device = device
        self.normalize = normalize
        self.max_tokens = max_tokens
        self.chars_per_token = chars_per_token
        self._model = None

    @property
    def dimension(self) -> int:
        return self.MODEL_DIMENSIONS.get(self.model_name, 384)

    def _get_model(self):
        """Get or load the sentence-transformers model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError(
                    "Local embedding requires 'sentence-transformers'. "
                    "Install it with: pip install sentence-transformers"
                )

            self._model = SentenceTransformer(self.model_name, device=self.device)
            logger.info(f"Loaded embedding model: {self.model_name}")
        return self._model

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts using the local model."""
        model = self._get_model()

        # Run in thread pool to avoid blocking
        loop = asyncio.get_event_loop()
        embeddings = await loop.run_in_executor(
            None,
            lambda: model.encode(
                texts,
                normalize_embeddings=self.normalize,
                convert_to_numpy=True,
            ),
        )

        return embeddings.tolist()


def create_embedding(provider: str = "hashing", **kwargs: Any) -> BaseEmbedding:
    """Build an embedding adapter by provider name.

    Args:
        provider: ``hashing``, ``openai`` or ``local``
        **kwargs: Constructor arguments for the selected implementation

    Raises:
        ValueError: If the provider is unknown
    """
    providers: dict[str, type[BaseEmbedding]] = {
        "hashing": HashingEmbedding,
        "openai": OpenAIEmbedding,
        "local": LocalEmbedding,
    }
    if provider not in providers:
        raise ValueError(f"Unknown embedding provider: {provider}")
    return providers[provider](**kwargs)
