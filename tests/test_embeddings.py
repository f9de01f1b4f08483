"""Tests for the embedding adapters."""

from types import SimpleNamespace

import pytest

from hybridkb.rag import (
    BaseEmbedding,
    EmbeddingServiceError,
    HashingEmbedding,
    LocalEmbedding,
    OpenAIEmbedding,
    cosine_similarity,
    create_embedding,
)


class RecordingEmbedding(BaseEmbedding):
    """Embedding that records what it was asked to embed."""

    max_tokens = 2
    chars_per_token = 4

    def __init__(self, fail_with: Exception = None, drop_last: bool = False):
        self.fail_with = fail_with
        self.drop_last = drop_last
        self.calls: list[list[str]] = []

    @property
    def dimension(self) -> int:
        return 2

    async def _embed(self, texts):
        self.calls.append(texts)
        if self.fail_with is not None:
            raise self.fail_with
        vectors = [[float(len(t)), 1.0] for t in texts]
        return vectors[:-1] if self.drop_last else vectors


class FakeEmbeddingsAPI:
    """Stands in for ``AsyncOpenAI().embeddings``."""

    def __init__(self, fail_on_call: int = None):
        self.fail_on_call = fail_on_call
        self.requests: list[list[str]] = []

    async def create(self, model, input):
        self.requests.append(list(input))
        if self.fail_on_call == len(self.requests):
            raise RuntimeError("rate limited")
        return SimpleNamespace(
            data=[SimpleNamespace(embedding=[float(len(text))]) for text in input]
        )


class TestBaseEmbedding:
    """Tests for the shared adapter behavior."""

    @pytest.mark.asyncio
    async def test_truncates_inputs(self):
        """Test truncation to max_tokens * chars_per_token characters."""
        embedding = RecordingEmbedding()

        await embedding.embed_batch(["x" * 20, "short"])

        assert embedding.max_input_chars == 8
        assert embedding.calls == [["x" * 8, "short"]]

    @pytest.mark.asyncio
    async def test_single_batched_call(self):
        """Test that embed_batch makes one call for all texts."""
        embedding = RecordingEmbedding()

        vectors = await embedding.embed_batch(["a", "bb", "ccc"])

        assert len(embedding.calls) == 1
        assert vectors == [[1.0, 1.0], [2.0, 1.0], [3.0, 1.0]]

    @pytest.mark.asyncio
    async def test_embed_single(self):
        """Test embedding one text."""
        assert await RecordingEmbedding().embed("abc") == [3.0, 1.0]

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        """Test that an empty batch makes no call."""
        embedding = RecordingEmbedding()

        assert await embedding.embed_batch([]) == []
        assert embedding.calls == []

    @pytest.mark.asyncio
    async def test_wraps_unexpected_errors(self):
        """Test that backend errors surface as EmbeddingServiceError."""
        embedding = RecordingEmbedding(fail_with=ConnectionError("refused"))

        with pytest.raises(EmbeddingServiceError) as exc_info:
            await embedding.embed_batch(["a"])

        assert "refused" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_wrong_vector_count(self):
        """Test that a short response is an error."""
        with pytest.raises(EmbeddingServiceError):
            await RecordingEmbedding(drop_last=True).embed_batch(["a", "b"])


class TestHashingEmbedding:
    """Tests for HashingEmbedding."""

    @pytest.mark.asyncio
    async def test_dimension_and_norm(self):
        """Test vector size and unit length."""
        embedding = HashingEmbedding(dimension=32)

        vector = await embedding.embed("hello world again")

        assert embedding.dimension == 32
        assert len(vector) == 32
        assert sum(v * v for v in vector) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_deterministic(self):
        """Test that the same text always gives the same vector."""
        first = await HashingEmbedding().embed("deterministic output")
        second = await HashingEmbedding().embed("deterministic output")

        assert first == second

    @pytest.mark.asyncio
    async def test_shared_words_are_similar(self):
        """Test that identical texts score 1.0."""
        embedding = HashingEmbedding()
        a, b = await embedding.embed_batch(["cats are great pets", "cats are great pets"])

        assert cosine_similarity(a, b) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_text_without_tokens(self):
        """Test that text without usable tokens gives a zero vector."""
        vector = await HashingEmbedding(dimension=8).embed("a b c")

        assert vector == [0.0] * 8


class TestOpenAIEmbedding:
    """Tests for OpenAIEmbedding with a stubbed client."""

    @pytest.mark.asyncio
    async def test_batches_requests(self):
        """Test that inputs are sent in batches of batch_size."""
        embedding = OpenAIEmbedding(batch_size=2)
        api = FakeEmbeddingsAPI()
        embedding._client = SimpleNamespace(embeddings=api)

        vectors = await embedding.embed_batch(["a", "bb", "ccc"])

        assert api.requests == [["a", "bb"], ["ccc"]]
        assert vectors == [[1.0], [2.0], [3.0]]

    @pytest.mark.asyncio
    async def test_failed_batch_reports_indices(self):
        """Test that a failing request names the chunks it carried."""
        embedding = OpenAIEmbedding(batch_size=2)
        embedding._client = SimpleNamespace(embeddings=FakeEmbeddingsAPI(fail_on_call=2))

        with pytest.raises(EmbeddingServiceError) as exc_info:
            await embedding.embed_batch(["a", "b", "c", "d", "e"])

        assert exc_info.value.failed_indices == [2, 3]

    def test_dimension_by_model(self):
        """Test known model dimensions."""
        assert OpenAIEmbedding().dimension == 1536
        assert OpenAIEmbedding(model="text-embedding-3-large").dimension == 3072


class TestCreateEmbedding:
    """Tests for the embedding factory."""

    def test_hashing(self):
        """Test the default provider."""
        embedding = create_embedding("hashing", dimension=16)

        assert isinstance(embedding, HashingEmbedding)
        assert embedding.dimension == 16

    def test_other_providers(self):
        """Test that providers construct without loading a model."""
        assert isinstance(create_embedding("openai", api_key="sk-test"), OpenAIEmbedding)
        assert isinstance(create_embedding("local"), LocalEmbedding)

    def test_unknown_provider(self):
        """Test an unknown provider."""
        with pytest.raises(ValueError):
            create_embedding("word2vec")
