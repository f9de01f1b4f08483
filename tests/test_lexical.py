"""Tests for the BM25 lexical index."""

import math
import threading

import pytest

from hybridkb.rag import BM25Index, LexicalIndexError, chunk_text, tokenize


def make_chunk(content: str, document_id: str, source: str = "test.txt"):
    return chunk_text(content, source, document_id=document_id)[0]


class PausingBM25Index(BM25Index):
    """Index whose next search blocks mid-scoring until released."""

    def __init__(self):
        super().__init__()
        self.pause = False
        self.scoring = threading.Event()
        self.resume = threading.Event()

    def _score(self, state, query_tokens):
        if self.pause:
            self.pause = False
            self.scoring.set()
            self.resume.wait(timeout=5)
        return super()._score(state, query_tokens)


class TestTokenize:
    """Tests for the tokenizer."""

    def test_lowercases_and_strips_punctuation(self):
        """Test normalization of case and punctuation."""
        assert tokenize("The quick, brown FOX!") == ["the", "quick", "brown", "fox"]

    def test_drops_short_tokens(self):
        """Test that tokens under three characters are dropped."""
        assert tokenize("a an is the") == ["the"]

    def test_punctuation_splits_words(self):
        """Test that punctuation inside a word splits it."""
        assert tokenize("state-of-the-art") == ["state", "the", "art"]


class TestBM25Search:
    """Tests for BM25 scoring."""

    def test_fox_query_matches_only_fox_chunk(self, fox_index):
        """Test that only the chunk containing the term is returned."""
        results = fox_index.search("fox")

        assert [r.id for r in results] == ["fox_chunk_0"]
        assert results[0].score > 0

    def test_score_matches_formula(self, fox_index):
        """Test the Okapi BM25 score for a single term."""
        k1, b = 1.5, 0.75
        idf = math.log((2 - 1 + 0.5) / (1 + 0.5) + 1)
        tf_norm = (1 * (k1 + 1)) / (1 + k1 * (1 - b + b * 4 / 3.5))

        results = fox_index.search("fox")

        assert fox_index.avg_doc_length == pytest.approx(3.5)
        assert results[0].score == pytest.approx(idf * tf_norm)

    def test_repeated_query_terms_count_again(self, fox_index):
        """Test that a repeated query token adds its contribution twice."""
        single = fox_index.search("fox")[0].score
        double = fox_index.search("fox fox")[0].score

        assert double == pytest.approx(2 * single)

    def test_no_usable_query_tokens(self, fox_index):
        """Test a query made only of short tokens."""
        assert fox_index.search("a of") == []

    def test_unknown_term(self, fox_index):
        """Test a query with no matching chunk."""
        assert fox_index.search("elephant") == []

    def test_empty_index(self):
        """Test searching an empty index."""
        assert BM25Index().search("anything") == []

    def test_top_k_limits_results(self):
        """Test the result limit."""
        index = BM25Index()
        index.add_documents([make_chunk(f"shared term {i}", f"d{i}") for i in range(5)])

        assert len(index.search("shared", top_k=2)) == 2
        assert index.search("shared", top_k=0) == []

    def test_ties_keep_insertion_order(self):
        """Test that equal scores are returned in insertion order."""
        index = BM25Index()
        index.add_documents([
            make_chunk("identical content here", "first"),
            make_chunk("identical content here", "second"),
            make_chunk("identical content here", "third"),
        ])

        results = index.search("identical")

        assert [r.id for r in results] == ["first_chunk_0", "second_chunk_0", "third_chunk_0"]

    def test_higher_term_frequency_ranks_first(self):
        """Test that more occurrences score higher for equal lengths."""
        index = BM25Index()
        index.add_documents([
            make_chunk("python java rust", "once"),
            make_chunk("python python rust", "twice"),
        ])

        results = index.search("python")

        assert results[0].id == "twice_chunk_0"


class TestBM25Maintenance:
    """Tests for adding, replacing and clearing."""

    def test_clear_and_readd_is_deterministic(self, fox_index):
        """Test that the same chunk set gives the same scores after a clear."""
        chunks = fox_index.chunks()

        fox_index.clear()
        fox_index.add_documents(chunks)
        first = [(r.id, r.score) for r in fox_index.search("quick fox dogs")]

        fox_index.clear()
        fox_index.add_documents(chunks)
        second = [(r.id, r.score) for r in fox_index.search("quick fox dogs")]

        assert first == second
        assert first

    def test_clear_resets_bookkeeping(self, fox_index):
        """Test that clear empties everything and can be repeated."""
        fox_index.clear()
        fox_index.clear()

        assert len(fox_index) == 0
        assert fox_index.avg_doc_length == 0.0
        assert fox_index.document_frequency("fox") == 0
        assert fox_index.search("fox") == []

    def test_readding_id_replaces_chunk(self):
        """Test that a chunk with an existing ID replaces the old one."""
        index = BM25Index()
        index.add_documents([chunk_text("apple banana", "a.txt", document_id="x")[0]])
        index.add_documents([chunk_text("cherry pie", "a.txt", document_id="x")[0]])

        assert index.count() == 1
        assert index.search("apple") == []
        assert index.document_frequency("apple") == 0
        assert index.search("cherry")[0].id == "x_chunk_0"
        assert index.avg_doc_length == pytest.approx(2.0)

    def test_duplicate_ids_in_batch_rejected(self, fox_index):
        """Test that a batch with a repeated ID leaves the index unchanged."""
        chunk = make_chunk("giraffes are tall", "dup")

        with pytest.raises(LexicalIndexError):
            fox_index.add_documents([chunk, chunk])

        assert fox_index.count() == 2
        assert fox_index.search("giraffes") == []

    def test_non_chunk_rejected(self):
        """Test that arbitrary objects cannot be indexed."""
        with pytest.raises(LexicalIndexError):
            BM25Index().add_documents(["not a chunk"])

    def test_rebuild_replaces_contents(self, fox_index):
        """Test rebuilding from a subset of chunks."""
        keep = [c for c in fox_index.chunks() if c.id != "fox_chunk_0"]

        fox_index.rebuild(keep)

        assert fox_index.search("fox") == []
        assert [r.id for r in fox_index.search("dogs")] == ["dogs_chunk_0"]
        assert fox_index.avg_doc_length == pytest.approx(3.0)

    def test_get(self, fox_index):
        """Test fetching a chunk by ID."""
        assert fox_index.get("fox_chunk_0").content == "the quick brown fox"
        assert fox_index.get("missing") is None


class TestBM25Concurrency:
    """Tests for searches that overlap a write."""

    @pytest.mark.parametrize("write", ["add", "rebuild", "clear"])
    def test_search_sees_state_from_its_start(self, write):
        """Test that a write during a search does not leak into its results."""
        index = PausingBM25Index()
        index.add_documents([
            make_chunk("the quick brown fox", "fox"),
            make_chunk("lazy dogs sleep", "dogs"),
        ])
        before = [(r.id, r.score) for r in index.search("fox")]

        index.pause = True
        results = []
        searcher = threading.Thread(target=lambda: results.extend(index.search("fox")))
        searcher.start()
        assert index.scoring.wait(timeout=5)

        if write == "add":
            index.add_documents([make_chunk("fox fox fox den", "den")])
        elif write == "rebuild":
            index.rebuild([make_chunk("lazy dogs sleep", "dogs")])
        else:
            index.clear()

        index.resume.set()
        searcher.join(timeout=5)

        assert [(r.id, r.score) for r in results] == before
        assert len(index.search("fox")) == (2 if write == "add" else 0)
