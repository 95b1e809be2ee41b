"""
Tests for chunking and in-memory vector retrieval
"""
import pytest

from integration.base import ServiceError
from integration.retriever import (
    HashingEmbedder,
    InMemoryVectorRetriever,
    cosine_similarity,
    split_text,
)


class TestSplitText:
    """Test chunking"""

    def test_short_text_single_chunk(self):
        """Test text under the chunk size is kept whole"""
        assert split_text("One short paragraph.", chunk_size=100, overlap=10) == ["One short paragraph."]

    def test_prefers_paragraph_breaks(self):
        """Test chunks end at paragraph boundaries when possible"""
        text = "First paragraph here.\n\nSecond paragraph follows it."

        chunks = split_text(text, chunk_size=40, overlap=5)

        assert chunks[0] == "First paragraph here."
        assert chunks[-1].endswith("Second paragraph follows it.")

    def test_chunks_respect_size(self):
        """Test no chunk exceeds the chunk size"""
        text = " ".join(f"word{i}" for i in range(200))

        chunks = split_text(text, chunk_size=50, overlap=10)

        assert len(chunks) > 1
        assert all(len(chunk) <= 50 for chunk in chunks)
        assert chunks[-1].endswith("word199")

    def test_invalid_parameters(self):
        """Test chunk size and overlap are validated"""
        with pytest.raises(ValueError):
            split_text("text", chunk_size=0)
        with pytest.raises(ValueError):
            split_text("text", chunk_size=10, overlap=10)


class TestSimilarity:
    """Test vector helpers"""

    def test_cosine_similarity(self):
        """Test identical, orthogonal and zero vectors"""
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_size_mismatch(self):
        """Test vectors of different length are rejected"""
        with pytest.raises(ValueError):
            cosine_similarity([1.0], [1.0, 2.0])

    def test_hashing_embedder_is_deterministic(self):
        """Test the same text always embeds to the same unit vector"""
        embed = HashingEmbedder(dim=64)

        first = embed("Paris is the capital of France")

        assert first == embed("Paris is the capital of France")
        assert len(first) == 64
        assert cosine_similarity(first, first) == pytest.approx(1.0)


class TestInMemoryVectorRetriever:
    """Test indexing and search"""

    @pytest.fixture
    def retriever(self):
        retriever = InMemoryVectorRetriever()
        retriever.add_texts(
            [
                "Mount Everest is the tallest mountain above sea level.",
                "The capital of France is Paris.",
                "London weather is often cloudy and mild.",
            ],
            metadata={"source": "facts"},
        )
        return retriever

    def test_most_similar_first(self, retriever):
        """Test results are ordered by descending score"""
        docs = list(retriever.search("What is the capital of France?", top_k=3))

        assert docs[0].content == "The capital of France is Paris."
        scores = [doc.score for doc in docs]
        assert scores == sorted(scores, reverse=True)

    def test_top_k_limit(self, retriever):
        """Test at most top_k documents are yielded"""
        assert len(list(retriever.search("is", top_k=2))) == 2
        assert list(retriever.search("is", top_k=0)) == []

    def test_metadata_copied_with_position(self, retriever):
        """Test each chunk keeps the shared metadata plus its index"""
        doc = next(retriever.search("tallest mountain", top_k=1))

        assert doc.metadata == {"source": "facts", "chunk": 0}
        assert len(retriever) == 3

    def test_min_score_filters(self):
        """Test documents under the threshold are dropped"""
        retriever = InMemoryVectorRetriever(min_score=0.99)
        retriever.add_text("alpha beta gamma")
        retriever.add_text("completely unrelated words")

        docs = list(retriever.search("alpha beta gamma"))

        assert [doc.content for doc in docs] == ["alpha beta gamma"]

    def test_embedding_failure(self):
        """Test an embedding error surfaces as ServiceError"""
        def embed(text):
            raise ConnectionError("embedding endpoint unreachable")

        retriever = InMemoryVectorRetriever(embed=embed)

        with pytest.raises(ServiceError):
            list(retriever.search("anything"))
