"""
Vector Retriever - In-memory similarity search over indexed chunks

    for doc in retriever.search(query, top_k=3):
        print(doc.score, doc.content)

``search`` yields documents in descending score order, at most ``top_k``
of them. The iterator is finite and not restartable; call ``search``
again for a fresh pass.
"""
import hashlib
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from integration.base import ServiceError

logger = logging.getLogger(__name__)

Embedder = Callable[[str], Sequence[float]]


@dataclass
class RetrievedDocument:
    """One search hit"""
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    score: float = 0.0


@dataclass
class _IndexedChunk:
    key: str
    content: str
    vector: List[float]
    metadata: Dict[str, Any]


class HashingEmbedder:
    """Deterministic bag-of-words embedding using hashed token buckets

    Needs no model; texts sharing words get similar vectors, which is
    enough for demos and tests.
    """

    def __init__(self, dim: int = 256):
        self.dim = dim

    def __call__(self, text: str) -> List[float]:
        vector = [0.0] * self.dim
        for token in re.findall(r"[a-z0-9_]+", text.lower()):
            digest = hashlib.sha1(token.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "big") % self.dim
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            vector[index] += sign
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector size mismatch: {len(a)} != {len(b)}")
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / (norm_a * norm_b)


def split_text(text: str, chunk_size: int = 500, overlap: int = 50) -> List[str]:
    """Split text into chunks of at most ``chunk_size`` characters

    Paragraph breaks are preferred, then sentence ends, then spaces.
    Consecutive chunks share up to ``overlap`` characters.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be between 0 and chunk_size")

    text = text.strip()
    chunks = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        if end < len(text):
            window = text[start:end]
            for separator in ("\n\n", ". ", " "):
                cut = window.rfind(separator)
                if cut > overlap:
                    end = start + cut + len(separator)
                    break
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= len(text):
            break
        start = max(end - overlap, start + 1)
    return chunks


class InMemoryVectorRetriever:
    """Vector index held in memory

    Example:
        retriever = InMemoryVectorRetriever()
        retriever.add_texts(split_text(report), metadata={"source": "report.txt"})
        docs = list(retriever.search("What did the president say?", top_k=3))
    """

    def __init__(self, embed: Optional[Embedder] = None, min_score: float = 0.0):
        self.embed = embed or HashingEmbedder()
        self.min_score = min_score
        self._chunks: List[_IndexedChunk] = []
        self.logger = logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self._chunks)

    def add_text(self, text: str, metadata: Optional[Dict[str, Any]] = None, key: Optional[str] = None) -> str:
        """Index one chunk and return its key"""
        doc_key = key or hashlib.sha1(text.encode("utf-8")).hexdigest()[:16]
        self._chunks.append(_IndexedChunk(
            key=doc_key,
            content=text,
            vector=list(self._embed(text)),
            metadata=dict(metadata or {}),
        ))
        return doc_key

    def add_texts(self, texts: Sequence[str], metadata: Optional[Dict[str, Any]] = None) -> List[str]:
        """Index several chunks; each gets a copy of ``metadata`` plus its position"""
        keys = []
        for position, text in enumerate(texts):
            meta = dict(metadata or {})
            meta.setdefault("chunk", position)
            keys.append(self.add_text(text, meta))
        self.logger.info(f"Indexed {len(texts)} chunks ({len(self._chunks)} total)")
        return keys

    def search(self, query: str, top_k: int = 4) -> Iterator[RetrievedDocument]:
        """Yield up to ``top_k`` documents, most similar first

        Raises:
            ServiceError: the embedding function failed
        """
        if top_k < 1:
            return
        query_vector = self._embed(query)

        scored = []
        for chunk in self._chunks:
            score = cosine_similarity(query_vector, chunk.vector)
            if score >= self.min_score:
                scored.append((score, chunk))
        scored.sort(key=lambda item: item[0], reverse=True)

        for score, chunk in scored[:top_k]:
            yield RetrievedDocument(content=chunk.content, metadata=dict(chunk.metadata), score=score)

    def _embed(self, text: str) -> Sequence[float]:
        try:
            return self.embed(text)
        except Exception as e:
            raise ServiceError(
                f"Embedding failed: {e}", integration_name="retriever"
            ) from e
