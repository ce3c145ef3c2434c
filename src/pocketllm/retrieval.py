"""
In-memory document store with cosine-similarity search.

Documents are embedded once on insert by a pluggable :class:`Embedder`;
searching embeds the query and ranks every stored document against it.
"""

import hashlib
import logging
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import numpy as np
import regex as re

from .errors import DocumentNotFoundError, EmbeddingError

log = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[\p{L}\p{N}]+")


@runtime_checkable
class Embedder(Protocol):
    """Computes a fixed-dimension vector for a text, or ``None`` if it cannot."""

    def vector(self, text: str) -> Sequence[float] | None: ...


class HashingEmbedder:
    """
    Dependency-free bag-of-words embedder.

    Lowercased words are hashed into ``dimension`` buckets; a word counts once
    per text. Texts sharing words score high, unrelated texts score near zero.
    Returns ``None`` for texts without any word.
    """

    def __init__(self, dimension: int = 512) -> None:
        self.dimension = dimension

    def _bucket(self, word: str) -> int:
        # builtin hash() is salted per process
        digest = hashlib.sha256(word.encode("utf-8")).digest()
        return int.from_bytes(digest[:8], "big") % self.dimension

    def vector(self, text: str) -> list[float] | None:
        words = {w.lower() for w in _WORD_RE.findall(text)}
        if not words:
            return None
        vec = np.zeros(self.dimension, dtype=np.float64)
        for word in sorted(words):
            vec[self._bucket(word)] += 1.0
        return vec.tolist()


def magnitude(vector: np.ndarray) -> float:
    """Return the Euclidean norm of ``vector``."""
    return float(np.sqrt(np.dot(vector, vector)))


def cosine_similarity(
    a: Sequence[float] | np.ndarray,
    b: Sequence[float] | np.ndarray,
    magnitude_a: float,
    magnitude_b: float,
) -> float:
    """Dot product of ``a`` and ``b`` divided by the product of their magnitudes."""
    return float(np.dot(a, b)) / (magnitude_a * magnitude_b)


@dataclass(frozen=True)
class Document:
    """Stored text with its embedding and precomputed magnitude."""

    text: str
    embedding: np.ndarray
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    magnitude: float = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "magnitude", magnitude(self.embedding))


@dataclass(frozen=True)
class SearchResult:
    """One ranked retrieval hit."""

    id: uuid.UUID
    text: str
    score: float


class VectorStore:
    """
    Cosine-similarity document store.

    Searches may run concurrently; inserts and deletes are serialized.

    :param embedder: Text -> vector function; :class:`HashingEmbedder` by default.
    """

    def __init__(self, embedder: Embedder | None = None) -> None:
        self.embedder: Embedder = embedder or HashingEmbedder()
        self._documents: list[Document] = []
        self._write_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._documents)

    def _embed(self, text: str) -> np.ndarray:
        """Embed ``text``, raising if the embedder has no usable vector for it."""
        try:
            raw = self.embedder.vector(text)
        except Exception as e:
            raise EmbeddingError(f"embedder failed: {e}", text=text) from e
        if raw is None:
            raise EmbeddingError("failed to calculate embedding", text=text)
        vec = np.asarray(raw, dtype=np.float64)
        if vec.ndim != 1 or vec.size == 0 or not np.any(vec):
            raise EmbeddingError("embedding must be a non-zero vector", text=text)
        return vec

    def add_document(self, text: str, id: uuid.UUID | None = None) -> Document:
        """
        Embed and store ``text``.

        :raises EmbeddingError: If no embedding can be computed; the store is unchanged.
        """
        vec = self._embed(text)
        document = Document(text=text, embedding=vec, id=id or uuid.uuid4())
        with self._write_lock:
            # copy-on-write so concurrent searches see a consistent list
            self._documents = [*self._documents, document]
        log.debug(f"document {document.id} added ({len(self._documents)} stored)")
        return document

    def delete(self, document: str) -> None:
        """
        Remove the first stored document whose text equals ``document``.

        :raises DocumentNotFoundError: If no document has that text.
        """
        with self._write_lock:
            for idx, doc in enumerate(self._documents):
                if doc.text == document:
                    self._documents = self._documents[:idx] + self._documents[idx + 1 :]
                    log.debug(f"document {doc.id} deleted")
                    return
        raise DocumentNotFoundError("can not find document to delete", document=document)

    def clear(self) -> None:
        """Remove every document."""
        with self._write_lock:
            self._documents = []
        log.info("document store cleared")

    def search(
        self,
        query: str,
        similarity_threshold: float = 0.5,
        limit: int = 10,
    ) -> list[SearchResult]:
        """
        Rank stored documents against ``query``.

        Documents scoring below ``similarity_threshold`` are dropped; the rest
        are sorted by descending score (equal scores keep insertion order) and
        truncated to ``limit``.

        :raises EmbeddingError: If the query cannot be embedded.
        """
        query_vec = self._embed(query)
        query_magnitude = magnitude(query_vec)

        results: list[SearchResult] = []
        for doc in self._documents:
            if doc.embedding.shape != query_vec.shape:
                log.warning(
                    f"skipping document {doc.id}: embedding dimension "
                    f"{doc.embedding.shape[0]} != {query_vec.shape[0]}"
                )
                continue
            score = cosine_similarity(query_vec, doc.embedding, query_magnitude, doc.magnitude)
            if score >= similarity_threshold:
                results.append(SearchResult(id=doc.id, text=doc.text, score=score))

        # sorted() is stable, so ties stay in insertion order
        results = sorted(results, key=lambda r: r.score, reverse=True)
        return results[: max(limit, 0)]
