"""Similarity store interfaces and concrete adapters.

Stores map opaque item ids to embeddings. Both node indexes and the tool
object index sit on top of this contract, so exact and approximate search are
interchangeable.
"""

from __future__ import annotations

from collections.abc import Callable
from math import sqrt
from typing import Any, Protocol


class VectorStore(Protocol):
    """Minimal similarity-search contract."""

    def add(self, item_ids: list[str], embeddings: list[list[float]]) -> None:
        """Insert item vectors. Insertion order is the tie-break order."""

    def query(self, embedding: list[float], k: int) -> list[tuple[str, float]]:
        """Return up to `k` `(item_id, score)` pairs, best first."""


StoreFactory = Callable[[], VectorStore]


class InMemoryVectorStore:
    """Exact brute-force cosine search.

    Equal scores keep insertion order (the sort is stable).
    """

    def __init__(self) -> None:
        self._ids: list[str] = []
        self._vectors: list[list[float]] = []
        self._positions: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, item_ids: list[str], embeddings: list[list[float]]) -> None:
        if len(item_ids) != len(embeddings):
            raise ValueError("item_ids and embeddings must have the same length")
        for item_id, embedding in zip(item_ids, embeddings, strict=True):
            position = self._positions.get(item_id)
            if position is not None:
                self._vectors[position] = list(embedding)
                continue
            self._positions[item_id] = len(self._ids)
            self._ids.append(item_id)
            self._vectors.append(list(embedding))

    def query(self, embedding: list[float], k: int) -> list[tuple[str, float]]:
        if k <= 0:
            return []
        scored = [
            (item_id, _cosine_similarity(embedding, vector))
            for item_id, vector in zip(self._ids, self._vectors, strict=True)
        ]
        ranked = sorted(scored, key=lambda item: item[1], reverse=True)
        return ranked[:k]


class FaissVectorStoreAdapter:
    """Approximate search via the LangChain community FAISS integration.

    Keeps the `InMemoryVectorStore` contract so it can be swapped in for large
    corpora. FAISS returns squared L2 distances; for unit vectors these map to
    cosine similarity as `1 - d / 2`.
    """

    def __init__(self) -> None:
        try:
            from langchain_community.vectorstores import FAISS
            from langchain_core.embeddings import Embeddings
        except Exception as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError(
                "FAISS dependencies are not available. Install langchain-community/faiss-cpu."
            ) from exc

        class _PrecomputedEmbeddings(Embeddings):
            # Vectors are always supplied by the caller; text embedding is never needed.
            def embed_documents(self, texts: list[str]) -> list[list[float]]:
                raise NotImplementedError("FaissVectorStoreAdapter stores precomputed vectors only")

            def embed_query(self, text: str) -> list[float]:
                raise NotImplementedError("FaissVectorStoreAdapter stores precomputed vectors only")

        self._faiss_cls = FAISS
        self._embeddings = _PrecomputedEmbeddings()
        self._index: Any | None = None

    def add(self, item_ids: list[str], embeddings: list[list[float]]) -> None:
        if len(item_ids) != len(embeddings):
            raise ValueError("item_ids and embeddings must have the same length")
        if not item_ids:
            return
        text_embeddings = list(zip(item_ids, embeddings, strict=True))
        metadatas = [{"item_id": item_id} for item_id in item_ids]

        if self._index is None:
            self._index = self._faiss_cls.from_embeddings(
                text_embeddings=text_embeddings,
                embedding=self._embeddings,
                metadatas=metadatas,
                ids=item_ids,
            )
            return

        self._index.add_embeddings(
            text_embeddings=text_embeddings,
            metadatas=metadatas,
            ids=item_ids,
        )

    def query(self, embedding: list[float], k: int) -> list[tuple[str, float]]:
        if self._index is None or k <= 0:
            return []
        docs_and_distances = self._index.similarity_search_with_score_by_vector(
            embedding=embedding,
            k=k,
        )
        return [
            (str(doc.metadata.get("item_id", doc.page_content)), 1.0 - float(distance) / 2.0)
            for doc, distance in docs_and_distances
        ]


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
