"""Per-document vector and summary indexes."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import Any

from doc_router.errors import EmbeddingServiceError, InvalidConfiguration, SynthesisError
from doc_router.ingest.splitter import count_tokens
from doc_router.llm.service import GenerationService
from doc_router.retrieval.vector_store import InMemoryVectorStore, StoreFactory, VectorStore
from doc_router.types import Node, ScoredNode

logger = logging.getLogger(__name__)

VECTOR_INDEX = "vector"
SUMMARY_INDEX = "summary"


class VectorIndex:
    """Embedding-based nearest-neighbor store over the nodes of one document."""

    index_type = VECTOR_INDEX

    def __init__(
        self,
        doc_id: str,
        nodes: list[Node],
        store: VectorStore,
        service: GenerationService,
    ) -> None:
        self.doc_id = doc_id
        self._service = service
        self._nodes = nodes
        self._by_id = {node.node_id: node for node in nodes}
        self._store = store

    @property
    def nodes(self) -> list[Node]:
        return list(self._nodes)

    @classmethod
    def build(
        cls,
        doc_id: str,
        nodes: Iterable[Node],
        service: GenerationService,
        *,
        store_factory: StoreFactory = InMemoryVectorStore,
    ) -> "VectorIndex":
        """Embed every node and return a ready index.

        Raises `EmbeddingServiceError` if the provider fails; nothing is
        stored in that case.
        """
        node_list = _single_document_nodes(doc_id, nodes)
        embeddings = service.embed_documents([node.text for node in node_list])
        if len(embeddings) != len(node_list):
            raise EmbeddingServiceError(
                f"Embedding provider returned {len(embeddings)} vectors for {len(node_list)} nodes"
            )
        embedded = [
            replace(node, embedding=tuple(vector))
            for node, vector in zip(node_list, embeddings, strict=True)
        ]
        logger.debug("Embedded %d nodes for %s", len(embedded), doc_id)
        return cls._from_embedded(doc_id, embedded, service, store_factory)

    @classmethod
    def _from_embedded(
        cls,
        doc_id: str,
        nodes: list[Node],
        service: GenerationService,
        store_factory: StoreFactory,
    ) -> "VectorIndex":
        store = store_factory()
        store.add(
            [node.node_id for node in nodes],
            [list(node.embedding or ()) for node in nodes],
        )
        return cls(doc_id, nodes, store, service)

    def retrieve(self, query: str, k: int) -> list[ScoredNode]:
        """Return at most `k` nodes by non-increasing similarity to `query`."""
        if k <= 0 or not self._nodes:
            return []
        query_embedding = self._service.embed_query(query)
        hits = self._store.query(query_embedding, k)
        return [
            ScoredNode(node=self._by_id[item_id], score=score, rank=rank)
            for rank, (item_id, score) in enumerate(hits, start=1)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "index_type": self.index_type,
            "doc_id": self.doc_id,
            "nodes": [node.to_dict() for node in self._nodes],
        }

    @classmethod
    def from_dict(
        cls,
        payload: dict[str, Any],
        service: GenerationService,
        *,
        store_factory: StoreFactory = InMemoryVectorStore,
    ) -> "VectorIndex":
        nodes = [Node.from_dict(item) for item in payload["nodes"]]
        if any(node.embedding is None for node in nodes):
            raise InvalidConfiguration("Persisted vector index is missing node embeddings")
        return cls._from_embedded(str(payload["doc_id"]), nodes, service, store_factory)


class SummaryIndex:
    """Full-content store over the nodes of one document.

    Queries synthesize across every node rather than a similarity-filtered
    subset. Content larger than the context budget is reduced as a tree:
    node texts are packed into batches that fit, each batch is answered, and
    the partial answers are packed and answered again until one remains.
    """

    index_type = SUMMARY_INDEX

    def __init__(self, doc_id: str, nodes: list[Node]) -> None:
        self.doc_id = doc_id
        self._nodes = nodes

    @property
    def nodes(self) -> list[Node]:
        return list(self._nodes)

    @classmethod
    def build(cls, doc_id: str, nodes: Iterable[Node]) -> "SummaryIndex":
        return cls(doc_id, _single_document_nodes(doc_id, nodes))

    def query(
        self,
        query: str,
        service: GenerationService,
        *,
        max_context_tokens: int = 3000,
    ) -> str:
        texts = [node.text for node in self._nodes]
        if not texts:
            return synthesize(service, query, [])
        return tree_summarize(service, query, texts, max_context_tokens)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index_type": self.index_type,
            "doc_id": self.doc_id,
            "nodes": [node.to_dict() for node in self._nodes],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SummaryIndex":
        nodes = [Node.from_dict(item) for item in payload["nodes"]]
        return cls(str(payload["doc_id"]), nodes)


def tree_summarize(
    service: GenerationService,
    query: str,
    texts: list[str],
    max_context_tokens: int,
) -> str:
    """Reduce `texts` to one answer, never dropping a text along the way."""
    level = 0
    while True:
        batches = pack_texts(texts, max_context_tokens)
        if len(batches) == 1:
            return synthesize(service, query, batches[0])
        if len(batches) == len(texts):
            # Every text alone exceeds the budget; pair them so each level shrinks.
            batches = [texts[i : i + 2] for i in range(0, len(texts), 2)]
        logger.debug(
            "Tree summarize level %d: %d texts in %d batches", level, len(texts), len(batches)
        )
        texts = [synthesize(service, query, batch) for batch in batches]
        level += 1


def pack_texts(texts: Sequence[str], max_context_tokens: int) -> list[list[str]]:
    """Greedily group consecutive texts so each group fits the token budget.

    A single text larger than the budget gets a group of its own.
    """
    batches: list[list[str]] = []
    current: list[str] = []
    current_tokens = 0
    for text in texts:
        tokens = count_tokens(text)
        if current and current_tokens + tokens > max_context_tokens:
            batches.append(current)
            current, current_tokens = [], 0
        current.append(text)
        current_tokens += tokens
    if current:
        batches.append(current)
    return batches


def synthesize(service: GenerationService, query: str, context: Sequence[str]) -> str:
    try:
        return service.synthesize(query, list(context))
    except SynthesisError:
        raise
    except Exception as exc:
        raise SynthesisError(f"Generation service failed to synthesize: {exc}") from exc


def _single_document_nodes(doc_id: str, nodes: Iterable[Node]) -> list[Node]:
    node_list = list(nodes)
    foreign = sorted({node.doc_id for node in node_list if node.doc_id != doc_id})
    if foreign:
        raise InvalidConfiguration(
            f"Index for {doc_id} received nodes from other documents: {', '.join(foreign)}"
        )
    return node_list
