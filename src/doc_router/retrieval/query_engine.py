"""Query engines: execute a query against one index and synthesize an answer."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from doc_router.llm.service import GenerationService
from doc_router.retrieval.indices import SummaryIndex, VectorIndex, synthesize
from doc_router.types import ScoredNode


@dataclass(slots=True)
class Response:
    """Synthesized answer plus the nodes it was derived from."""

    text: str
    source_nodes: list[ScoredNode] = field(default_factory=list)

    def __str__(self) -> str:
        return self.text


class QueryEngine(ABC):
    """Wraps exactly one index. Generation failures raise `SynthesisError`."""

    @abstractmethod
    def query(self, text: str) -> Response:
        """Answer `text` from the wrapped index."""


class VectorQueryEngine(QueryEngine):
    """Top-k retrieval followed by synthesis over the retrieved text."""

    def __init__(
        self,
        index: VectorIndex,
        service: GenerationService,
        *,
        similarity_top_k: int = 2,
    ) -> None:
        self.index = index
        self.service = service
        self.similarity_top_k = similarity_top_k

    def query(self, text: str) -> Response:
        hits = self.index.retrieve(text, self.similarity_top_k)
        answer = synthesize(self.service, text, [hit.node.text for hit in hits])
        return Response(text=answer, source_nodes=hits)


class SummaryQueryEngine(QueryEngine):
    """Holistic synthesis across every node of the document."""

    def __init__(
        self,
        index: SummaryIndex,
        service: GenerationService,
        *,
        max_context_tokens: int = 3000,
    ) -> None:
        self.index = index
        self.service = service
        self.max_context_tokens = max_context_tokens

    def query(self, text: str) -> Response:
        answer = self.index.query(
            text, self.service, max_context_tokens=self.max_context_tokens
        )
        return Response(
            text=answer,
            source_nodes=[
                ScoredNode(node=node, score=1.0, rank=rank)
                for rank, node in enumerate(self.index.nodes, start=1)
            ],
        )
