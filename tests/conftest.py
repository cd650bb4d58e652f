from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pytest
from langchain_core.messages import BaseMessage

from doc_router.config import AgentConfig, RetrievalConfig, RouterConfig, SplitterConfig
from doc_router.ingest.corpus import InMemoryCorpus
from doc_router.ingest.embedder import Embedder, HashingEmbedder
from doc_router.llm.fallback import DeterministicGenerationService
from doc_router.llm.service import FinalAnswer, GenerationService, ModelResponse

BRAZIL = (
    "Brazil is the largest country in South America. "
    "Its capital is Brasilia and its most populous city is Sao Paulo. "
    "Brazil economics rely on agriculture, mining and manufacturing, "
    "and Brazil is a leading exporter of soybeans and coffee. "
    "Football is the most popular sport in Brazil."
)

CANADA = (
    "Canada is a country in North America with ten provinces and three territories. "
    "Its capital is Ottawa and its largest city is Toronto. "
    "Canada economics are driven by natural resources, "
    "with timber, oil and minerals as major exports. "
    "Canada has a cold climate with long winters in most regions."
)


class ScriptedGenerationService(GenerationService):
    """Replays canned model turns and records every call."""

    def __init__(
        self,
        responses: Sequence[ModelResponse | Callable[..., ModelResponse]] = (),
        *,
        embedder: Embedder | None = None,
    ) -> None:
        super().__init__(embedder or HashingEmbedder())
        self.responses = list(responses)
        self.complete_calls: list[tuple[list[BaseMessage], list[str]]] = []
        self.synthesis_calls: list[tuple[str, list[str]]] = []

    def complete(self, messages: Sequence[BaseMessage], tools: Sequence[Any]) -> ModelResponse:
        self.complete_calls.append((list(messages), [tool.name for tool in tools]))
        if not self.responses:
            return FinalAnswer(text="done")
        response = self.responses.pop(0)
        if callable(response):
            return response(messages, tools)
        return response

    def synthesize(self, query: str, context: Sequence[str]) -> str:
        self.synthesis_calls.append((query, list(context)))
        return " | ".join(context)


class FailingEmbedder(HashingEmbedder):
    """Raises for any text containing `marker`."""

    def __init__(self, marker: str) -> None:
        super().__init__()
        self.marker = marker

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if any(self.marker in text for text in texts):
            raise RuntimeError(f"provider rejected text containing {self.marker}")
        return super().embed_documents(texts)


class TruncatingEmbedder(HashingEmbedder):
    """Returns no vectors for a batch containing `marker`."""

    def __init__(self, marker: str) -> None:
        super().__init__()
        self.marker = marker

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if any(self.marker in text for text in texts):
            return []
        return super().embed_documents(texts)


class CountingEmbedder(HashingEmbedder):
    def __init__(self) -> None:
        super().__init__()
        self.document_batches: list[list[str]] = []

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_batches.append(list(texts))
        return super().embed_documents(texts)


@pytest.fixture
def countries() -> dict[str, str]:
    return {"Brazil": BRAZIL, "Canada": CANADA}


@pytest.fixture
def corpus(countries: dict[str, str]) -> InMemoryCorpus:
    return InMemoryCorpus(countries)


@pytest.fixture
def router_config() -> RouterConfig:
    return RouterConfig(
        splitter=SplitterConfig(chunk_size=256, chunk_overlap=16),
        retrieval=RetrievalConfig(similarity_top_k=2, tool_top_k=2),
        agent=AgentConfig(max_rounds=4),
    )


@pytest.fixture
def deterministic_service() -> DeterministicGenerationService:
    return DeterministicGenerationService(HashingEmbedder())


@pytest.fixture
def make_scripted_service() -> type[ScriptedGenerationService]:
    return ScriptedGenerationService


@pytest.fixture
def make_failing_embedder() -> type[FailingEmbedder]:
    return FailingEmbedder


@pytest.fixture
def make_truncating_embedder() -> type[TruncatingEmbedder]:
    return TruncatingEmbedder


@pytest.fixture
def make_counting_embedder() -> type[CountingEmbedder]:
    return CountingEmbedder
