"""Generation service contract: tool-calling completion, synthesis, embeddings."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeAlias

from langchain_core.messages import BaseMessage

from doc_router.errors import EmbeddingServiceError
from doc_router.ingest.embedder import Embedder

if TYPE_CHECKING:
    from doc_router.agent.registry import Tool


@dataclass(frozen=True, slots=True)
class ToolCall:
    """One tool invocation requested by the model."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str = ""


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """Model turn asking for one or more tools to be run, in order."""

    calls: tuple[ToolCall, ...]
    text: str = ""


@dataclass(frozen=True, slots=True)
class FinalAnswer:
    """Model turn that answers directly and ends the reasoning loop."""

    text: str


ModelResponse: TypeAlias = ToolCallRequest | FinalAnswer


class GenerationService(ABC):
    """Black-box text generation + embedding collaborator.

    Subclasses implement `complete` and `synthesize`. Embedding goes through
    the wrapped `Embedder`; provider failures surface as
    `EmbeddingServiceError`.
    """

    def __init__(self, embedder: Embedder) -> None:
        self.embedder = embedder

    @abstractmethod
    def complete(
        self, messages: Sequence[BaseMessage], tools: Sequence["Tool"]
    ) -> ModelResponse:
        """Choose between calling `tools` and answering, given the conversation."""

    @abstractmethod
    def synthesize(self, query: str, context: Sequence[str]) -> str:
        """Answer `query` using only the `context` passages."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        try:
            return self.embedder.embed_documents(texts)
        except EmbeddingServiceError:
            raise
        except Exception as exc:
            raise EmbeddingServiceError(f"Embedding provider failed: {exc}") from exc

    def embed_query(self, text: str) -> list[float]:
        try:
            return self.embedder.embed_query(text)
        except EmbeddingServiceError:
            raise
        except Exception as exc:
            raise EmbeddingServiceError(f"Embedding provider failed: {exc}") from exc
