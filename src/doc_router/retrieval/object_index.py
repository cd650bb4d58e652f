"""Embedding-based retrieval over tool descriptions."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from doc_router.agent.registry import Tool
from doc_router.errors import EmbeddingServiceError, InvalidConfiguration
from doc_router.llm.service import GenerationService
from doc_router.retrieval.vector_store import InMemoryVectorStore, StoreFactory, VectorStore

logger = logging.getLogger(__name__)


class ToolObjectIndex:
    """Top-k semantic retrieval of tools by description.

    Lets the top-level agent reason over a bounded candidate set instead of
    every document tool. A relevant tool missing from the top-k is
    unreachable for that query, so description quality drives recall.
    """

    def __init__(
        self, tools: list[Tool], store: VectorStore, service: GenerationService
    ) -> None:
        self._tools = {tool.name: tool for tool in tools}
        self._store = store
        self._service = service

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def tools(self) -> list[Tool]:
        return list(self._tools.values())

    @classmethod
    def build(
        cls,
        tools: Iterable[Tool],
        service: GenerationService,
        *,
        store_factory: StoreFactory = InMemoryVectorStore,
    ) -> "ToolObjectIndex":
        """Embed every description; `EmbeddingServiceError` aborts the build."""
        tool_list = list(tools)
        names = [tool.name for tool in tool_list]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise InvalidConfiguration(f"Duplicate tool names: {', '.join(duplicates)}")

        embeddings = service.embed_documents([tool.description for tool in tool_list])
        if len(embeddings) != len(tool_list):
            raise EmbeddingServiceError(
                f"Embedding provider returned {len(embeddings)} vectors for {len(tool_list)} tools"
            )
        store = store_factory()
        store.add(names, embeddings)
        logger.info("Indexed %d tool descriptions", len(tool_list))
        return cls(tool_list, store, service)

    def retrieve(self, query: str, k: int) -> list[Tool]:
        """Return at most `k` tools, most similar description first."""
        if k <= 0 or not self._tools:
            return []
        hits = self._store.query(self._service.embed_query(query), k)
        return [self._tools[name] for name, _score in hits]
