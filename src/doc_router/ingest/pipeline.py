"""End-to-end build: corpus -> nodes -> indexes -> document agents -> top-level agent."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from doc_router.agent.document_agent import DocumentAgent
from doc_router.agent.registry import unique_tool_names
from doc_router.agent.top_level import TopLevelAgent
from doc_router.config import RouterConfig
from doc_router.ingest.corpus import Corpus, load_document
from doc_router.ingest.splitter import NodeSplitter
from doc_router.llm.service import GenerationService
from doc_router.retrieval.indices import SummaryIndex, VectorIndex
from doc_router.retrieval.object_index import ToolObjectIndex
from doc_router.retrieval.vector_store import InMemoryVectorStore, StoreFactory
from doc_router.storage.index_store import IndexStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RouterBuild:
    """Everything needed to serve queries, plus per-document setup failures."""

    top_agent: TopLevelAgent
    document_agents: dict[str, DocumentAgent]
    tool_index: ToolObjectIndex
    failures: dict[str, str] = field(default_factory=dict)


class RouterBuilder:
    """Builds the per-document agent fleet and the top-level router.

    Each document's split -> vector index -> summary index pipeline is
    independent, so documents are processed concurrently. A document that
    fails to load or index for any reason is skipped and recorded in
    `RouterBuild.failures`; the rest of the corpus stays available.
    """

    def __init__(
        self,
        corpus: Corpus,
        service: GenerationService,
        config: RouterConfig | None = None,
        *,
        index_store: IndexStore | None = None,
        store_factory: StoreFactory = InMemoryVectorStore,
    ) -> None:
        self.corpus = corpus
        self.service = service
        self.config = config or RouterConfig()
        # Bad splitter settings fail here, before any document is touched.
        self.splitter = NodeSplitter.from_config(self.config.splitter)
        self.index_store = index_store
        self.store_factory = store_factory

    def build(self, doc_ids: Iterable[str] | None = None) -> RouterBuild:
        ids = list(doc_ids) if doc_ids is not None else self.corpus.document_ids()
        agents: dict[str, DocumentAgent] = {}
        failures: dict[str, str] = {}
        fragments = unique_tool_names(ids)

        workers = min(self.config.indexing.max_workers, max(1, len(ids)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="doc-index") as pool:
            futures = {
                doc_id: pool.submit(self.build_document_agent, doc_id, fragments[doc_id])
                for doc_id in ids
            }
            for doc_id, future in futures.items():
                try:
                    agents[doc_id] = future.result()
                except Exception as exc:
                    logger.warning("Skipping document %s: %s", doc_id, exc)
                    failures[doc_id] = f"{type(exc).__name__}: {exc}"

        tool_index = ToolObjectIndex.build(
            [agent.as_tool() for agent in agents.values()],
            self.service,
            store_factory=self.store_factory,
        )
        top_agent = TopLevelAgent(
            tool_index,
            self.service,
            tool_top_k=self.config.retrieval.tool_top_k,
            config=self.config.agent,
        )
        logger.info(
            "Router ready: %d document agents, %d failures", len(agents), len(failures)
        )
        return RouterBuild(
            top_agent=top_agent,
            document_agents=agents,
            tool_index=tool_index,
            failures=failures,
        )

    def build_document_agent(
        self, doc_id: str, tool_fragment: str | None = None
    ) -> DocumentAgent:
        document = load_document(self.corpus, doc_id)
        splitter_config = self.config.splitter

        vector_index = summary_index = None
        if self.index_store is not None:
            vector_index = self.index_store.load_vector(document, splitter_config, self.service)
            summary_index = self.index_store.load_summary(document, splitter_config)

        if vector_index is None:
            # Each index gets its own split; the node sets are independent.
            vector_index = VectorIndex.build(
                doc_id,
                self.splitter.split(document),
                self.service,
                store_factory=self.store_factory,
            )
            if self.index_store is not None:
                self.index_store.save(vector_index, document, splitter_config)
        if summary_index is None:
            summary_index = SummaryIndex.build(doc_id, self.splitter.split(document))
            if self.index_store is not None:
                self.index_store.save(summary_index, document, splitter_config)

        logger.debug(
            "Indexed %s: %d vector nodes, %d summary nodes",
            doc_id,
            len(vector_index.nodes),
            len(summary_index.nodes),
        )
        return DocumentAgent.from_indexes(
            doc_id,
            vector_index,
            summary_index,
            self.service,
            retrieval=self.config.retrieval,
            config=self.config.agent,
            tool_fragment=tool_fragment,
        )
