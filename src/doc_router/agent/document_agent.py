"""Per-document agent choosing between its vector and summary tools."""

from __future__ import annotations

from collections.abc import Sequence

from doc_router.agent.registry import (
    SUMMARY_TAG,
    VECTOR_TAG,
    Tool,
    sanitize_tool_name,
)
from doc_router.agent.session import AgentResponse, AgentSession
from doc_router.config import AgentConfig, RetrievalConfig
from doc_router.errors import InvalidConfiguration
from doc_router.llm.service import GenerationService
from doc_router.retrieval.indices import SummaryIndex, VectorIndex
from doc_router.retrieval.query_engine import SummaryQueryEngine, VectorQueryEngine

DOCUMENT_AGENT_PROMPT = """
You are a specialized agent designed to answer queries about {doc_id}.
You must ALWAYS use at least one of the tools provided when answering a question.
Use the vector tool for specific facts and the summary tool for holistic summaries.
Do NOT rely on prior knowledge.
""".strip()


def vector_tool_description(doc_id: str) -> str:
    return (
        f"Useful for questions related to specific aspects of {doc_id} "
        "(e.g. the history, arts and culture, sports, demographics, or more)."
    )


def summary_tool_description(doc_id: str) -> str:
    return (
        f"Useful for any requests that require a holistic summary of EVERYTHING about {doc_id}. "
        f"For questions about more specific sections, please use the vector tool."
    )


def agent_tool_description(doc_id: str) -> str:
    return (
        f"This content contains Wikipedia articles about {doc_id}. "
        f"Use this tool if you want to answer any questions about {doc_id}."
    )


class DocumentAgent:
    """Reasoning loop scoped to one document.

    Holds only configuration (the two tools, the service, loop settings), so a
    fleet of agents can be kept in a `doc_id -> DocumentAgent` mapping and
    shared across threads; conversation state lives in `AgentSession`s.
    """

    def __init__(
        self,
        doc_id: str,
        tools: Sequence[Tool],
        service: GenerationService,
        *,
        config: AgentConfig | None = None,
        system_prompt: str | None = None,
        tool_fragment: str | None = None,
    ) -> None:
        tags = sorted(tag for tool in tools for tag in tool.tags if tag in (VECTOR_TAG, SUMMARY_TAG))
        if len(tools) != 2 or tags != [SUMMARY_TAG, VECTOR_TAG]:
            raise InvalidConfiguration(
                f"DocumentAgent for {doc_id} needs exactly one vector tool and one summary tool"
            )
        self.doc_id = doc_id
        self.tools = tuple(tools)
        self.service = service
        self.config = config or AgentConfig()
        self.system_prompt = system_prompt or DOCUMENT_AGENT_PROMPT.format(doc_id=doc_id)
        self.tool_fragment = tool_fragment or sanitize_tool_name(doc_id)

    @classmethod
    def from_indexes(
        cls,
        doc_id: str,
        vector_index: VectorIndex,
        summary_index: SummaryIndex,
        service: GenerationService,
        *,
        retrieval: RetrievalConfig | None = None,
        config: AgentConfig | None = None,
        tool_fragment: str | None = None,
    ) -> "DocumentAgent":
        """Wire each tool to its own index: vector -> vector, summary -> summary.

        `tool_fragment` names the tools; it defaults to the sanitized doc id.
        """
        retrieval = retrieval or RetrievalConfig()
        safe = tool_fragment or sanitize_tool_name(doc_id)
        vector_tool = Tool.from_query_engine(
            VectorQueryEngine(
                vector_index, service, similarity_top_k=retrieval.similarity_top_k
            ),
            name=f"vector_tool_{safe}",
            description=vector_tool_description(doc_id),
            tags=[VECTOR_TAG],
            metadata={"doc_id": doc_id},
        )
        summary_tool = Tool.from_query_engine(
            SummaryQueryEngine(
                summary_index, service, max_context_tokens=retrieval.max_context_tokens
            ),
            name=f"summary_tool_{safe}",
            description=summary_tool_description(doc_id),
            tags=[SUMMARY_TAG],
            metadata={"doc_id": doc_id},
        )
        return cls(
            doc_id, [vector_tool, summary_tool], service, config=config, tool_fragment=safe
        )

    def new_session(self) -> AgentSession:
        return AgentSession(
            name=f"agent[{self.doc_id}]",
            service=self.service,
            system_prompt=self.system_prompt,
            tool_provider=lambda _query: self.tools,
            config=self.config,
        )

    def chat(self, query: str, session: AgentSession | None = None) -> AgentResponse:
        return (session or self.new_session()).run(query)

    def query(self, query: str) -> AgentResponse:
        """Answer in a throwaway session (how the top-level agent calls us)."""
        return self.new_session().run(query)

    def as_tool(self) -> Tool:
        return Tool.from_agent(
            self,
            name=f"tool_{self.tool_fragment}",
            description=agent_tool_description(self.doc_id),
        )
