"""Top-level agent routing queries to dynamically retrieved document agents."""

from __future__ import annotations

import logging

from doc_router.agent.registry import Tool
from doc_router.agent.session import AgentResponse, AgentSession
from doc_router.config import AgentConfig
from doc_router.llm.service import GenerationService
from doc_router.retrieval.object_index import ToolObjectIndex

logger = logging.getLogger(__name__)

TOP_LEVEL_PROMPT = """
You are an agent designed to answer queries about a set of given documents.
Always use the tools provided to answer a question; call several tools when the
question spans several documents (e.g. comparisons) and combine their answers.
Do not rely on prior knowledge.
""".strip()


class TopLevelAgent:
    """Entry point: retrieve `tool_top_k` candidate tools, then run the loop.

    Retrieval happens at the start of every turn, so a long session can move
    between documents. Invoked document agents are opaque and synchronous.
    """

    def __init__(
        self,
        tool_index: ToolObjectIndex,
        service: GenerationService,
        *,
        tool_top_k: int = 3,
        config: AgentConfig | None = None,
        system_prompt: str = TOP_LEVEL_PROMPT,
    ) -> None:
        self.tool_index = tool_index
        self.service = service
        self.tool_top_k = tool_top_k
        self.config = config or AgentConfig()
        self.system_prompt = system_prompt

    def retrieve_tools(self, query: str) -> list[Tool]:
        tools = self.tool_index.retrieve(query, self.tool_top_k)
        logger.info(
            "Retrieved %d candidate tools for query: %s",
            len(tools),
            ", ".join(tool.name for tool in tools) or "<none>",
        )
        return tools

    def new_session(self) -> AgentSession:
        return AgentSession(
            name="top_agent",
            service=self.service,
            system_prompt=self.system_prompt,
            tool_provider=self.retrieve_tools,
            config=self.config,
        )

    def ask(self, query: str, session: AgentSession | None = None) -> AgentResponse:
        """Answer `query`, continuing `session` when given."""
        return (session or self.new_session()).run(query)
