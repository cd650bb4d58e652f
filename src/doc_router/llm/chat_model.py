"""LangChain chat-model backed generation service."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from langchain_core.messages import BaseMessage
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate

from doc_router.agent.registry import Tool, ToolRegistry
from doc_router.ingest.embedder import Embedder
from doc_router.llm.service import (
    FinalAnswer,
    GenerationService,
    ModelResponse,
    ToolCall,
    ToolCallRequest,
)

logger = logging.getLogger(__name__)

_SYNTHESIS_SYSTEM_PROMPT = """
Context information is below. Answer the question using only this context.
If the context does not contain the answer, say that it is not covered.
""".strip()

_SYNTHESIS_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _SYNTHESIS_SYSTEM_PROMPT),
        ("human", "Context:\n---------------------\n{context}\n---------------------\n\nQuestion: {query}"),
    ]
)


class LangChainGenerationService(GenerationService):
    """Uses any LangChain chat model that supports `bind_tools`.

    Tool schemas are bound per call since the top-level agent's tool set
    changes with every query.
    """

    def __init__(self, chat_model: Any, embedder: Embedder) -> None:
        super().__init__(embedder)
        self.chat_model = chat_model
        self._synthesis_chain = _SYNTHESIS_PROMPT | chat_model | StrOutputParser()

    def complete(
        self, messages: Sequence[BaseMessage], tools: Sequence[Tool]
    ) -> ModelResponse:
        model = (
            self.chat_model.bind_tools(ToolRegistry(tools).as_langchain_tools())
            if tools
            else self.chat_model
        )
        message = model.invoke(list(messages))
        return parse_ai_message(message)

    def synthesize(self, query: str, context: Sequence[str]) -> str:
        joined = "\n\n".join(context) if context else "(no context)"
        return str(self._synthesis_chain.invoke({"context": joined, "query": query}))


def parse_ai_message(message: Any) -> ModelResponse:
    """Convert a chat-model reply into the loop's tagged variant."""
    text = _message_text(message)
    tool_calls = getattr(message, "tool_calls", None) or []
    if not tool_calls:
        return FinalAnswer(text=text)
    calls = tuple(
        ToolCall(
            name=str(call.get("name", "")),
            arguments=dict(call.get("args") or {}),
            call_id=str(call.get("id") or ""),
        )
        for call in tool_calls
    )
    logger.debug("Model requested tools: %s", [call.name for call in calls])
    return ToolCallRequest(calls=calls, text=text)


def _message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type", "text") == "text" and "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content or "")
