"""Deterministic generation service for when no external LLM is configured."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, ToolMessage

from doc_router.agent.registry import DOCUMENT_AGENT_TAG, SUMMARY_TAG, VECTOR_TAG, Tool
from doc_router.ingest.embedder import Embedder, HashingEmbedder
from doc_router.llm.service import (
    FinalAnswer,
    GenerationService,
    ModelResponse,
    ToolCall,
    ToolCallRequest,
)

_WORD_PATTERN = re.compile(r"\w+", flags=re.UNICODE)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?。！？])\s+|\n+")
_HOLISTIC_TERMS = frozenset(
    {"summarize", "summarise", "summary", "overview", "everything", "overall", "holistic"}
)
_STOPWORDS = frozenset(
    """
    a about an and any are as at be between by can could did do does for from has
    have how i in is it its me of on or s the their there these this to was were
    what when where which who why will with you your tell give please
    """.split()
)


class DeterministicGenerationService(GenerationService):
    """Keyword-routing, extractive stand-in for a real chat model.

    Keeps the same contract as `LangChainGenerationService` and is useful for
    local/offline environments where `OPENAI_API_KEY` is not configured:

    - document-agent tools are chosen when their document id appears in the
      query (the best-ranked candidate otherwise);
    - between a vector and a summary tool, holistic wording ("summarize",
      "overview", "everything") picks the summary tool;
    - once tools have answered in the current turn, their outputs are joined
      into the final answer;
    - synthesis extracts the context sentences sharing most terms with the
      query, or the lead sentence of every passage for holistic queries.
    """

    def __init__(self, embedder: Embedder | None = None, *, max_sentences: int = 3) -> None:
        super().__init__(embedder or HashingEmbedder())
        self.max_sentences = max_sentences

    def complete(
        self, messages: Sequence[BaseMessage], tools: Sequence[Tool]
    ) -> ModelResponse:
        query, turn = _current_turn(messages)
        tool_outputs = [
            str(message.content).strip()
            for message in turn
            if isinstance(message, ToolMessage) and str(message.content).strip()
        ]
        if tool_outputs:
            return FinalAnswer(text="\n\n".join(tool_outputs))
        if not tools:
            return FinalAnswer(text=f"No indexed document covers this question: {query}")

        selected = select_tools(query, tools)
        return ToolCallRequest(
            calls=tuple(ToolCall(name=tool.name, arguments={"input": query}) for tool in selected)
        )

    def synthesize(self, query: str, context: Sequence[str]) -> str:
        passages = [passage for passage in context if passage.strip()]
        if not passages:
            return f"No context available to answer: {query}"

        if is_holistic(query):
            leads = _dedupe(_sentences(passage)[0] for passage in passages)
            return " ".join(leads)

        sentences = _dedupe(
            sentence for passage in passages for sentence in _sentences(passage)
        )
        query_terms = content_terms(query)
        scored = [
            (len(content_terms(sentence) & query_terms), position)
            for position, sentence in enumerate(sentences)
        ]
        best = sorted(
            (item for item in scored if item[0] > 0),
            key=lambda item: (-item[0], item[1]),
        )[: self.max_sentences]
        if not best:
            return sentences[0]
        return " ".join(sentences[position] for _, position in sorted(best, key=lambda x: x[1]))


def select_tools(query: str, tools: Sequence[Tool]) -> list[Tool]:
    terms = content_terms(query)
    agent_tools = [tool for tool in tools if DOCUMENT_AGENT_TAG in tool.tags]
    if agent_tools:
        matched = [
            tool
            for tool in agent_tools
            if content_terms(str(tool.metadata.get("doc_id", tool.name))) & terms
        ]
        return matched or agent_tools[:1]

    wanted = SUMMARY_TAG if is_holistic(query) else VECTOR_TAG
    tagged = [tool for tool in tools if wanted in tool.tags]
    return tagged[:1] or list(tools[:1])


def is_holistic(query: str) -> bool:
    return bool(_HOLISTIC_TERMS & set(_words(query)))


def content_terms(text: str) -> set[str]:
    return {word for word in _words(text) if word not in _STOPWORDS}


def _words(text: str) -> list[str]:
    return [word.lower() for word in _WORD_PATTERN.findall(text)]


def _sentences(text: str) -> list[str]:
    parts = [part.strip() for part in _SENTENCE_SPLIT.split(text) if part.strip()]
    return parts or [text.strip()]


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


def _current_turn(messages: Sequence[BaseMessage]) -> tuple[str, list[BaseMessage]]:
    for position in range(len(messages) - 1, -1, -1):
        if isinstance(messages[position], HumanMessage):
            return str(messages[position].content), list(messages[position + 1 :])
    return "", list(messages)
