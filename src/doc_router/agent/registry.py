"""Tools and tool registries built on Pydantic v2 models."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Callable, Iterable
from hashlib import sha1
from time import perf_counter
from typing import TYPE_CHECKING, Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from doc_router.errors import InvalidConfiguration, UnknownTool
from doc_router.retrieval.query_engine import QueryEngine
from doc_router.types import ToolTrace

if TYPE_CHECKING:
    from doc_router.agent.document_agent import DocumentAgent

_TOOL_NAME = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
# Leaves room for the longest prefix, "summary_tool_".
MAX_FRAGMENT_LENGTH = 48

VECTOR_TAG = "vector"
SUMMARY_TAG = "summary"
DOCUMENT_AGENT_TAG = "document_agent"


class QueryInput(BaseModel):
    input: str = Field(min_length=1, description="Natural-language query to run.")


class Tool(BaseModel):
    """A named, described, invokable capability.

    The description is the only routing signal; it is never executed.
    Tools hold no state of their own.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str
    description: str = Field(min_length=1)
    args_schema: type[BaseModel] = QueryInput
    handler: Callable[[BaseModel], str]
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _TOOL_NAME.match(value):
            raise ValueError(f"Tool name must match {_TOOL_NAME.pattern}: {value!r}")
        return value

    @field_validator("description")
    @classmethod
    def _check_description(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Tool description must not be blank")
        return value

    @classmethod
    def from_query_engine(
        cls,
        engine: QueryEngine,
        *,
        name: str,
        description: str,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "Tool":
        def _handler(data: BaseModel) -> str:
            return engine.query(data.input).text  # type: ignore[attr-defined]

        return cls._checked(
            name=name,
            description=description,
            handler=_handler,
            tags=tags or [],
            metadata=metadata or {},
        )

    @classmethod
    def from_agent(
        cls,
        agent: "DocumentAgent",
        *,
        name: str,
        description: str,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "Tool":
        """Promote a whole agent to one callable; each call runs a fresh session."""

        def _handler(data: BaseModel) -> str:
            return agent.query(data.input).text  # type: ignore[attr-defined]

        return cls._checked(
            name=name,
            description=description,
            handler=_handler,
            tags=[DOCUMENT_AGENT_TAG, *(tags or [])],
            metadata={"doc_id": agent.doc_id, **(metadata or {})},
        )

    @classmethod
    def _checked(cls, **fields: Any) -> "Tool":
        try:
            return cls(**fields)
        except ValidationError as exc:
            raise InvalidConfiguration(f"Invalid tool {fields.get('name')!r}: {exc}") from exc

    def invoke(self, payload: dict[str, Any]) -> str:
        data = self.args_schema.model_validate(payload)
        return self.handler(data)


class ToolRegistry:
    """Stores uniquely named tools and exports LangChain-compatible tool objects."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        self._observer: Callable[[ToolTrace], None] | None = None
        for tool in tools:
            self.register(tool)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise InvalidConfiguration(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownTool(name, self.names())
        return tool

    def execute(self, name: str, payload: dict[str, Any]) -> str:
        return self._execute_tool(self.get(name), payload)

    def names(self) -> list[str]:
        return list(self._tools)

    def tools(self) -> list[Tool]:
        return list(self._tools.values())

    def as_langchain_tools(self) -> list[StructuredTool]:
        return [
            StructuredTool.from_function(
                name=tool.name,
                description=tool.description,
                args_schema=tool.args_schema,
                func=self._build_function(tool),
            )
            for tool in self._tools.values()
        ]

    def _build_function(self, tool: Tool) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            return self._execute_tool(tool, kwargs)

        return _callable

    def _execute_tool(self, tool: Tool, payload: dict[str, Any]) -> str:
        start = perf_counter()
        output = tool.invoke(payload)
        latency_ms = (perf_counter() - start) * 1000.0

        if self._observer is not None:
            self._observer(
                ToolTrace(
                    name=tool.name,
                    input_payload=payload,
                    output_preview=output[:320],
                    latency_ms=latency_ms,
                )
            )
        return output


def sanitize_tool_name(raw: str) -> str:
    """Map a document id to a provider-safe tool-name fragment."""
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "_", raw.strip()).strip("_")[:MAX_FRAGMENT_LENGTH]
    return cleaned or "document"


def unique_tool_names(doc_ids: Iterable[str]) -> dict[str, str]:
    """Map each document id to a tool-name fragment no other id shares.

    Ids whose sanitized forms collide (`"New York"` and `"New_York"`) get a
    short hash of the raw id appended, so the result does not depend on order.
    """
    ids = list(dict.fromkeys(doc_ids))
    counts = Counter(sanitize_tool_name(doc_id) for doc_id in ids)
    fragments: dict[str, str] = {}
    for doc_id in ids:
        fragment = sanitize_tool_name(doc_id)
        if counts[fragment] > 1:
            digest = sha1(doc_id.encode("utf-8")).hexdigest()[:8]
            fragment = f"{fragment[: MAX_FRAGMENT_LENGTH - 9]}_{digest}"
        fragments[doc_id] = fragment
    return fragments
