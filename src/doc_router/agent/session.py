"""Tool-calling reasoning loop shared by document and top-level agents."""

from __future__ import annotations

import contextvars
import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from pydantic import ValidationError

from doc_router.agent.registry import Tool, ToolRegistry
from doc_router.config import AgentConfig
from doc_router.errors import (
    DocRouterError,
    ReasoningLoopExceeded,
    SessionTimeout,
    SynthesisError,
)
from doc_router.llm.service import (
    FinalAnswer,
    GenerationService,
    ModelResponse,
    ToolCall,
    ToolCallRequest,
)
from doc_router.types import ToolTrace

logger = logging.getLogger(__name__)

ToolProvider = Callable[[str], Sequence[Tool]]

# Deadline of the turn in progress on this thread; nested agent sessions inherit it.
_turn_deadline: contextvars.ContextVar[float | None] = contextvars.ContextVar(
    "turn_deadline", default=None
)


class LoopState(str, Enum):
    AWAITING_QUERY = "awaiting_query"
    SELECTING_TOOL = "selecting_tool"
    AWAITING_TOOL_RESULT = "awaiting_tool_result"
    RESPONDING = "responding"
    DONE = "done"


@dataclass(slots=True)
class AgentResponse:
    """Outcome of one reasoning turn.

    `degraded` marks a partial answer returned after the round budget ran out.
    """

    text: str
    rounds: int
    tools_offered: list[str] = field(default_factory=list)
    tool_traces: list[ToolTrace] = field(default_factory=list)
    degraded: bool = False
    error: str | None = None

    def __str__(self) -> str:
        return self.text

    @property
    def tools_invoked(self) -> list[str]:
        return [trace.name for trace in self.tool_traces]


class AgentSession:
    """Conversation state for one user of an agent.

    Agents are shared, read-only configuration; every session owns its own
    history, so concurrent sessions never interfere. History accumulates
    across turns until `reset()` or a new session.
    """

    def __init__(
        self,
        *,
        name: str,
        service: GenerationService,
        system_prompt: str,
        tool_provider: ToolProvider,
        config: AgentConfig | None = None,
    ) -> None:
        self.name = name
        self.session_id = uuid.uuid4().hex
        self.service = service
        self.system_prompt = system_prompt
        self.config = config or AgentConfig()
        self._tool_provider = tool_provider
        self.history: list[BaseMessage] = []
        self.state = LoopState.AWAITING_QUERY

    def reset(self) -> None:
        self.history = []
        self.state = LoopState.AWAITING_QUERY

    def run(self, query: str) -> AgentResponse:
        """Run one full turn of the loop for `query`.

        On `SessionTimeout` or any other error the turn's partial history is
        discarded and the error propagates. A session run from inside another
        turn (a document agent called as a tool) stops at the earlier of its
        own deadline and the enclosing one. Round-budget exhaustion is not an
        error for the caller: the partial answer comes back degraded.
        """
        snapshot = list(self.history)
        traces: list[ToolTrace] = []
        offered: list[str] = []
        deadline = _earliest(
            _turn_deadline.get(),
            time.monotonic() + self.config.session_timeout_seconds
            if self.config.session_timeout_seconds is not None
            else None,
        )
        token = _turn_deadline.set(deadline)
        try:
            return self._run_turn(query, deadline, traces, offered)
        except ReasoningLoopExceeded as exc:
            logger.warning("%s: %s; returning partial answer", self.name, exc)
            self.history.append(AIMessage(content=exc.partial_answer))
            self.state = LoopState.DONE
            return AgentResponse(
                text=exc.partial_answer,
                rounds=exc.rounds,
                tools_offered=offered,
                tool_traces=traces,
                degraded=True,
                error=type(exc).__name__,
            )
        except Exception:
            self.history = snapshot
            self.state = LoopState.AWAITING_QUERY
            raise
        finally:
            _turn_deadline.reset(token)

    def _run_turn(
        self,
        query: str,
        deadline: float | None,
        traces: list[ToolTrace],
        offered: list[str],
    ) -> AgentResponse:
        registry = ToolRegistry(self._tool_provider(query))
        registry.set_observer(traces.append)
        offered.extend(registry.names())

        self.history.append(HumanMessage(content=query))
        outputs: list[str] = []
        rounds = 0
        reprompted = False

        while True:
            self.state = LoopState.SELECTING_TOOL
            self._check_deadline(deadline)
            response = self._complete(registry.tools())

            if isinstance(response, FinalAnswer):
                self.state = LoopState.RESPONDING
                text = response.text.strip() or self._partial_answer(outputs, "")
                self.history.append(AIMessage(content=text))
                self.state = LoopState.DONE
                logger.info("%s answered after %d tool rounds", self.name, rounds)
                return AgentResponse(
                    text=text,
                    rounds=rounds,
                    tools_offered=offered,
                    tool_traces=traces,
                )

            calls = self._with_call_ids(response.calls)
            unknown = [call.name for call in calls if call.name not in registry]
            if unknown:
                if reprompted:
                    raise ReasoningLoopExceeded(
                        rounds, self._partial_answer(outputs, response.text)
                    )
                reprompted = True
                logger.info(
                    "%s: model requested unknown tool(s) %s; re-prompting", self.name, unknown
                )
                self._reject_calls(response.text, calls, registry)
                continue

            rounds += 1
            if rounds > self.config.max_rounds:
                raise ReasoningLoopExceeded(
                    self.config.max_rounds, self._partial_answer(outputs, response.text)
                )

            self.state = LoopState.AWAITING_TOOL_RESULT
            self.history.append(_ai_message(response.text, calls))
            for call in calls:
                self._check_deadline(deadline)
                logger.debug("%s round %d: invoking %s", self.name, rounds, call.name)
                try:
                    output = registry.execute(call.name, call.arguments)
                except ValidationError as exc:
                    output = f"Error: invalid arguments for {call.name}: {exc.errors()}"
                else:
                    outputs.append(output)
                self.history.append(
                    ToolMessage(content=output, tool_call_id=call.call_id, name=call.name)
                )

    def _complete(self, tools: list[Tool]) -> ModelResponse:
        messages: list[BaseMessage] = [SystemMessage(content=self.system_prompt), *self.history]
        try:
            response = self.service.complete(messages, tools)
        except DocRouterError:
            raise
        except Exception as exc:
            raise SynthesisError(f"Generation service failed to complete: {exc}") from exc
        if isinstance(response, ToolCallRequest) and not response.calls:
            return FinalAnswer(text=response.text)
        return response

    def _reject_calls(
        self, text: str, calls: list[ToolCall], registry: ToolRegistry
    ) -> None:
        valid = ", ".join(registry.names()) or "<none>"
        self.history.append(_ai_message(text, calls))
        for call in calls:
            if call.name in registry:
                content = "Not executed: this request named an unknown tool. Retry with valid tools."
            else:
                content = f"Error: unknown tool '{call.name}'. Valid tool names are: {valid}."
            self.history.append(
                ToolMessage(content=content, tool_call_id=call.call_id, name=call.name)
            )

    def _partial_answer(self, outputs: list[str], model_text: str) -> str:
        parts = [output.strip() for output in outputs if output.strip()]
        if parts:
            return "\n\n".join(parts)
        if model_text.strip():
            return model_text.strip()
        return (
            f"No complete answer was produced within {self.config.max_rounds} "
            "tool-call rounds."
        )

    def _with_call_ids(self, calls: Sequence[ToolCall]) -> list[ToolCall]:
        return [
            call if call.call_id else replace(call, call_id=f"call_{uuid.uuid4().hex[:12]}")
            for call in calls
        ]

    def _check_deadline(self, deadline: float | None) -> None:
        if deadline is not None and time.monotonic() > deadline:
            raise SessionTimeout(f"{self.name}: turn ran past its deadline")


def _earliest(*deadlines: float | None) -> float | None:
    present = [deadline for deadline in deadlines if deadline is not None]
    return min(present) if present else None


def _ai_message(text: str, calls: Sequence[ToolCall]) -> AIMessage:
    return AIMessage(
        content=text,
        tool_calls=[
            {"name": call.name, "args": dict(call.arguments), "id": call.call_id}
            for call in calls
        ],
    )
