"""Exception hierarchy shared by indexing, retrieval and agent layers."""

from __future__ import annotations


class DocRouterError(Exception):
    """Base class for all errors raised by this package."""


class InvalidConfiguration(DocRouterError, ValueError):
    """Raised for invalid splitter/index/tool settings before any build starts."""


class EmbeddingServiceError(DocRouterError):
    """The embedding provider failed; the index being built is not published."""


class SynthesisError(DocRouterError):
    """The generation service failed while producing an answer."""


class NotFound(DocRouterError, KeyError):
    """A document is missing from the corpus."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep messages readable.
        return str(self.args[0]) if self.args else ""


class UnknownTool(DocRouterError, KeyError):
    """The model requested a tool name that is not registered."""

    def __init__(self, name: str, valid_names: list[str] | None = None) -> None:
        super().__init__(name)
        self.name = name
        self.valid_names = list(valid_names or [])

    def __str__(self) -> str:
        valid = ", ".join(self.valid_names) or "<none>"
        return f"Unknown tool: {self.name}. Valid tools: {valid}"


class ReasoningLoopExceeded(DocRouterError):
    """The tool-call round budget was exhausted before a final answer."""

    def __init__(self, rounds: int, partial_answer: str) -> None:
        super().__init__(f"Reasoning loop exceeded after {rounds} tool-call rounds")
        self.rounds = rounds
        self.partial_answer = partial_answer


class SessionTimeout(DocRouterError, TimeoutError):
    """A full reasoning turn did not finish before the session deadline."""
