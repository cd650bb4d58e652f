"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Document:
    """A source document, one per entity (e.g. one per country)."""

    doc_id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Node:
    """A span of one document's text; the unit of retrieval."""

    node_id: str
    doc_id: str
    text: str
    start_char: int
    end_char: int
    embedding: tuple[float, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "doc_id": self.doc_id,
            "text": self.text,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "embedding": list(self.embedding) if self.embedding is not None else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Node":
        embedding = payload.get("embedding")
        return cls(
            node_id=str(payload["node_id"]),
            doc_id=str(payload["doc_id"]),
            text=str(payload["text"]),
            start_char=int(payload["start_char"]),
            end_char=int(payload["end_char"]),
            embedding=tuple(float(x) for x in embedding) if embedding is not None else None,
        )


@dataclass(slots=True)
class ScoredNode:
    """A retrieval result with similarity score and 1-based rank."""

    node: Node
    score: float
    rank: int = 0


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
