"""Per-question tracing, cost accounting and groundedness scoring."""

from __future__ import annotations

import math
import re
import threading
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from doc_router.agent.session import AgentResponse
from doc_router.types import ToolTrace

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?。！？])\s+|\n+")


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    session_id: str | None
    question: str
    answer: str
    tools_offered: list[str]
    tool_traces: list[ToolTrace]
    rounds: int
    degraded: bool
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    latency_ms: float
    groundedness: float


@dataclass(slots=True)
class CostModel:
    """Simple token pricing model (USD per 1K tokens)."""

    input_per_1k: float = 0.005
    output_per_1k: float = 0.015

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens / 1000.0) * self.input_per_1k + (
            output_tokens / 1000.0
        ) * self.output_per_1k


class GroundednessEvaluator:
    """Share of answer sentences supported by some tool output.

    A sentence counts as grounded when at least `min_overlap` of its tokens
    appear in one tool output. Deterministic, so usable in contract tests.
    """

    def __init__(self, min_overlap: float = 0.35) -> None:
        self.min_overlap = min_overlap

    def score(self, answer: str, sources: list[str]) -> float:
        sentences = [part.strip() for part in _SENTENCE_SPLIT.split(answer) if part.strip()]
        if not sentences:
            return 1.0
        if not sources:
            return 0.0

        source_tokens = [set(_normalize(source)) for source in sources]
        grounded = 0
        for sentence in sentences:
            tokens = set(_normalize(sentence))
            if not tokens or any(
                len(tokens & candidate) / len(tokens) >= self.min_overlap
                for candidate in source_tokens
            ):
                grounded += 1
        return grounded / len(sentences)


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(
        self,
        *,
        cost_model: CostModel | None = None,
        groundedness_evaluator: GroundednessEvaluator | None = None,
    ) -> None:
        self._records: dict[str, TraceRecord] = {}
        self._lock = threading.Lock()
        self._cost_model = cost_model or CostModel()
        self._groundedness = groundedness_evaluator or GroundednessEvaluator()

    def create_record(
        self,
        *,
        question: str,
        response: AgentResponse,
        latency_ms: float,
        session_id: str | None = None,
    ) -> TraceRecord:
        input_tokens = estimate_token_count(question)
        output_tokens = estimate_token_count(response.text)
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            session_id=session_id,
            question=question,
            answer=response.text,
            tools_offered=list(response.tools_offered),
            tool_traces=list(response.tool_traces),
            rounds=response.rounds,
            degraded=response.degraded,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=self._cost_model.estimate_cost(input_tokens, output_tokens),
            latency_ms=latency_ms,
            groundedness=self._groundedness.score(
                response.text, [trace.output_preview for trace in response.tool_traces]
            ),
        )
        with self._lock:
            self._records[record.trace_id] = record
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        with self._lock:
            records = list(self._records.values())
        return records[-limit:] if limit > 0 else []

    def summary(self) -> dict[str, Any]:
        """Aggregate routing and answer-quality metrics across all traces.

        `tools` breaks invocations down per top-level tool (one per document
        agent), which shows how traffic spreads across the corpus.
        """
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        summary: dict[str, Any] = {
            "total_requests": total,
            "degraded_requests": sum(1 for record in records if record.degraded),
            "avg_latency_ms": 0.0,
            "p95_latency_ms": 0.0,
            "avg_rounds": 0.0,
            "avg_tools_offered": 0.0,
            "avg_groundedness": 0.0,
            "total_estimated_cost_usd": sum(record.estimated_cost_usd for record in records),
            "tools": _tool_usage(records),
        }
        if total == 0:
            return summary

        latencies = sorted(record.latency_ms for record in records)
        summary.update(
            avg_latency_ms=sum(latencies) / total,
            p95_latency_ms=latencies[max(0, math.ceil(total * 0.95) - 1)],
            avg_rounds=sum(record.rounds for record in records) / total,
            avg_tools_offered=sum(len(record.tools_offered) for record in records) / total,
            avg_groundedness=sum(record.groundedness for record in records) / total,
        )
        return summary


class Timer:
    """Simple context timer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))


def _normalize(text: str) -> list[str]:
    return [token.lower() for token in _TOKEN_PATTERN.findall(text)]


def _tool_usage(records: list[TraceRecord]) -> dict[str, dict[str, float]]:
    calls: dict[str, list[float]] = defaultdict(list)
    for record in records:
        for trace in record.tool_traces:
            calls[trace.name].append(trace.latency_ms)
    return {
        name: {"invocations": len(latencies), "avg_latency_ms": sum(latencies) / len(latencies)}
        for name, latencies in sorted(calls.items())
    }
