"""FastAPI entrypoint exposing `ask` over the built router."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from doc_router.agent.session import AgentSession
from doc_router.config import RouterConfig
from doc_router.errors import EmbeddingServiceError, SessionTimeout, SynthesisError
from doc_router.ingest.corpus import DirectoryCorpus, InMemoryCorpus
from doc_router.ingest.embedder import HashingEmbedder, LangChainEmbedder
from doc_router.ingest.pipeline import RouterBuild, RouterBuilder
from doc_router.llm.chat_model import LangChainGenerationService
from doc_router.llm.fallback import DeterministicGenerationService
from doc_router.llm.service import GenerationService
from doc_router.obs.tracing import Timer, TraceStore
from doc_router.storage.index_store import IndexStore
from doc_router.storage.kv import SQLiteKVStore

logger = logging.getLogger(__name__)


def create_generation_service() -> GenerationService:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return DeterministicGenerationService(HashingEmbedder())

    from langchain_openai import ChatOpenAI, OpenAIEmbeddings

    return LangChainGenerationService(
        ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0),
        LangChainEmbedder(
            OpenAIEmbeddings(model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"))
        ),
    )


def build_from_env(config: RouterConfig | None = None) -> RouterBuild:
    """Build the router over `DOC_ROUTER_CORPUS_DIR` (empty corpus if unset)."""
    config = config or RouterConfig.from_env()
    corpus_dir = os.getenv("DOC_ROUTER_CORPUS_DIR")
    corpus = DirectoryCorpus(corpus_dir) if corpus_dir else InMemoryCorpus({})
    service = create_generation_service()

    index_store = None
    if config.indexing.persist_path:
        index_store = IndexStore(
            SQLiteKVStore(config.indexing.persist_path),
            embedding_model=type(service.embedder).__name__,
        )
    return RouterBuilder(corpus, service, config, index_store=index_store).build()


class AskRequest(BaseModel):
    question: str = Field(min_length=1)
    session_id: str | None = None


class ToolSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=3, ge=1, le=50)


class SessionRegistry:
    """Live top-level sessions; a session runs at most one turn at a time."""

    def __init__(self) -> None:
        self._sessions: dict[str, AgentSession] = {}
        self._busy: set[str] = set()
        self._lock = threading.Lock()

    def add(self, session: AgentSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    @contextmanager
    def turn(self, session_id: str) -> Iterator[AgentSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
            if session_id in self._busy:
                raise HTTPException(
                    status_code=409, detail=f"Session is already answering: {session_id}"
                )
            self._busy.add(session_id)
        try:
            yield session
        finally:
            with self._lock:
                self._busy.discard(session_id)


def create_app(
    build: RouterBuild | None = None,
    *,
    trace_store: TraceStore | None = None,
    session_registry: SessionRegistry | None = None,
) -> FastAPI:
    router = build or build_from_env()
    traces = trace_store or TraceStore()
    sessions = session_registry or SessionRegistry()

    app = FastAPI(title="Document Router", version="0.1.0")

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "generation_service": type(router.top_agent.service).__name__,
            "document_count": len(router.document_agents),
            "failed_documents": len(router.failures),
            "trace_count": len(traces.list_recent(limit=1000)),
        }

    @app.get("/documents")
    def documents() -> dict[str, Any]:
        return {
            "items": sorted(router.document_agents),
            "failures": router.failures,
        }

    @app.post("/sessions")
    def create_session() -> dict[str, str]:
        session = router.top_agent.new_session()
        sessions.add(session)
        return {"session_id": session.session_id}

    @app.delete("/sessions/{session_id}")
    def delete_session(session_id: str) -> dict[str, str]:
        if not sessions.remove(session_id):
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        return {"status": "deleted"}

    @app.post("/ask")
    def ask(request: AskRequest) -> dict[str, Any]:
        if request.session_id is None:
            return _answer(request, None)
        with sessions.turn(request.session_id) as session:
            return _answer(request, session)

    def _answer(request: AskRequest, session: AgentSession | None) -> dict[str, Any]:
        try:
            with Timer() as timer:
                response = router.top_agent.ask(request.question, session=session)
        except SessionTimeout as exc:
            raise HTTPException(status_code=504, detail=str(exc)) from exc
        except (SynthesisError, EmbeddingServiceError) as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        record = traces.create_record(
            question=request.question,
            response=response,
            latency_ms=timer.elapsed_ms,
            session_id=request.session_id,
        )
        return {
            "answer": response.text,
            "degraded": response.degraded,
            "tools_offered": response.tools_offered,
            "tools_invoked": response.tools_invoked,
            "rounds": response.rounds,
            "trace_id": record.trace_id,
            "latency_ms": record.latency_ms,
            "groundedness": record.groundedness,
        }

    @app.post("/tools/search")
    def tool_search(request: ToolSearchRequest) -> dict[str, Any]:
        try:
            tools = router.tool_index.retrieve(request.query, request.top_k)
        except EmbeddingServiceError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {
            "items": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "doc_id": tool.metadata.get("doc_id"),
                }
                for tool in tools
            ]
        }

    @app.get("/traces")
    def list_traces(limit: int = 20) -> dict[str, Any]:
        return {"items": [asdict(record) for record in traces.list_recent(limit=limit)]}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = traces.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return traces.summary()

    return app


app = create_app()
