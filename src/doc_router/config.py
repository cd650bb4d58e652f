"""Configuration models for the document router."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

_ENV_PREFIX = "DOC_ROUTER_"


class SplitterConfig(BaseModel):
    """Configures fixed-size, overlapping node splitting (in tokens).

    Bounds are checked by `NodeSplitter`, which raises `InvalidConfiguration`.
    """

    chunk_size: int = 1024
    chunk_overlap: int = 20


class RetrievalConfig(BaseModel):
    """Configures node retrieval, tool retrieval and synthesis budgets."""

    similarity_top_k: int = Field(default=2, ge=1)
    tool_top_k: int = Field(default=3, ge=1)
    max_context_tokens: int = Field(default=3000, ge=64)


class AgentConfig(BaseModel):
    """Configures the reasoning loop shared by document and top-level agents."""

    max_rounds: int = Field(default=6, ge=1)
    session_timeout_seconds: float | None = Field(default=None, gt=0.0)


class IndexingConfig(BaseModel):
    """Configures corpus-wide index construction."""

    max_workers: int = Field(default=4, ge=1)
    persist_path: str | None = None


class RouterConfig(BaseModel):
    splitter: SplitterConfig = Field(default_factory=SplitterConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RouterConfig":
        """Build a config from `DOC_ROUTER_*` variables, defaults elsewhere."""
        env = os.environ if environ is None else environ

        def _section(model: type[BaseModel]) -> dict[str, str]:
            values: dict[str, str] = {}
            for name in model.model_fields:
                raw = env.get(f"{_ENV_PREFIX}{name.upper()}")
                if raw is not None and raw != "":
                    values[name] = raw
            return values

        return cls(
            splitter=SplitterConfig.model_validate(_section(SplitterConfig)),
            retrieval=RetrievalConfig.model_validate(_section(RetrievalConfig)),
            agent=AgentConfig.model_validate(_section(AgentConfig)),
            indexing=IndexingConfig.model_validate(_section(IndexingConfig)),
        )
