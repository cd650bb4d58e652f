"""Hierarchical tool-routing agents over a multi-document corpus."""

from .config import AgentConfig, IndexingConfig, RetrievalConfig, RouterConfig, SplitterConfig
from .errors import (
    DocRouterError,
    EmbeddingServiceError,
    InvalidConfiguration,
    NotFound,
    ReasoningLoopExceeded,
    SessionTimeout,
    SynthesisError,
    UnknownTool,
)

__all__ = [
    "AgentConfig",
    "DocRouterError",
    "EmbeddingServiceError",
    "IndexingConfig",
    "InvalidConfiguration",
    "NotFound",
    "ReasoningLoopExceeded",
    "RetrievalConfig",
    "RouterConfig",
    "SessionTimeout",
    "SplitterConfig",
    "SynthesisError",
    "UnknownTool",
]
