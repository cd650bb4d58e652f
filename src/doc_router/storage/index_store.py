"""Persistence of built per-document indexes on top of a key-value store."""

from __future__ import annotations

import json
import logging
from hashlib import sha1
from typing import Any, Protocol

from doc_router.config import SplitterConfig
from doc_router.errors import InvalidConfiguration
from doc_router.llm.service import GenerationService
from doc_router.retrieval.indices import SUMMARY_INDEX, VECTOR_INDEX, SummaryIndex, VectorIndex
from doc_router.retrieval.vector_store import InMemoryVectorStore, StoreFactory
from doc_router.types import Document

logger = logging.getLogger(__name__)

# Raised by decoding a record or index payload of the wrong shape.
_UNREADABLE = (KeyError, TypeError, AttributeError, ValueError, InvalidConfiguration)


class KVStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


def index_key(index_type: str, doc_id: str) -> str:
    return f"{index_type}/{doc_id}"


def fingerprint(document: Document, splitter: SplitterConfig, embedding_model: str = "") -> str:
    """Identify the inputs an index was built from; any change forces a rebuild."""
    digest = sha1(document.text.encode("utf-8"))
    digest.update(
        f"|{splitter.chunk_size}|{splitter.chunk_overlap}|{embedding_model}".encode("utf-8")
    )
    return digest.hexdigest()


class IndexStore:
    """Loads and saves vector/summary indexes keyed by index type + doc id.

    Persistence only saves startup time: a missing, stale or unreadable entry
    is reported as absent and the caller rebuilds.
    """

    def __init__(
        self,
        kv: KVStore,
        *,
        embedding_model: str = "",
        store_factory: StoreFactory = InMemoryVectorStore,
    ) -> None:
        self.kv = kv
        self.embedding_model = embedding_model
        self.store_factory = store_factory

    def load_vector(
        self, document: Document, splitter: SplitterConfig, service: GenerationService
    ) -> VectorIndex | None:
        payload = self._load(VECTOR_INDEX, document, splitter)
        if payload is None:
            return None
        try:
            return VectorIndex.from_dict(payload, service, store_factory=self.store_factory)
        except _UNREADABLE as exc:
            _discard(index_key(VECTOR_INDEX, document.doc_id), exc)
            return None

    def load_summary(self, document: Document, splitter: SplitterConfig) -> SummaryIndex | None:
        payload = self._load(SUMMARY_INDEX, document, splitter)
        if payload is None:
            return None
        try:
            return SummaryIndex.from_dict(payload)
        except _UNREADABLE as exc:
            _discard(index_key(SUMMARY_INDEX, document.doc_id), exc)
            return None

    def save(
        self, index: VectorIndex | SummaryIndex, document: Document, splitter: SplitterConfig
    ) -> None:
        record = {
            "fingerprint": fingerprint(document, splitter, self.embedding_model),
            "index": index.to_dict(),
        }
        self.kv.put(index_key(index.index_type, document.doc_id), json.dumps(record))

    def _load(
        self, index_type: str, document: Document, splitter: SplitterConfig
    ) -> dict[str, Any] | None:
        key = index_key(index_type, document.doc_id)
        raw = self.kv.get(key)
        if raw is None:
            return None
        try:
            record = json.loads(raw)
            stored = record.get("fingerprint")
            payload = record.get("index")
        except _UNREADABLE as exc:
            _discard(key, exc)
            return None
        if stored != fingerprint(document, splitter, self.embedding_model):
            logger.info("Persisted index %s is stale; rebuilding", key)
            return None
        if not isinstance(payload, dict):
            _discard(key, TypeError(f"index payload is {type(payload).__name__}"))
            return None
        return payload


def _discard(key: str, exc: Exception) -> None:
    logger.warning("Discarding unreadable persisted index %s: %s", key, exc)
