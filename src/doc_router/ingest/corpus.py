"""Corpus collaborators: raw document text by identifier."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from doc_router.errors import NotFound
from doc_router.types import Document


class Corpus(Protocol):
    """Minimal corpus contract used by the router builder."""

    def get_document_text(self, doc_id: str) -> str:
        """Return the raw text of `doc_id` or raise `NotFound`."""

    def document_ids(self) -> list[str]:
        """List every document id the corpus can serve."""


class InMemoryCorpus:
    """Corpus over a pre-fetched `doc_id -> text` mapping."""

    def __init__(self, texts: Mapping[str, str]) -> None:
        self._texts = dict(texts)

    def get_document_text(self, doc_id: str) -> str:
        try:
            return self._texts[doc_id]
        except KeyError:
            raise NotFound(f"Document not found: {doc_id}") from None

    def document_ids(self) -> list[str]:
        return list(self._texts)


class Parser(ABC):
    """Turns one file into normalized text."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    def parse(self, path: Path) -> str:
        """Return the document text stored at `path`."""


class TextParser(Parser):
    extensions = (".txt", ".md", ".markdown")

    def parse(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")


class JsonParser(Parser):
    """Reads `{"text": ...}` payloads, falling back to normalized JSON."""

    extensions = (".json",)

    def parse(self, path: Path) -> str:
        payload: Any = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(payload, dict) and isinstance(payload.get("text"), str):
            return payload["text"]
        return json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2)


class DirectoryCorpus:
    """Corpus stored as `<root>/<doc_id>.<ext>` files, one per document."""

    def __init__(self, root: str | Path, parsers: list[Parser] | None = None) -> None:
        self.root = Path(root)
        self._parsers: dict[str, Parser] = {}
        for parser in parsers or [TextParser(), JsonParser()]:
            for extension in parser.extensions:
                self._parsers[extension.lower()] = parser

    def get_document_text(self, doc_id: str) -> str:
        for extension, parser in self._parsers.items():
            path = self.root / f"{doc_id}{extension}"
            if path.is_file():
                return parser.parse(path)
        raise NotFound(f"Document not found: {doc_id} (searched {self.root})")

    def document_ids(self) -> list[str]:
        if not self.root.is_dir():
            return []
        ids = {
            path.stem
            for path in self.root.iterdir()
            if path.is_file() and path.suffix.lower() in self._parsers
        }
        return sorted(ids)


def load_document(corpus: Corpus, doc_id: str) -> Document:
    return Document(doc_id=doc_id, text=corpus.get_document_text(doc_id))
