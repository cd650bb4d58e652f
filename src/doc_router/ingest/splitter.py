"""Fixed-size sliding-window node splitting."""

from __future__ import annotations

import re
from collections.abc import Iterator

from doc_router.config import SplitterConfig
from doc_router.errors import InvalidConfiguration
from doc_router.types import Document, Node

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


class NodeSplitter:
    """Splits documents into overlapping token windows.

    Windows hold `chunk_size` tokens and advance by `chunk_size - chunk_overlap`,
    so consecutive nodes share `chunk_overlap` tokens of context. Node text is
    a verbatim character span of the source:

    - the first node starts at offset 0 (leading whitespace included);
    - a node ends where the first token after its window starts, so the
      whitespace between windows is never dropped;
    - the last node ends at `len(text)`.

    Dropping the shared prefix of each node after the first and concatenating
    therefore reproduces the document text exactly.
    """

    def __init__(self, chunk_size: int = 1024, chunk_overlap: int = 20) -> None:
        if chunk_size <= 0:
            raise InvalidConfiguration(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0:
            raise InvalidConfiguration(
                f"chunk_overlap must not be negative, got {chunk_overlap}"
            )
        if chunk_overlap >= chunk_size:
            raise InvalidConfiguration(
                f"chunk_overlap ({chunk_overlap}) must be less than chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    @classmethod
    def from_config(cls, config: SplitterConfig) -> "NodeSplitter":
        return cls(chunk_size=config.chunk_size, chunk_overlap=config.chunk_overlap)

    def split(self, document: Document) -> "NodeSequence":
        """Return a lazy, restartable sequence of nodes for `document`."""
        return NodeSequence(self, document)

    def _iter_nodes(self, document: Document) -> Iterator[Node]:
        text = document.text
        if not text:
            return

        starts = [match.start() for match in _TOKEN_PATTERN.finditer(text)]
        if not starts:
            yield self._make_node(document, 0, len(text))
            return

        stride = self.chunk_size - self.chunk_overlap
        first = 0
        while True:
            window_end = first + self.chunk_size
            start_char = 0 if first == 0 else starts[first]
            if window_end >= len(starts):
                yield self._make_node(document, start_char, len(text))
                return
            yield self._make_node(document, start_char, starts[window_end])
            first += stride

    @staticmethod
    def _make_node(document: Document, start_char: int, end_char: int) -> Node:
        return Node(
            node_id=f"{document.doc_id}-node-{start_char:08d}",
            doc_id=document.doc_id,
            text=document.text[start_char:end_char],
            start_char=start_char,
            end_char=end_char,
        )


class NodeSequence:
    """Iterable view over a split; each iteration re-splits from the start."""

    def __init__(self, splitter: NodeSplitter, document: Document) -> None:
        self._splitter = splitter
        self._document = document

    def __iter__(self) -> Iterator[Node]:
        return self._splitter._iter_nodes(self._document)


def count_tokens(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
