"""
Chunk normalizer: stable identifiers and the externally visible chunk shape.
"""
from __future__ import annotations

import hashlib
from typing import List, Optional, Tuple

from ..logger import get_logger
from ..patterns.taxonomy import ChunkKind
from ..syntax import Span
from .builder import DraftChunk, DraftTree
from .models import Chunk, ChunkTree

log = get_logger(__name__)

_ID_SEPARATOR = "\x1f"

# Rough size of one embedding-model token in source bytes.
BYTES_PER_TOKEN = 4


def chunk_id(language: str, kind: ChunkKind, name: str, span: Span) -> str:
    """Deterministic chunk identifier for ``(language, kind, name, span)``."""
    key = _ID_SEPARATOR.join(
        (language, kind.value, name, str(span.start), str(span.end))
    )
    return hashlib.md5(key.encode("utf-8")).hexdigest()


def estimate_tokens(byte_length: int) -> int:
    return -(-byte_length // BYTES_PER_TOKEN)


class ChunkNormalizer:
    """Converts a builder draft tree into immutable ``Chunk`` records.

    Besides ids and line/column positions, every chunk gets its nesting
    depth, the names of its enclosing chunks and a token estimate.
    """

    def normalize(self, draft: DraftTree) -> ChunkTree:
        chunks: List[Chunk] = []
        stack: List[Tuple[DraftChunk, Optional[str], Tuple[str, ...]]] = [
            (root, None, ()) for root in reversed(draft.roots)
        ]
        while stack:
            node, parent_id, ancestry = stack.pop()
            own_id = self._id(draft.language, node)
            start_line, start_column = draft.line_index.position(node.span.start)
            end_line, end_column = draft.line_index.position(node.span.end)
            chunks.append(
                Chunk(
                    id=own_id,
                    kind=node.kind,
                    name=node.name,
                    language=draft.language,
                    start_byte=node.span.start,
                    end_byte=node.span.end,
                    start_line=start_line,
                    start_column=start_column,
                    end_line=end_line,
                    end_column=end_column,
                    parent_id=parent_id,
                    child_ids=tuple(self._id(draft.language, child) for child in node.children),
                    documentation=node.documentation,
                    depth=len(ancestry),
                    ancestry=ancestry,
                    estimated_tokens=estimate_tokens(node.span.end - node.span.start),
                )
            )
            inner = ancestry + (node.name,)
            stack.extend((child, own_id, inner) for child in reversed(node.children))
        log.debug("chunks_normalized", language=draft.language, chunks=len(chunks))
        return ChunkTree(language=draft.language, chunks=tuple(chunks), errors=tuple(draft.errors))

    @staticmethod
    def _id(language: str, node: DraftChunk) -> str:
        return chunk_id(language, node.kind, node.name, node.span)
