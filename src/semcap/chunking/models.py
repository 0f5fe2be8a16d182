"""
Data contracts that flow between the extraction stages:
  SyntaxNode tree -> RuleMatch/CaptureMatch -> draft chunks -> Chunk/ChunkTree
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from ..exceptions import SemcapError
from ..patterns.taxonomy import NAME_CAPTURE, TAG_CAPTURES, TRIVIA_CAPTURE, ChunkKind, is_internal_capture
from ..syntax import Span, SyntaxNode

if TYPE_CHECKING:
    from ..patterns.registry import PatternRule


@dataclass(frozen=True)
class CaptureMatch:
    """One surfaced capture from a structural match."""

    rule_id: int
    capture: str
    tag: Optional[ChunkKind]
    span: Span
    owner_span: Span
    name_span: Optional[Span] = None
    order: int = 0


@dataclass(frozen=True, eq=False)
class RuleMatch:
    """A successful structural match of one rule, anchored at ``owner``."""

    rule: "PatternRule"
    owner: SyntaxNode
    bindings: Mapping[str, Tuple[SyntaxNode, ...]]

    @property
    def owner_span(self) -> Span:
        return self.owner.span

    @property
    def name_span(self) -> Optional[Span]:
        nodes = self.bindings.get(NAME_CAPTURE)
        return nodes[0].span if nodes else None

    @property
    def captures(self) -> Tuple[CaptureMatch, ...]:
        """Tag-bearing captures, or the untagged root capture for tagless rules."""
        results: List[CaptureMatch] = []
        name_span = self.name_span
        for order, (capture, kind) in enumerate(self.rule.tags):
            for node in self.bindings.get(capture, ()):
                results.append(
                    CaptureMatch(
                        rule_id=self.rule.index,
                        capture=capture,
                        tag=kind,
                        span=node.span,
                        owner_span=self.owner_span,
                        name_span=name_span,
                        order=order,
                    )
                )
        if not self.rule.tags:
            for capture in self.rule.root_captures:
                if is_internal_capture(capture) or capture == TRIVIA_CAPTURE:
                    continue
                for node in self.bindings.get(capture, ()):
                    results.append(
                        CaptureMatch(
                            rule_id=self.rule.index,
                            capture=capture,
                            tag=None,
                            span=node.span,
                            owner_span=self.owner_span,
                            name_span=name_span,
                        )
                    )
                break
        return tuple(results)

    def ordinary_spans(self) -> Iterator[Tuple[str, Span]]:
        """Spans of surfaced non-tag captures, used for name fallback."""
        for capture, nodes in self.bindings.items():
            if is_internal_capture(capture) or capture in TAG_CAPTURES or capture == TRIVIA_CAPTURE:
                continue
            for node in nodes:
                yield capture, node.span

    def trivia_spans(self) -> Iterator[Span]:
        for node in self.bindings.get(TRIVIA_CAPTURE, ()):
            yield node.span


def capture_matches(matches: Iterable[RuleMatch]) -> List[CaptureMatch]:
    """Flatten rule matches into the surfaced ``CaptureMatch`` sequence."""
    flattened: List[CaptureMatch] = []
    for match in matches:
        flattened.extend(match.captures)
    return flattened


@dataclass(frozen=True)
class Chunk:
    """A tagged, spanned unit of source produced by extraction."""

    id: str
    kind: ChunkKind
    name: str
    language: str
    start_byte: int
    end_byte: int
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    parent_id: Optional[str] = None
    child_ids: Tuple[str, ...] = ()
    documentation: Optional[str] = None
    depth: int = 0
    ancestry: Tuple[str, ...] = ()
    estimated_tokens: int = 0

    @property
    def span(self) -> Span:
        return Span(self.start_byte, self.end_byte)

    @property
    def byte_length(self) -> int:
        return self.end_byte - self.start_byte

    @property
    def breadcrumb(self) -> str:
        """Enclosing chunk names and this chunk's name, joined with ``::``."""
        return "::".join(self.ancestry + (self.name,))

    def text(self, source: bytes) -> str:
        """Slice the chunk out of the caller-owned source bytes."""
        return source[self.start_byte : self.end_byte].decode("utf-8", errors="replace")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "language": self.language,
            "span": [self.start_byte, self.end_byte],
            "start_line": self.start_line,
            "start_column": self.start_column,
            "end_line": self.end_line,
            "end_column": self.end_column,
            "parent_id": self.parent_id,
            "child_ids": list(self.child_ids),
            "documentation": self.documentation,
            "depth": self.depth,
            "ancestry": list(self.ancestry),
            "breadcrumb": self.breadcrumb,
            "byte_length": self.byte_length,
            "estimated_tokens": self.estimated_tokens,
        }


@dataclass(frozen=True)
class ChunkTree:
    """Per-file extraction result: chunks in pre-order plus recorded errors."""

    language: str
    chunks: Tuple[Chunk, ...] = ()
    errors: Tuple[SemcapError, ...] = ()
    _by_id: Dict[str, Chunk] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._by_id.update((chunk.id, chunk) for chunk in self.chunks)

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self.chunks)

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def roots(self) -> Tuple[Chunk, ...]:
        return tuple(chunk for chunk in self.chunks if chunk.parent_id is None)

    @property
    def max_depth(self) -> int:
        """Number of nesting levels, 0 for an empty tree."""
        return max((chunk.depth + 1 for chunk in self.chunks), default=0)

    def get(self, chunk_id: str) -> Optional[Chunk]:
        return self._by_id.get(chunk_id)

    def children(self, chunk_id: str) -> Tuple[Chunk, ...]:
        chunk = self._by_id.get(chunk_id)
        if chunk is None:
            return ()
        return tuple(self._by_id[child_id] for child_id in chunk.child_ids)

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [chunk.as_dict() for chunk in self.chunks]
