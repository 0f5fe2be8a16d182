"""
Uniform syntax-tree interface consumed by the extraction engine.

Parsers produce trees in their own object model; adapters convert them into
``SyntaxNode`` values so the matcher only ever sees one shape.
"""
from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Iterator, List, NamedTuple, Optional, Tuple


class Span(NamedTuple):
    """Half-open byte range ``[start, end)``."""

    start: int
    end: int

    @property
    def is_valid(self) -> bool:
        return self.end > self.start

    def contains(self, other: "Span") -> bool:
        return self.start <= other.start and other.end <= self.end

    def strictly_contains(self, other: "Span") -> bool:
        return self.contains(other) and self != other

    def overlaps(self, other: "Span") -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True, eq=False)
class SyntaxNode:
    """A parsed node: its grammar type, byte span, field label and children."""

    type: str
    start_byte: int
    end_byte: int
    is_named: bool = True
    field_name: Optional[str] = None
    children: Tuple["SyntaxNode", ...] = field(default_factory=tuple)
    has_error: bool = False

    @property
    def span(self) -> Span:
        return Span(self.start_byte, self.end_byte)

    @property
    def named_children(self) -> Tuple["SyntaxNode", ...]:
        return tuple(child for child in self.children if child.is_named)

    def text(self, source: bytes) -> bytes:
        return source[self.start_byte : self.end_byte]

    def has_field(self, name: str) -> bool:
        return any(child.field_name == name for child in self.children)

    def walk(self) -> Iterator["SyntaxNode"]:
        """Yield this node and all descendants in pre-order."""
        stack: List[SyntaxNode] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def __repr__(self) -> str:
        label = self.type if self.is_named else repr(self.type)
        prefix = f"{self.field_name}: " if self.field_name else ""
        return f"<{prefix}{label} [{self.start_byte}, {self.end_byte})>"


class LineIndex:
    """Maps byte offsets to 1-based lines and 0-based byte columns."""

    def __init__(self, source: bytes) -> None:
        self._line_starts: List[int] = [0]
        offset = source.find(b"\n")
        while offset != -1:
            self._line_starts.append(offset + 1)
            offset = source.find(b"\n", offset + 1)

    def position(self, offset: int) -> Tuple[int, int]:
        line = bisect_right(self._line_starts, offset) - 1
        return line + 1, offset - self._line_starts[line]

    def line(self, offset: int) -> int:
        return self.position(offset)[0]
