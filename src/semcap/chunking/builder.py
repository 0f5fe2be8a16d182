"""
Chunk builder: turns filtered matches into a non-overlapping chunk hierarchy.

The hierarchy comes from span containment alone, never from a language's own
scoping rules, so one algorithm serves every configured language.
"""
from __future__ import annotations

import re
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..exceptions import MatchError
from ..logger import get_logger
from ..patterns.registry import PatternRule
from ..patterns.taxonomy import ChunkKind, specificity
from ..syntax import LineIndex, Span
from .models import CaptureMatch, RuleMatch

log = get_logger(__name__)

IDENTIFIER_RE = re.compile(r"^[^\W\d][\w$.:!?@]*$")


@dataclass
class DraftChunk:
    """Builder-internal chunk; bookkeeping fields are dropped on normalization."""

    kind: ChunkKind
    span: Span
    rule: PatternRule
    capture: str
    sequence: int
    name_span: Optional[Span] = None
    match: Optional[RuleMatch] = None
    name: str = ""
    documentation: Optional[str] = None
    children: List["DraftChunk"] = field(default_factory=list)

    @property
    def attachable_documentation(self) -> bool:
        return self.kind is ChunkKind.DOCUMENTATION and not self.children


@dataclass
class DraftTree:
    language: str
    source: bytes
    line_index: LineIndex
    roots: List[DraftChunk] = field(default_factory=list)
    errors: List[MatchError] = field(default_factory=list)

    def walk(self) -> Iterable[DraftChunk]:
        stack = list(reversed(self.roots))
        while stack:
            draft = stack.pop()
            yield draft
            stack.extend(reversed(draft.children))


@dataclass(frozen=True)
class _Candidate:
    capture: CaptureMatch
    match: RuleMatch
    sequence: int

    def priority(self) -> Tuple[int, int, int, int]:
        return (
            -specificity(self.capture.tag),
            self.capture.rule_id,
            self.capture.order,
            self.sequence,
        )


class ChunkBuilder:
    """Resolves overlaps, nests by containment, names chunks and attaches docs."""

    def build(
        self,
        matches: Sequence[RuleMatch],
        source: bytes,
        language: str,
        errors: Optional[List[MatchError]] = None,
    ) -> DraftTree:
        tree = DraftTree(
            language=language,
            source=source,
            line_index=LineIndex(source),
            errors=list(errors or []),
        )
        candidates = self._collect(matches, source, tree.errors)
        winners = self._resolve_overlaps(candidates)
        tree.roots = self._nest(winners, tree.errors)
        self._resolve_names(tree, matches)
        self._attach_documentation(tree, _trivia(matches))
        log.debug(
            "chunk_tree_built",
            language=language,
            candidates=len(candidates),
            survivors=len(winners),
            errors=len(tree.errors),
        )
        return tree

    # 1. validation -----------------------------------------------------------

    @staticmethod
    def _collect(
        matches: Sequence[RuleMatch], source: bytes, errors: List[MatchError]
    ) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        sequence = 0
        for match in matches:
            for capture in match.captures:
                span = capture.span
                reason = None
                if span.end < span.start:
                    reason = "inverted span"
                elif span.end == span.start:
                    reason = "empty span"
                elif span.start < 0 or span.end > len(source):
                    reason = "span outside source"
                if reason is not None:
                    error = MatchError(
                        reason,
                        rule_id=capture.rule_id,
                        capture=capture.capture,
                        span=(span.start, span.end),
                    )
                    errors.append(error)
                    log.debug("match_dropped", rule=capture.rule_id, capture=capture.capture, reason=reason)
                    continue
                candidates.append(_Candidate(capture, match, sequence))
                sequence += 1
        return candidates

    # 2. overlap resolution ---------------------------------------------------

    @staticmethod
    def _resolve_overlaps(candidates: Sequence[_Candidate]) -> List[_Candidate]:
        groups: Dict[Span, List[_Candidate]] = {}
        for candidate in candidates:
            groups.setdefault(candidate.capture.span, []).append(candidate)
        winners: List[_Candidate] = []
        for span, group in groups.items():
            winner = min(group, key=_Candidate.priority)
            if len(group) > 1:
                log.debug(
                    "overlap_resolved",
                    span=tuple(span),
                    winner=winner.capture.rule_id,
                    dropped=len(group) - 1,
                )
            if winner.capture.tag is None:
                continue
            winners.append(winner)
        return winners

    # 3. nesting --------------------------------------------------------------

    @staticmethod
    def _nest(winners: Sequence[_Candidate], errors: List[MatchError]) -> List[DraftChunk]:
        ordered = sorted(
            winners,
            key=lambda c: (c.capture.span.start, -c.capture.span.end, c.capture.rule_id, c.sequence),
        )
        roots: List[DraftChunk] = []
        stack: List[DraftChunk] = []
        for candidate in ordered:
            capture = candidate.capture
            if capture.tag is None:
                continue
            span = capture.span
            while stack and stack[-1].span.end <= span.start:
                stack.pop()
            if stack and not stack[-1].span.contains(span):
                errors.append(
                    MatchError(
                        "span crosses an enclosing chunk",
                        rule_id=capture.rule_id,
                        capture=capture.capture,
                        span=(span.start, span.end),
                    )
                )
                log.debug("match_dropped", rule=capture.rule_id, reason="crossing span")
                continue
            draft = DraftChunk(
                kind=capture.tag,
                span=span,
                rule=candidate.match.rule,
                capture=capture.capture,
                sequence=candidate.sequence,
                name_span=capture.name_span,
                match=candidate.match,
            )
            if stack:
                stack[-1].children.append(draft)
            else:
                roots.append(draft)
            stack.append(draft)
        return roots

    # 4. names ------------------------------------------------------------------

    def _resolve_names(self, tree: DraftTree, matches: Sequence[RuleMatch]) -> None:
        source = tree.source
        pool = sorted(
            (
                (span.start, span.end - span.start, span)
                for match in matches
                for _capture, span in match.ordinary_spans()
                if span.is_valid and span.end <= len(source)
            ),
        )
        starts = [entry[0] for entry in pool]

        for draft in tree.walk():
            name = None
            if draft.name_span is not None and draft.span.contains(draft.name_span):
                name = _clean(_decode(source, draft.name_span))
            if not name and draft.match is not None:
                own = sorted(
                    (span for _capture, span in draft.match.ordinary_spans() if draft.span.contains(span)),
                    key=lambda span: (span.start, span.end - span.start),
                )
                name = self._first_identifier(source, own)
            if not name:
                name = self._first_identifier(source, _within(pool, starts, draft.span))
            if not name:
                line = tree.line_index.line(draft.span.start)
                name = f"{draft.kind.value}@{line}"
            draft.name = name

    @staticmethod
    def _first_identifier(source: bytes, spans: Iterable[Span]) -> Optional[str]:
        for span in spans:
            text = _clean(_decode(source, span))
            if text and IDENTIFIER_RE.match(text):
                return text
        return None

    # 5. documentation ----------------------------------------------------------

    def _attach_documentation(self, tree: DraftTree, trivia: Sequence[Span]) -> None:
        tree.roots = self._attach_in_siblings(tree.roots, tree.source, trivia)
        for draft in tree.walk():
            if draft.children:
                draft.children = self._attach_in_siblings(draft.children, tree.source, trivia)

    def _attach_in_siblings(
        self, siblings: List[DraftChunk], source: bytes, trivia: Sequence[Span]
    ) -> List[DraftChunk]:
        """Attach each documentation run to the chunk directly after it.

        Only whitespace and trivia captures may separate the run from that
        chunk; anything else leaves the run standalone.
        """
        result: List[DraftChunk] = []
        pending: List[DraftChunk] = []
        for draft in siblings:
            if draft.attachable_documentation:
                if pending and not _blank_gap(source, pending[-1].span.end, draft.span.start, trivia):
                    result.extend(pending)
                    pending = []
                pending.append(draft)
                continue
            if (
                pending
                and draft.kind is not ChunkKind.DOCUMENTATION
                and _blank_gap(source, pending[-1].span.end, draft.span.start, trivia)
            ):
                draft.documentation = self._documentation_text(pending, source)
                log.debug("documentation_attached", target=draft.name, blocks=len(pending))
            else:
                result.extend(pending)
            pending = []
            result.append(draft)
        result.extend(pending)
        return result

    @staticmethod
    def _documentation_text(blocks: Sequence[DraftChunk], source: bytes) -> Optional[str]:
        parts: List[str] = []
        for block in blocks:
            text = _decode(source, block.span)
            for directive in block.rule.strip_directives(block.capture):
                text = directive.apply(text)
            text = text.strip()
            if text:
                parts.append(text)
        return "\n".join(parts) or None


def _decode(source: bytes, span: Span) -> str:
    return source[span.start : span.end].decode("utf-8", errors="replace")


def _clean(text: str) -> str:
    return " ".join(text.split())


def _within(
    pool: Sequence[Tuple[int, int, Span]], starts: Sequence[int], outer: Span
) -> Iterable[Span]:
    """Spans from the sorted pool lying inside ``outer``, nearest start first."""
    for start, _length, span in pool[bisect_left(starts, outer.start) :]:
        if start >= outer.end:
            break
        if outer.contains(span):
            yield span


def _trivia(matches: Sequence[RuleMatch]) -> List[Span]:
    return sorted({span for match in matches for span in match.trivia_spans()})


def _blank_gap(source: bytes, start: int, end: int, trivia: Sequence[Span]) -> bool:
    """True when ``source[start:end]`` holds only whitespace and trivia nodes."""
    pos = start
    for span in trivia[bisect_left(trivia, Span(start, start)) :]:
        if span.start >= end:
            break
        if span.end > end:
            continue
        if source[pos : span.start].strip():
            return False
        pos = max(pos, span.end)
    return not source[pos:end].strip()
