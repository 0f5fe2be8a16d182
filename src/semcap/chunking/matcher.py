"""
Structural matcher: applies a language's rules to every node of a tree.

Child patterns follow tree-sitter query semantics. They match a node's
children in order and may skip unrelated children. Named patterns only match
named nodes, literal patterns only anonymous ones. Anchors (``.``) demand
adjacency among named siblings and quantifiers consume consecutive repeats
greedily. Every distinct assignment of a rule at a node is reported, so a
class body with three methods yields three method matches.
"""
from __future__ import annotations

from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..exceptions import ExtractionCancelled, MatchError
from ..logger import get_logger
from ..patterns.query import AlternationPattern, ChildItem, GroupPattern, NodePattern, Pattern
from ..patterns.registry import LanguageRuleSet, PatternRule
from ..syntax import SyntaxNode
from .models import RuleMatch

log = get_logger(__name__)

Pairs = Tuple[Tuple[str, SyntaxNode], ...]
CancelCheck = Callable[[], bool]

# Child comparisons one rule may spend at one node before the search stops.
MAX_SEARCH_STEPS = 200_000
CANCEL_POLL_INTERVAL = 256


class _BudgetExhausted(Exception):
    pass


def _captured(pattern: Pattern, node: SyntaxNode) -> Pairs:
    return tuple((capture, node) for capture in pattern.captures)


def _next_named(children: Sequence[SyntaxNode], pos: int) -> int:
    while pos < len(children) and not children[pos].is_named:
        pos += 1
    return pos


def _is_literal(item: ChildItem) -> bool:
    return isinstance(item.pattern, NodePattern) and item.pattern.kind == "literal"


def _adjacent(item: ChildItem, children: Sequence[SyntaxNode], pos: int) -> int:
    """Index of the sibling an anchored or repeated item must match next."""
    return pos if _is_literal(item) else _next_named(children, pos)


class Matcher:
    """Produces ``RuleMatch`` records for every rule that fits every node."""

    def match(
        self,
        root: SyntaxNode,
        rule_set: LanguageRuleSet,
        should_cancel: Optional[CancelCheck] = None,
        errors: Optional[List[MatchError]] = None,
    ) -> List[RuleMatch]:
        """
        Walk ``root`` in pre-order and test the candidate rules at each node.

        All matches are kept, even when several rules fit the same node;
        choosing between them is left to the chunk builder. A rule whose
        search at one node runs past ``MAX_SEARCH_STEPS`` keeps the
        assignments found so far and a ``MatchError`` is appended to
        ``errors``.
        """
        matches: List[RuleMatch] = []
        group_rules = rule_set.group_rules
        stack: List[Tuple[SyntaxNode, Tuple[SyntaxNode, ...], int]] = [(root, (root,), 0)]
        visited = 0
        while stack:
            node, siblings, index = stack.pop()
            visited += 1
            if should_cancel is not None and visited % CANCEL_POLL_INTERVAL == 0 and should_cancel():
                raise ExtractionCancelled(f"matching cancelled after {visited} nodes")

            rules = rule_set.candidates(node.type)
            if group_rules:
                rules = tuple(sorted(rules + group_rules, key=lambda rule: rule.index))
            for rule in rules:
                self._apply(rule, node, siblings, index, matches, errors)

            children = node.children
            for child_index in range(len(children) - 1, -1, -1):
                stack.append((children[child_index], children, child_index))

        log.debug("matcher_completed", language=rule_set.language, nodes=visited, matches=len(matches))
        return matches

    @staticmethod
    def _apply(
        rule: PatternRule,
        node: SyntaxNode,
        siblings: Sequence[SyntaxNode],
        index: int,
        matches: List[RuleMatch],
        errors: Optional[List[MatchError]],
    ) -> None:
        search = _Search(MAX_SEARCH_STEPS)
        if isinstance(rule.pattern, GroupPattern):
            results = search.match_group(rule.pattern, siblings, index)
        else:
            results = search.match_node(rule.pattern, node)
        seen = set()
        try:
            for pairs in results:
                key = tuple((capture, id(bound)) for capture, bound in pairs)
                if key in seen:
                    continue
                seen.add(key)
                matches.append(RuleMatch(rule=rule, owner=node, bindings=_bindings(pairs)))
        except _BudgetExhausted:
            log.warning("match_search_exhausted", rule=rule.index, node=node.type, steps=search.limit)
            if errors is not None:
                errors.append(
                    MatchError(
                        f"search budget of {search.limit} steps exhausted",
                        rule_id=rule.index,
                        span=(node.start_byte, node.end_byte),
                    )
                )


class _Search:
    """Backtracking search for one rule at one node."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.steps = 0

    # single nodes --------------------------------------------------------

    def match_node(self, pattern: Pattern, node: SyntaxNode) -> Iterator[Pairs]:
        if isinstance(pattern, AlternationPattern):
            for alternative in pattern.alternatives:
                matched = False
                for pairs in self.match_node(alternative, node):
                    matched = True
                    yield pairs + _captured(pattern, node)
                if matched:
                    return
            return
        if isinstance(pattern, GroupPattern):
            return
        if not pattern.accepts(node.type, node.is_named):
            return
        if any(node.has_field(name) for name in pattern.negated_fields):
            return
        own = _captured(pattern, node)
        if not pattern.children:
            yield own
            return
        children = node.children
        for pairs, end, _first in self._match_sequence(pattern.children, children, 0, None):
            if pattern.trailing_anchor and _next_named(children, end) < len(children):
                continue
            yield own + pairs

    # sibling sequences -----------------------------------------------------

    def match_group(
        self, pattern: GroupPattern, siblings: Sequence[SyntaxNode], index: int
    ) -> Iterator[Pairs]:
        for pairs, end, first in self._match_sequence(pattern.items, siblings, index, index):
            if first != index:
                continue
            if pattern.trailing_anchor and _next_named(siblings, end) < len(siblings):
                continue
            yield pairs

    def _match_sequence(
        self,
        items: Sequence[ChildItem],
        children: Sequence[SyntaxNode],
        pos: int,
        pin: Optional[int],
    ) -> Iterator[Tuple[Pairs, int, Optional[int]]]:
        """Yield ``(pairs, next position, first consumed index)`` assignments.

        ``pin`` forces the first consumed child to sit exactly at that index.
        """
        if not items:
            yield (), pos, None
            return
        item, rest = items[0], items[1:]
        for pairs, next_pos, first in self._match_item(item, children, pos, pin):
            rest_pin = pin if first is None else None
            for rest_pairs, end, rest_first in self._match_sequence(rest, children, next_pos, rest_pin):
                yield pairs + rest_pairs, end, first if first is not None else rest_first

    def _positions(
        self, item: ChildItem, children: Sequence[SyntaxNode], pos: int, pin: Optional[int]
    ) -> Sequence[int]:
        if pin is not None:
            return (pin,) if pin >= pos and pin < len(children) else ()
        if item.anchored:
            target = _adjacent(item, children, pos)
            return (target,) if target < len(children) else ()
        return range(pos, len(children))

    def _match_one(self, item: ChildItem, child: SyntaxNode) -> Iterator[Pairs]:
        self.steps += 1
        if self.steps > self.limit:
            raise _BudgetExhausted()
        if item.field is not None and child.field_name != item.field:
            return iter(())
        return self.match_node(item.pattern, child)

    def _match_item(
        self,
        item: ChildItem,
        children: Sequence[SyntaxNode],
        pos: int,
        pin: Optional[int],
    ) -> Iterator[Tuple[Pairs, int, Optional[int]]]:
        if isinstance(item.pattern, GroupPattern):
            for pairs, end, first in self._match_sequence(item.pattern.items, children, pos, pin):
                yield pairs, end, first
            return

        if item.quantifier in ("", "?"):
            matched = False
            for index in self._positions(item, children, pos, pin):
                for pairs in self._match_one(item, children[index]):
                    matched = True
                    yield pairs, index + 1, index
            if item.quantifier == "?" and not matched:
                yield (), pos, None
            return

        # "*" and "+": greedy run of consecutive repeats, no backtracking into the run
        matched = False
        for index in self._positions(item, children, pos, pin):
            run = self._first_assignment(item, children[index])
            if run is None:
                continue
            matched = True
            pairs = run
            end = index + 1
            while True:
                nxt = _adjacent(item, children, end)
                if nxt >= len(children):
                    break
                more = self._first_assignment(item, children[nxt])
                if more is None:
                    break
                pairs += more
                end = nxt + 1
            yield pairs, end, index
        if item.quantifier == "*" and not matched:
            yield (), pos, None

    def _first_assignment(self, item: ChildItem, child: SyntaxNode) -> Optional[Pairs]:
        for pairs in self._match_one(item, child):
            return pairs
        return None


def _bindings(pairs: Pairs) -> Dict[str, Tuple[SyntaxNode, ...]]:
    grouped: Dict[str, List[SyntaxNode]] = {}
    for capture, node in pairs:
        nodes = grouped.setdefault(capture, [])
        if all(existing is not node for existing in nodes):
            nodes.append(node)
    return {capture: tuple(nodes) for capture, nodes in grouped.items()}
