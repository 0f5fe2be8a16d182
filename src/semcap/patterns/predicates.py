"""
Text predicates attached to rules.

Only a closed set of predicate kinds is supported: literal equality, regex
search and set membership, each optionally negated. Predicates see the
literal source text of a capture, never its node type.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, List, Mapping, Optional, Sequence, Tuple

from ..exceptions import ConfigError, MatchError
from ..logger import get_logger
from ..syntax import SyntaxNode
from .query import PredicateCall

if TYPE_CHECKING:
    from ..chunking.models import RuleMatch

log = get_logger(__name__)

Bindings = Mapping[str, Tuple[SyntaxNode, ...]]

PREDICATE_KINDS = {"eq", "match", "any-of"}
IGNORED_DIRECTIVES = {"set!", "select-adjacent!"}


@dataclass(frozen=True)
class Predicate:
    """A text condition over one capture.

    ``kind`` is ``"eq"``, ``"match"`` or ``"any-of"``. ``values`` holds the
    literal(s) or the regex source; when ``other_capture`` is set, ``eq``
    compares against that capture's text instead.
    """

    kind: str
    capture: str
    values: Tuple[str, ...] = ()
    negated: bool = False
    other_capture: Optional[str] = None

    @property
    def captures(self) -> Tuple[str, ...]:
        if self.other_capture is not None:
            return (self.capture, self.other_capture)
        return (self.capture,)

    def test(self, text: str) -> bool:
        """Evaluate against a single capture text (literal comparisons only)."""
        return _test_text(self, text)


@dataclass(frozen=True)
class StripDirective:
    """``#strip! @capture "regex"``: removes matches from documentation text."""

    capture: str
    pattern: str

    def apply(self, text: str) -> str:
        return re.sub(self.pattern, "", text, flags=re.MULTILINE)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern)


@lru_cache(maxsize=8192)
def _test_text(predicate: Predicate, text: str) -> bool:
    if predicate.kind == "eq":
        result = text == predicate.values[0]
    elif predicate.kind == "match":
        result = _compile(predicate.values[0]).search(text) is not None
    else:
        result = text in predicate.values
    return result != predicate.negated


def _node_text(node: SyntaxNode, source: bytes) -> str:
    return node.text(source).decode("utf-8", errors="replace")


def evaluate(predicate: Predicate, bindings: Bindings, source: bytes) -> bool:
    """
    Evaluate one predicate against the bindings of a structural match.

    Raises
    ------
    MatchError
        When a capture the predicate references is not bound in this match.
    """
    nodes = bindings.get(predicate.capture)
    if not nodes:
        raise MatchError(
            f"predicate #{predicate.kind}? references unbound capture @{predicate.capture}",
            capture=predicate.capture,
        )
    if predicate.other_capture is not None:
        others = bindings.get(predicate.other_capture)
        if not others:
            raise MatchError(
                f"predicate #{predicate.kind}? references unbound capture @{predicate.other_capture}",
                capture=predicate.other_capture,
            )
        equal = _node_text(nodes[0], source) == _node_text(others[0], source)
        return equal != predicate.negated
    return all(_test_text(predicate, _node_text(node, source)) for node in nodes)


def compile_predicates(
    calls: Sequence[PredicateCall], language: Optional[str] = None
) -> Tuple[Tuple[Predicate, ...], Tuple[StripDirective, ...]]:
    """Turn parsed predicate calls into ``Predicate`` and directive objects."""
    predicates: List[Predicate] = []
    directives: List[StripDirective] = []
    for call in calls:
        name = call.name
        if name.endswith("!"):
            if name == "strip!":
                if len(call.args) != 2 or call.args[0].kind != "capture" or call.args[1].kind != "string":
                    raise ConfigError("#strip! expects a capture and a regex", language, call.position)
                _validate_regex(call.args[1].value, language, call.position)
                directives.append(StripDirective(call.args[0].value, call.args[1].value))
            elif name in IGNORED_DIRECTIVES:
                log.debug("query_directive_ignored", directive=name, language=language)
            else:
                raise ConfigError(f"Unsupported directive #{name}", language, call.position)
            continue

        if not name.endswith("?"):
            raise ConfigError(f"Unsupported predicate #{name}", language, call.position)
        negated = name.startswith("not-")
        kind = name[4:-1] if negated else name[:-1]
        if kind not in PREDICATE_KINDS:
            raise ConfigError(f"Unsupported predicate #{name}", language, call.position)
        if not call.args or call.args[0].kind != "capture":
            raise ConfigError(f"#{name} must start with a capture", language, call.position)
        capture = call.args[0].value
        rest = call.args[1:]

        if kind == "eq":
            if len(rest) != 1:
                raise ConfigError(f"#{name} expects exactly two arguments", language, call.position)
            if rest[0].kind == "capture":
                predicates.append(
                    Predicate("eq", capture, negated=negated, other_capture=rest[0].value)
                )
            else:
                predicates.append(Predicate("eq", capture, (rest[0].value,), negated))
        elif kind == "match":
            if len(rest) != 1 or rest[0].kind != "string":
                raise ConfigError(f"#{name} expects a capture and a regex", language, call.position)
            _validate_regex(rest[0].value, language, call.position)
            predicates.append(Predicate("match", capture, (rest[0].value,), negated))
        else:
            if not rest or any(arg.kind != "string" for arg in rest):
                raise ConfigError(f"#{name} expects a capture and string values", language, call.position)
            predicates.append(
                Predicate("any-of", capture, tuple(arg.value for arg in rest), negated)
            )
    return tuple(predicates), tuple(directives)


def _validate_regex(pattern: str, language: Optional[str], position: int) -> None:
    try:
        _compile(pattern)
    except re.error as exc:
        raise ConfigError(f"Invalid regex {pattern!r}: {exc}", language, position) from exc


class PredicateEvaluator:
    """Filters structural matches down to those whose predicates all hold."""

    def filter(
        self, matches: Sequence["RuleMatch"], source: bytes
    ) -> Tuple[List["RuleMatch"], List[MatchError]]:
        kept: List["RuleMatch"] = []
        errors: List[MatchError] = []
        for match in matches:
            try:
                passed = all(
                    evaluate(predicate, match.bindings, source)
                    for predicate in match.rule.predicates
                )
            except MatchError as exc:
                exc.rule_id = match.rule.index
                exc.span = (match.owner.start_byte, match.owner.end_byte)
                errors.append(exc)
                log.debug("match_dropped", rule=match.rule.index, reason=exc.reason)
                continue
            if passed:
                kept.append(match)
        return kept, errors
