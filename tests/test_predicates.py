import pytest

from semcap.chunking.models import RuleMatch
from semcap.exceptions import MatchError
from semcap.patterns.predicates import (
    Predicate,
    PredicateEvaluator,
    StripDirective,
    evaluate,
)
from semcap.patterns.registry import load

from trees import TreeBuilder


@pytest.fixture
def builder() -> TreeBuilder:
    return TreeBuilder("defmodule Shop do def add do end end")


def test_literal_equality(builder: TreeBuilder) -> None:
    bindings = {"kw": (builder.node("identifier", "defmodule"),)}
    assert evaluate(Predicate("eq", "kw", ("defmodule",)), bindings, builder.source)
    assert not evaluate(Predicate("eq", "kw", ("def",)), bindings, builder.source)
    assert evaluate(Predicate("eq", "kw", ("def",), negated=True), bindings, builder.source)


def test_match_uses_search_semantics(builder: TreeBuilder) -> None:
    bindings = {"kw": (builder.node("identifier", "defmodule"),)}
    assert evaluate(Predicate("match", "kw", ("module",)), bindings, builder.source)
    assert not evaluate(Predicate("match", "kw", ("^module",)), bindings, builder.source)
    assert evaluate(Predicate("match", "kw", ("^module",), negated=True), bindings, builder.source)


def test_any_of(builder: TreeBuilder) -> None:
    bindings = {"kw": (builder.node("identifier", "def", nth=1),)}
    assert evaluate(Predicate("any-of", "kw", ("def", "defp")), bindings, builder.source)
    assert not evaluate(Predicate("any-of", "kw", ("defp",)), bindings, builder.source)
    assert evaluate(Predicate("any-of", "kw", ("defp",), negated=True), bindings, builder.source)


def test_eq_between_two_captures() -> None:
    builder = TreeBuilder("add add remove")
    bindings = {
        "a": (builder.node("identifier", "add"),),
        "b": (builder.node("identifier", "add", nth=1),),
        "c": (builder.node("identifier", "remove"),),
    }
    assert evaluate(Predicate("eq", "a", other_capture="b"), bindings, builder.source)
    assert not evaluate(Predicate("eq", "a", other_capture="c"), bindings, builder.source)
    assert evaluate(Predicate("eq", "a", negated=True, other_capture="c"), bindings, builder.source)


def test_every_node_of_a_quantified_capture_must_pass() -> None:
    builder = TreeBuilder("/// one\n/// two\n// three\n")
    docs = (builder.node("line_comment", "/// one"), builder.node("line_comment", "/// two"))
    mixed = docs + (builder.node("line_comment", "// three"),)
    predicate = Predicate("match", "doc", ("^///",))
    assert evaluate(predicate, {"doc": docs}, builder.source)
    assert not evaluate(predicate, {"doc": mixed}, builder.source)


def test_unbound_capture_raises_match_error(builder: TreeBuilder) -> None:
    with pytest.raises(MatchError) as excinfo:
        evaluate(Predicate("eq", "missing", ("x",)), {}, builder.source)
    assert excinfo.value.capture == "missing"


def test_strip_directive_applies_per_line() -> None:
    directive = StripDirective("doc", r"^\s*///\s?")
    assert directive.apply("/// first\n  /// second") == "first\nsecond"


def test_evaluator_filters_and_records_unbound_captures() -> None:
    rule_set = load(
        "toy",
        '((call (identifier)? @_kw) @definition.function (#eq? @_kw "def"))',
    )
    rule = rule_set.rules[0]
    builder = TreeBuilder("def x; other y; z")
    passing = builder.node("call", "def x", builder.node("identifier", "def"))
    failing = builder.node("call", "other y", builder.node("identifier", "other"))
    unbound = builder.node("call", "z")

    matches = [
        RuleMatch(rule, passing, {"definition.function": (passing,), "_kw": passing.children}),
        RuleMatch(rule, failing, {"definition.function": (failing,), "_kw": failing.children}),
        RuleMatch(rule, unbound, {"definition.function": (unbound,)}),
    ]
    kept, errors = PredicateEvaluator().filter(matches, builder.source)

    assert kept == [matches[0]]
    [error] = errors
    assert error.rule_id == 0
    assert error.span == (unbound.start_byte, unbound.end_byte)
    assert error.capture == "_kw"
