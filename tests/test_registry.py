import dataclasses
from pathlib import Path

import pytest

from semcap.exceptions import ConfigError
from semcap.patterns import registry as registry_module
from semcap.patterns.registry import (
    PatternRegistry,
    collect_definitions,
    load,
    read_bundled_queries,
)
from semcap.patterns.taxonomy import ChunkKind

RULES = """
(function_item name: (identifier) @name) @definition.function
(_) @anything
(impl_item body: (declaration_list (function_item) @definition.method))
[(struct_item) (enum_item)] @definition.type
((line_comment)+ @definition.documentation . (function_item))
"""


def test_load_keeps_declaration_order_and_tags() -> None:
    rule_set = load("Rust", RULES)
    assert rule_set.language == "rust"
    assert [rule.index for rule in rule_set] == [0, 1, 2, 3, 4]
    first = rule_set.rules[0]
    assert first.tags == (("definition.function", ChunkKind.FUNCTION),)
    assert first.has_name_capture
    assert rule_set.rules[1].tags == ()
    assert rule_set.rules[2].root_captures == ()
    assert rule_set.rules[2].tags == (("definition.method", ChunkKind.METHOD),)


def test_candidates_merge_typed_and_wildcard_rules() -> None:
    rule_set = load("rust", RULES)
    assert [rule.index for rule in rule_set.candidates("function_item")] == [0, 1]
    assert [rule.index for rule in rule_set.candidates("enum_item")] == [1, 3]
    assert [rule.index for rule in rule_set.candidates("unknown_node")] == [1]
    assert [rule.index for rule in rule_set.group_rules] == [4]


def test_load_accepts_several_definition_texts() -> None:
    rule_set = load("rust", ["(mod_item) @module", "(function_item) @definition.function"])
    assert [rule.tags[0][1] for rule in rule_set] == [ChunkKind.MODULE, ChunkKind.FUNCTION]


def test_rule_set_is_immutable() -> None:
    rule_set = load("rust", RULES)
    with pytest.raises(dataclasses.FrozenInstanceError):
        rule_set.rules = ()  # type: ignore[misc]


@pytest.mark.parametrize(
    "text, message",
    [
        ("(trait_item) @definition.interface", "taxonomy"),
        ('(function_item) @definition.function (#eq? @missing "x")', "outside of a pattern"),
        ('((function_item) @definition.function (#eq? @missing "x"))', "never binds"),
        ('((identifier) @name (#contains? @name "x"))', "Unsupported predicate"),
        ('((identifier) @name (#match? @name "[unclosed"))', "Invalid regex"),
        ('((identifier) @name (#match? @name))', "expects"),
        ('((identifier) @name (#eq? "x" @name))', "must start with a capture"),
        ('((identifier) @name (#rewrite! @name "x"))', "Unsupported directive"),
        ('((comment) @doc (#strip! @other "x"))', "never binds"),
        ("(function_item", "Unterminated"),
    ],
)
def test_load_rejects_malformed_rules(text: str, message: str) -> None:
    with pytest.raises(ConfigError) as excinfo:
        load("rust", text)
    assert message in str(excinfo.value)
    assert excinfo.value.language == "rust"


def test_ignored_directives_are_accepted() -> None:
    rule_set = load("rust", '((identifier) @name (#set! "priority" "105") (#select-adjacent! @name @name))')
    assert rule_set.rules[0].predicates == ()
    assert rule_set.rules[0].directives == ()


def test_registry_isolates_broken_languages() -> None:
    registry = PatternRegistry.from_definitions(
        {
            "Broken": "(function_item) @definition.interface",
            "rust": "(function_item name: (identifier) @name) @definition.function",
        }
    )
    assert "rust" in registry
    assert "RUST" in registry
    assert registry.get("Rust") is not None
    assert "broken" not in registry
    assert isinstance(registry.errors["broken"], ConfigError)
    assert registry.languages == ["rust"]
    assert len(registry) == 1


def test_registry_from_directory(tmp_path: Path) -> None:
    (tmp_path / "toy.scm").write_text("(def) @definition.function\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
    registry = PatternRegistry.from_directory(tmp_path)
    assert registry.languages == ["toy"]


def test_missing_directory_yields_empty_registry(tmp_path: Path) -> None:
    registry = PatternRegistry.from_directory(tmp_path / "absent")
    assert len(registry) == 0


def test_bundled_queries_load_without_errors() -> None:
    registry = PatternRegistry.bundled()
    assert dict(registry.errors) == {}
    assert registry.languages == ["elixir", "javascript", "python", "rust"]
    for language in registry.languages:
        assert len(registry.get(language)) > 0


def test_collect_definitions_overrides_and_filters(tmp_path: Path) -> None:
    override = tmp_path / "queries"
    override.mkdir()
    (override / "python.scm").write_text("(class_definition) @definition.class\n", encoding="utf-8")
    (override / "toy.scm").write_text("(def) @definition.function\n", encoding="utf-8")

    definitions = collect_definitions([override], ["Python", "toy"])
    assert sorted(definitions) == ["python", "toy"]
    assert definitions["python"] == "(class_definition) @definition.class\n"

    everything = collect_definitions([override])
    assert set(read_bundled_queries()) <= set(everything)


def test_default_registry_uses_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    from semcap.settings import settings

    (tmp_path / "toy.scm").write_text("(def) @definition.function\n", encoding="utf-8")
    monkeypatch.setattr(settings, "query_dirs", [tmp_path])
    monkeypatch.setattr(settings, "enabled_languages", ["toy", "python"])
    registry_module.default_registry.cache_clear()
    try:
        registry = registry_module.default_registry()
        assert registry.languages == ["python", "toy"]
    finally:
        registry_module.default_registry.cache_clear()
