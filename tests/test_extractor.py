from pathlib import Path

import pytest

from semcap.chunking import ChunkExtractor, ChunkKind, guess_language
from semcap.exceptions import PartialExtractionError
from semcap.patterns.registry import PatternRegistry
from semcap.settings import settings

from trees import SHOP_RULES, SHOP_SOURCE, TreeBuilder, shop_tree

ELIXIR_SOURCE = (
    "defmodule Shop do\n"
    '  @doc "Adds an item."\n'
    "  def add(item), do: item\n"
    "end\n"
)


def elixir_tree() -> tuple[TreeBuilder, object]:
    """Shape of the tree-sitter-elixir parse of ``ELIXIR_SOURCE``."""
    b = TreeBuilder(ELIXIR_SOURCE)
    doc = b.node(
        "unary_operator",
        '@doc "Adds an item."',
        b.token("@", field="operator"),
        b.node(
            "call",
            'doc "Adds an item."',
            b.node("identifier", "doc", field="target"),
            b.node("arguments", '"Adds an item."', b.node("string", '"Adds an item."')),
            field="operand",
        ),
    )
    function = b.node(
        "call",
        "def add(item), do: item",
        b.node("identifier", "def", nth=1, field="target"),
        b.node(
            "arguments",
            "add(item), do: item",
            b.node(
                "call",
                "add(item)",
                b.node("identifier", "add", field="target"),
                b.node("arguments", "(item)", b.node("identifier", "item", nth=1)),
            ),
            b.node("keywords", "do: item"),
        ),
    )
    module = b.node(
        "call",
        ELIXIR_SOURCE.rstrip("\n"),
        b.node("identifier", "defmodule", field="target"),
        b.node("arguments", "Shop", b.node("alias", "Shop")),
        b.node("do_block", ELIXIR_SOURCE.rstrip("\n")[len("defmodule Shop "):], doc, function),
    )
    return b, b.root(module)


@pytest.fixture(scope="module")
def bundled() -> PatternRegistry:
    return PatternRegistry.bundled()


def assert_well_formed(tree, source: bytes) -> None:
    for chunk in tree:
        assert 0 <= chunk.start_byte <= chunk.end_byte <= len(source)
        if chunk.parent_id is not None:
            assert tree.get(chunk.parent_id).span.contains(chunk.span)
    for siblings in [tree.roots] + [tree.children(chunk.id) for chunk in tree]:
        for left, right in zip(siblings, siblings[1:]):
            assert left.end_byte <= right.start_byte


def test_documented_function_in_module(bundled: PatternRegistry) -> None:
    b, root = elixir_tree()
    tree = ChunkExtractor(registry=bundled).extract("elixir", root, b.source)

    assert [(chunk.kind, chunk.name) for chunk in tree] == [
        (ChunkKind.MODULE, "Shop"),
        (ChunkKind.FUNCTION, "add"),
    ]
    function = tree.chunks[1]
    assert function.documentation == "Adds an item."
    assert function.parent_id == tree.chunks[0].id
    assert not [chunk for chunk in tree if chunk.kind is ChunkKind.DOCUMENTATION]
    assert tree.errors == ()
    assert_well_formed(tree, b.source)


def test_language_aliases_are_case_insensitive(bundled: PatternRegistry) -> None:
    b, root = elixir_tree()
    extractor = ChunkExtractor(registry=bundled)
    assert extractor.extract("EX", root, b.source).as_dicts() == extractor.extract("elixir", root, b.source).as_dicts()


def test_extraction_is_deterministic(bundled: PatternRegistry) -> None:
    b, root = elixir_tree()
    extractor = ChunkExtractor(registry=bundled)
    first = extractor.extract("elixir", root, b.source)
    second = ChunkExtractor(registry=PatternRegistry.bundled()).extract("elixir", root, ELIXIR_SOURCE)
    assert first.as_dicts() == second.as_dicts()


def test_specific_tag_beats_generic_fallback_on_one_node() -> None:
    b = TreeBuilder("defmodule Cart do end")
    module = b.node(
        "call",
        "defmodule Cart do end",
        b.node("identifier", "defmodule", field="target"),
        b.node("arguments", "Cart", b.node("alias", "Cart")),
    )
    rules = """
    (call) @definition.function
    (call target: (identifier) @_keyword (arguments (alias) @name) (#eq? @_keyword "defmodule")) @definition.module
    """
    registry = PatternRegistry.from_definitions({"elixir": rules})
    tree = ChunkExtractor(registry=registry).extract("elixir", b.root(module), b.source)

    [chunk] = tree.chunks
    assert chunk.kind is ChunkKind.MODULE
    assert chunk.name == "Cart"


def test_wrapper_node_contains_nested_definition() -> None:
    source = "mock! { fn build() {} }"
    b = TreeBuilder(source)
    inner = b.node("function_item", "fn build() {}", b.node("identifier", "build", field="name"))
    wrapper = b.node(
        "macro_invocation",
        source,
        b.node("identifier", "mock", field="macro"),
        b.token("!"),
        b.node("token_tree", "{ fn build() {} }", inner),
    )
    rules = """
    (macro_invocation macro: (identifier) @name) @definition.module
    (function_item name: (identifier) @name) @definition.function
    """
    registry = PatternRegistry.from_definitions({"rust": rules})
    tree = ChunkExtractor(registry=registry).extract("rust", b.root(wrapper), b.source)

    outer, nested = tree.chunks
    assert (outer.kind, outer.name) == (ChunkKind.MODULE, "mock")
    assert (nested.kind, nested.name) == (ChunkKind.FUNCTION, "build")
    assert nested.parent_id == outer.id
    assert outer.child_ids == (nested.id,)
    assert outer.span.strictly_contains(nested.span)


def test_broken_language_does_not_affect_others() -> None:
    registry = PatternRegistry.from_definitions(
        {"broken": "(call) @definition.interface", "toy": SHOP_RULES}
    )
    b, root = shop_tree()
    extractor = ChunkExtractor(registry=registry)

    assert "broken" in registry.errors
    assert [chunk.name for chunk in extractor.extract("toy", root, b.source)] == ["Shop", "add", "remove"]
    assert len(extractor.extract("broken", root, b.source)) == 0


def test_missing_tree_reports_partial_extraction() -> None:
    registry = PatternRegistry.from_definitions({"toy": SHOP_RULES})
    tree = ChunkExtractor(registry=registry).extract("toy", None, SHOP_SOURCE)
    assert len(tree) == 0
    [error] = tree.errors
    assert isinstance(error, PartialExtractionError)


def test_unconfigured_language_yields_empty_result() -> None:
    b, root = shop_tree()
    tree = ChunkExtractor(registry=PatternRegistry({})).extract("cobol", root, b.source)
    assert not tree
    assert tree.errors == ()
    assert tree.language == "cobol"


def test_shop_tree_is_well_formed() -> None:
    registry = PatternRegistry.from_definitions({"toy": SHOP_RULES})
    b, root = shop_tree()
    assert_well_formed(ChunkExtractor(registry=registry).extract("toy", root, b.source), b.source)


class StubAdapter:
    def __init__(self, root=None, error: Exception | None = None) -> None:
        self.root = root
        self.error = error
        self.calls = []

    def parse(self, source: bytes, language_key: str):
        self.calls.append((source, language_key))
        if self.error is not None:
            raise self.error
        return self.root


@pytest.fixture
def toy_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setattr(settings, "extension_overrides", {".toy": "toy"})
    path = tmp_path / "shop.toy"
    path.write_text(SHOP_SOURCE, encoding="utf-8")
    return path


def test_extract_file_parses_with_adapter(toy_files: Path) -> None:
    _, root = shop_tree()
    adapter = StubAdapter(root)
    extractor = ChunkExtractor(registry=PatternRegistry.from_definitions({"toy": SHOP_RULES}), adapter=adapter)
    tree = extractor.extract_file(toy_files)
    assert [chunk.name for chunk in tree] == ["Shop", "add", "remove"]
    assert adapter.calls == [(SHOP_SOURCE.encode("utf-8"), "toy")]


def test_extract_file_turns_parse_failures_into_partial_results(toy_files: Path) -> None:
    adapter = StubAdapter(error=LookupError("no grammar"))
    extractor = ChunkExtractor(registry=PatternRegistry.from_definitions({"toy": SHOP_RULES}), adapter=adapter)
    tree = extractor.extract_file(toy_files)
    assert len(tree) == 0
    assert isinstance(tree.errors[0], PartialExtractionError)


def test_extract_file_skips_oversized_files(toy_files: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "max_file_bytes", 10)
    adapter = StubAdapter()
    extractor = ChunkExtractor(registry=PatternRegistry.from_definitions({"toy": SHOP_RULES}), adapter=adapter)
    tree = extractor.extract_file(toy_files)
    assert adapter.calls == []
    assert isinstance(tree.errors[0], PartialExtractionError)


def test_guess_language(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "extension_overrides", {".heex": "EX"})
    assert guess_language(Path("lib/shop.ex")) == "elixir"
    assert guess_language(Path("test/shop_test.EXS")) == "elixir"
    assert guess_language(Path("src/main.rs")) == "rust"
    assert guess_language(Path("templates/page.heex")) == "elixir"
    assert guess_language(Path("README.md")) is None


def test_spec_between_doc_and_def_keeps_documentation(bundled: PatternRegistry) -> None:
    source = (
        "defmodule Shop do\n"
        '  @doc "Adds an item."\n'
        "  @spec add(term) :: term\n"
        "  def add(item), do: item\n"
        "end\n"
    )
    b = TreeBuilder(source)

    def attribute(name: str, snippet: str, nth: int, *arguments):
        return b.node(
            "unary_operator",
            f"@{snippet}",
            b.token("@", nth=nth, field="operator"),
            b.node(
                "call",
                snippet,
                b.node("identifier", name, field="target"),
                *arguments,
                field="operand",
            ),
        )

    text = b.node("string", '"Adds an item."')
    doc = attribute("doc", 'doc "Adds an item."', 0, b.node("arguments", '"Adds an item."', text))
    spec = attribute("spec", "spec add(term) :: term", 1, b.node("arguments", "add(term) :: term"))
    function = b.node(
        "call",
        "def add(item), do: item",
        b.node("identifier", "def", nth=1, field="target"),
        b.node(
            "arguments",
            "add(item), do: item",
            b.node("call", "add(item)", b.node("identifier", "add", nth=1, field="target")),
        ),
    )
    module = b.node(
        "call",
        source.rstrip("\n"),
        b.node("identifier", "defmodule", field="target"),
        b.node("arguments", "Shop", b.node("alias", "Shop")),
        b.node("do_block", source.rstrip("\n")[len("defmodule Shop "):], doc, spec, function),
    )
    tree = ChunkExtractor(registry=bundled).extract("elixir", b.root(module), b.source)

    assert [(chunk.kind, chunk.name) for chunk in tree] == [
        (ChunkKind.MODULE, "Shop"),
        (ChunkKind.FUNCTION, "add"),
    ]
    assert tree.chunks[1].documentation == "Adds an item."
