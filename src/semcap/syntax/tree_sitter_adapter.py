"""
Adapter from py-tree-sitter parse trees to ``SyntaxNode`` values.

Grammars come from ``tree_sitter_language_pack``, which bundles compiled
parsers for the languages the engine ships rule sets for.
"""

from __future__ import annotations

from typing import Any, List, Optional

from tree_sitter import Language, Parser  # type: ignore[import]

from ..logger import get_logger
from .tree import SyntaxNode

log = get_logger(__name__)


_LANGUAGE_CACHE: dict[str, Language] = {}


def _load_language(language_name: str) -> Language:
    """
    Lazily load a prebuilt tree-sitter language.

    Users are expected to install `tree_sitter_language_pack`, which bundles
    or downloads compiled grammars. Any failure to provide the grammar is
    raised as ``LookupError``.
    """
    if language_name in _LANGUAGE_CACHE:
        return _LANGUAGE_CACHE[language_name]

    try:
        import tree_sitter_language_pack as language_pack  # type: ignore
    except ImportError as exc:  # pragma: no cover - runtime configuration issue
        raise RuntimeError(
            "tree_sitter_language_pack is required for prebuilt grammars. "
            "Install it via `pip install tree-sitter-language-pack`."
        ) from exc

    # releases that download grammars report failures through their own Error base
    pack_error = getattr(language_pack, "Error", LookupError)
    try:
        language = language_pack.get_language(language_name)  # type: ignore[arg-type]
    except pack_error as exc:
        log.warning("grammar_load_failed", language=language_name, error=str(exc))
        raise LookupError(f"grammar for {language_name!r} is unavailable: {exc}") from exc
    _LANGUAGE_CACHE[language_name] = language
    return language


class _Frame:
    __slots__ = ("node", "field_name", "children")

    def __init__(self, node: Any, field_name: Optional[str]) -> None:
        self.node = node
        self.field_name = field_name
        self.children: List[SyntaxNode] = []

    def build(self) -> SyntaxNode:
        node = self.node
        return SyntaxNode(
            type=node.type,
            start_byte=node.start_byte,
            end_byte=node.end_byte,
            is_named=node.is_named,
            field_name=self.field_name,
            children=tuple(self.children),
            has_error=node.has_error,
        )


def convert_tree(tree: Any) -> SyntaxNode:
    """Convert a tree-sitter ``Tree`` into a ``SyntaxNode`` hierarchy.

    The walk uses a tree cursor so field names are available for every child
    and deep trees do not hit the interpreter recursion limit.
    """
    cursor = tree.walk()
    frames: List[_Frame] = [_Frame(cursor.node, None)]
    while True:
        if cursor.goto_first_child():
            frames.append(_Frame(cursor.node, cursor.field_name))
            continue
        while True:
            built = frames.pop().build()
            if not frames:
                return built
            frames[-1].children.append(built)
            if cursor.goto_next_sibling():
                frames.append(_Frame(cursor.node, cursor.field_name))
                break
            cursor.goto_parent()


class TreeSitterAdapter:
    """Parses source bytes with tree-sitter and returns ``SyntaxNode`` trees."""

    def __init__(self) -> None:
        self.parsers: dict[str, Parser] = {}

    def _get_parser(self, language_key: str) -> Parser:
        if language_key not in self.parsers:
            parser = Parser(_load_language(language_key))
            self.parsers[language_key] = parser
        return self.parsers[language_key]

    def supports(self, language_key: str) -> bool:
        try:
            self._get_parser(language_key)
        except (LookupError, RuntimeError, ValueError) as exc:
            log.debug("grammar_unavailable", language=language_key, error=str(exc))
            return False
        return True

    def parse(self, source: bytes, language_key: str) -> SyntaxNode:
        parser = self._get_parser(language_key)
        tree = parser.parse(source)
        root = convert_tree(tree)
        if root.has_error:
            log.debug("parse_tree_has_errors", language=language_key)
        return root
