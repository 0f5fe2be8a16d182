"""
Per-file extraction pipeline.

Runs the matcher, predicate evaluator, chunk builder and normalizer over one
syntax tree. ``extract_file`` additionally reads and parses the file with the
tree-sitter adapter, turning every upstream failure into an empty result.
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Union

from ..exceptions import MatchError, PartialExtractionError
from ..logger import get_logger
from ..patterns.predicates import PredicateEvaluator
from ..patterns.registry import PatternRegistry, default_registry
from ..settings import settings
from ..syntax import SyntaxNode
from .builder import ChunkBuilder
from .matcher import Matcher
from .models import ChunkTree
from .normalizer import ChunkNormalizer

if TYPE_CHECKING:
    from ..syntax.tree_sitter_adapter import TreeSitterAdapter

log = get_logger(__name__)

LANGUAGE_ALIASES: Dict[str, str] = {
    "py": "python",
    "ex": "elixir",
    "exs": "elixir",
    "rs": "rust",
    "js": "javascript",
}

EXTENSION_LANGUAGES: Dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".ex": "elixir",
    ".exs": "elixir",
    ".rs": "rust",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
}


def normalize_language(language: str) -> str:
    """Lower-case a language name and resolve short aliases."""
    key = language.strip().lower()
    return LANGUAGE_ALIASES.get(key, key)


def guess_language(path: Path) -> Optional[str]:
    """Language for ``path`` from its extension, honouring configured overrides."""
    suffix = path.suffix.lower()
    if suffix in settings.extension_overrides:
        return normalize_language(settings.extension_overrides[suffix])
    return EXTENSION_LANGUAGES.get(suffix)


class ChunkExtractor:
    """Extracts a ``ChunkTree`` from one source file."""

    def __init__(
        self,
        registry: Optional[PatternRegistry] = None,
        adapter: Optional["TreeSitterAdapter"] = None,
    ) -> None:
        self.registry = registry if registry is not None else default_registry()
        self._adapter = adapter
        self.matcher = Matcher()
        self.evaluator = PredicateEvaluator()
        self.builder = ChunkBuilder()
        self.normalizer = ChunkNormalizer()

    @property
    def adapter(self) -> "TreeSitterAdapter":
        if self._adapter is None:
            from ..syntax.tree_sitter_adapter import TreeSitterAdapter

            self._adapter = TreeSitterAdapter()
        return self._adapter

    def extract(
        self,
        language: str,
        tree: Optional[SyntaxNode],
        source: Union[bytes, str],
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> ChunkTree:
        """
        Extract chunks from an already-parsed tree.

        Parameters
        ----------
        language:
            Language identifier, case-insensitive; short aliases are accepted.
        tree:
            Root of the parse tree, or ``None`` when parsing failed upstream.
        source:
            The exact text the tree was parsed from.
        should_cancel:
            Polled during matching; returning True aborts with
            ``ExtractionCancelled``.
        """
        key = normalize_language(language)
        if isinstance(source, str):
            source = source.encode("utf-8")
        if tree is None:
            log.warning("extraction_without_tree", language=key)
            return ChunkTree(
                language=key,
                errors=(PartialExtractionError(f"no syntax tree available for {key} source"),),
            )

        rule_set = self.registry.get(key)
        if rule_set is None:
            log.debug("language_not_configured", language=key)
            return ChunkTree(language=key)

        search_errors: List[MatchError] = []
        matches = self.matcher.match(tree, rule_set, should_cancel, search_errors)
        kept, errors = self.evaluator.filter(matches, source)
        draft = self.builder.build(kept, source, key, search_errors + list(errors))
        result = self.normalizer.normalize(draft)
        log.info(
            "chunks_extracted",
            language=key,
            matches=len(matches),
            chunks=len(result),
            errors=len(result.errors),
        )
        return result

    def extract_file(
        self,
        path: Path,
        language: Optional[str] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> ChunkTree:
        """Read, parse and extract one file; parsing problems yield an empty result."""
        key = normalize_language(language) if language else guess_language(path)
        if key is None:
            log.debug("language_unknown", file=str(path))
            return ChunkTree(language="")
        if key not in self.registry:
            log.debug("language_not_configured", file=str(path), language=key)
            return ChunkTree(language=key)

        size = path.stat().st_size
        if size > settings.max_file_bytes:
            log.warning("file_too_large", file=str(path), size=size, limit=settings.max_file_bytes)
            return ChunkTree(
                language=key,
                errors=(PartialExtractionError(f"{path} exceeds {settings.max_file_bytes} bytes"),),
            )

        source = path.read_bytes()
        try:
            tree = self.adapter.parse(source, key)
        except (LookupError, RuntimeError, ValueError) as exc:
            log.warning("parse_failed", file=str(path), language=key, error=str(exc))
            return ChunkTree(
                language=key,
                errors=(PartialExtractionError(f"could not parse {path}: {exc}"),),
            )
        return self.extract(key, tree, source, should_cancel)
