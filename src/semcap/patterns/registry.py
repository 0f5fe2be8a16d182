"""
Pattern registry: immutable, per-language rule sets loaded from query files.

Rule order is significant. A rule's position in its definition file is its
id and the final tie-break when several rules claim the same span.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from ..exceptions import ConfigError
from ..logger import get_logger
from .predicates import Predicate, StripDirective, compile_predicates
from .query import GroupPattern, ParsedPattern, Pattern, iter_captures, parse_query, root_types
from .taxonomy import NAME_CAPTURE, TAG_CAPTURES, ChunkKind, is_internal_capture

log = get_logger(__name__)

QUERY_SUFFIX = ".scm"

RuleDefinitions = Union[str, Iterable[str]]


@dataclass(frozen=True)
class PatternRule:
    """One top-level pattern with its captures, tags and predicates."""

    index: int
    pattern: Pattern
    captures: Tuple[str, ...]
    root_captures: Tuple[str, ...]
    tags: Tuple[Tuple[str, ChunkKind], ...]
    predicates: Tuple[Predicate, ...] = ()
    directives: Tuple[StripDirective, ...] = ()
    root_types: Optional[Tuple[str, ...]] = None
    position: int = 0

    @property
    def has_name_capture(self) -> bool:
        return NAME_CAPTURE in self.captures

    def strip_directives(self, capture: str) -> Tuple[StripDirective, ...]:
        return tuple(directive for directive in self.directives if directive.capture == capture)


@dataclass(frozen=True)
class LanguageRuleSet:
    """Ordered, read-only rules for one language."""

    language: str
    rules: Tuple[PatternRule, ...]
    _by_type: Mapping[str, Tuple[PatternRule, ...]] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )
    _untyped: Tuple[PatternRule, ...] = field(default=(), init=False, repr=False, compare=False)
    _groups: Tuple[PatternRule, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        typed: Dict[str, List[PatternRule]] = {}
        untyped: List[PatternRule] = []
        groups: List[PatternRule] = []
        for rule in self.rules:
            if isinstance(rule.pattern, GroupPattern):
                groups.append(rule)
            elif rule.root_types is None:
                untyped.append(rule)
            else:
                for node_type in rule.root_types:
                    typed.setdefault(node_type, []).append(rule)
        # typed and wildcard rules are merged per type once, keeping declaration order
        by_type = {
            node_type: tuple(sorted(rules + untyped, key=lambda rule: rule.index))
            for node_type, rules in typed.items()
        }
        object.__setattr__(self, "_by_type", MappingProxyType(by_type))
        object.__setattr__(self, "_untyped", tuple(untyped))
        object.__setattr__(self, "_groups", tuple(groups))

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[PatternRule]:
        return iter(self.rules)

    def candidates(self, node_type: str) -> Tuple[PatternRule, ...]:
        """Single-node rules whose root can match ``node_type``, in declaration order."""
        return self._by_type.get(node_type, self._untyped)

    @property
    def group_rules(self) -> Tuple[PatternRule, ...]:
        """Rules whose root is a sequence of sibling patterns."""
        return self._groups


def _tag_for_capture(capture: str, language: str, position: int) -> Optional[ChunkKind]:
    if capture in TAG_CAPTURES:
        return TAG_CAPTURES[capture]
    if "." in capture:
        raise ConfigError(f"Tag @{capture} is outside the supported taxonomy", language, position)
    return None


def _build_rule(index: int, parsed: ParsedPattern, language: str) -> PatternRule:
    captures = tuple(dict.fromkeys(iter_captures(parsed.pattern)))
    tags: List[Tuple[str, ChunkKind]] = []
    for capture in captures:
        if is_internal_capture(capture):
            continue
        kind = _tag_for_capture(capture, language, parsed.position)
        if kind is not None:
            tags.append((capture, kind))

    predicates, directives = compile_predicates(parsed.predicates, language)
    bound = set(captures)
    for predicate in predicates:
        for capture in predicate.captures:
            if capture not in bound:
                raise ConfigError(
                    f"Predicate references capture @{capture} that the pattern never binds",
                    language,
                    parsed.position,
                )
    for directive in directives:
        if directive.capture not in bound:
            raise ConfigError(
                f"Directive references capture @{directive.capture} that the pattern never binds",
                language,
                parsed.position,
            )

    return PatternRule(
        index=index,
        pattern=parsed.pattern,
        captures=captures,
        root_captures=tuple(parsed.pattern.captures),
        tags=tuple(tags),
        predicates=predicates,
        directives=directives,
        root_types=root_types(parsed.pattern),
        position=parsed.position,
    )


def load(language: str, definitions: RuleDefinitions) -> LanguageRuleSet:
    """
    Parse rule definitions for one language into an ordered rule set.

    Parameters
    ----------
    language:
        Language identifier the rules apply to.
    definitions:
        Query source text, or several texts that are concatenated in order.

    Raises
    ------
    ConfigError
        When the syntax cannot be parsed, a tag is outside the taxonomy, or a
        predicate references a capture its rule never binds.
    """
    language = language.lower()
    text = definitions if isinstance(definitions, str) else "\n".join(definitions)
    try:
        parsed_patterns = parse_query(text)
    except ConfigError as exc:
        raise ConfigError(exc.message, language, exc.position) from exc
    rules = tuple(
        _build_rule(index, parsed, language) for index, parsed in enumerate(parsed_patterns)
    )
    log.debug("rule_set_loaded", language=language, rules=len(rules))
    return LanguageRuleSet(language=language, rules=rules)


class PatternRegistry:
    """Read-only mapping from language to its loaded ``LanguageRuleSet``.

    Languages whose definitions fail to load are left out and their
    ``ConfigError`` kept in ``errors``; every other language still loads.
    """

    def __init__(
        self,
        rule_sets: Mapping[str, LanguageRuleSet],
        errors: Optional[Mapping[str, ConfigError]] = None,
    ) -> None:
        self._rule_sets = MappingProxyType(dict(rule_sets))
        self._errors = MappingProxyType(dict(errors or {}))

    @classmethod
    def from_definitions(cls, definitions: Mapping[str, RuleDefinitions]) -> "PatternRegistry":
        rule_sets: Dict[str, LanguageRuleSet] = {}
        errors: Dict[str, ConfigError] = {}
        for language, source in definitions.items():
            key = language.lower()
            try:
                rule_sets[key] = load(key, source)
            except ConfigError as exc:
                errors[key] = exc
                log.warning("query_load_failed", language=key, error=str(exc))
        log.info("pattern_registry_ready", languages=sorted(rule_sets), failed=sorted(errors))
        return cls(rule_sets, errors)

    @classmethod
    def from_directory(cls, path: Path) -> "PatternRegistry":
        return cls.from_definitions(read_query_directory(path))

    @classmethod
    def bundled(cls) -> "PatternRegistry":
        return cls.from_definitions(read_bundled_queries())

    @property
    def errors(self) -> Mapping[str, ConfigError]:
        return self._errors

    @property
    def languages(self) -> List[str]:
        return sorted(self._rule_sets)

    def get(self, language: str) -> Optional[LanguageRuleSet]:
        return self._rule_sets.get(language.lower())

    def __contains__(self, language: object) -> bool:
        return isinstance(language, str) and language.lower() in self._rule_sets

    def __len__(self) -> int:
        return len(self._rule_sets)


def read_query_directory(path: Path) -> Dict[str, str]:
    """Read ``<language>.scm`` files from a directory."""
    if not path.is_dir():
        log.warning("query_directory_missing", path=str(path))
        return {}
    return {
        entry.stem.lower(): entry.read_text(encoding="utf-8")
        for entry in sorted(path.iterdir())
        if entry.is_file() and entry.suffix == QUERY_SUFFIX
    }


def read_bundled_queries() -> Dict[str, str]:
    """Read the query files shipped inside the package."""
    root = resources.files(__package__).joinpath("queries")
    definitions: Dict[str, str] = {}
    for entry in sorted(root.iterdir(), key=lambda item: item.name):
        if entry.is_file() and entry.name.endswith(QUERY_SUFFIX):
            definitions[entry.name[: -len(QUERY_SUFFIX)].lower()] = entry.read_text(encoding="utf-8")
    return definitions


def collect_definitions(
    query_dirs: Sequence[Path] = (),
    enabled_languages: Optional[Sequence[str]] = None,
) -> Dict[str, str]:
    """Bundled queries overridden per language by each directory in order."""
    definitions = read_bundled_queries()
    for directory in query_dirs:
        definitions.update(read_query_directory(Path(directory)))
    if enabled_languages is not None:
        allowed = {language.lower() for language in enabled_languages}
        definitions = {key: value for key, value in definitions.items() if key in allowed}
    return definitions


@lru_cache(maxsize=1)
def default_registry() -> PatternRegistry:
    """Registry built once from bundled queries plus configured directories."""
    from ..settings import settings

    return PatternRegistry.from_definitions(
        collect_definitions(settings.query_dirs, settings.enabled_languages)
    )
