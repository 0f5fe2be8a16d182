"""
Declarative per-language rule sets written in tree-sitter query syntax.
"""

from .predicates import Predicate, PredicateEvaluator, evaluate
from .registry import LanguageRuleSet, PatternRegistry, PatternRule, default_registry, load
from .taxonomy import ChunkKind

__all__ = [
    "ChunkKind",
    "LanguageRuleSet",
    "PatternRegistry",
    "PatternRule",
    "Predicate",
    "PredicateEvaluator",
    "default_registry",
    "evaluate",
    "load",
]
