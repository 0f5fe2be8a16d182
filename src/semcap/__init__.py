"""
semcap: rule-driven extraction of semantic code chunks from syntax trees.
"""

from .chunking import Chunk, ChunkExtractor, ChunkKind, ChunkTree
from .exceptions import (
    ConfigError,
    ExtractionCancelled,
    MatchError,
    PartialExtractionError,
    SemcapError,
)
from .patterns import PatternRegistry, load
from .version import __version__

__all__ = [
    "Chunk",
    "ChunkExtractor",
    "ChunkKind",
    "ChunkTree",
    "ConfigError",
    "ExtractionCancelled",
    "MatchError",
    "PartialExtractionError",
    "PatternRegistry",
    "SemcapError",
    "__version__",
    "load",
]
