"""
Chunk extraction pipeline.

Matches per-language rules against a syntax tree and turns the surviving
captures into a nested, non-overlapping tree of tagged chunks.
"""

from .builder import ChunkBuilder
from .extractor import ChunkExtractor, guess_language, normalize_language
from .matcher import Matcher
from .models import CaptureMatch, Chunk, ChunkKind, ChunkTree, RuleMatch, capture_matches
from .normalizer import ChunkNormalizer, chunk_id

__all__ = [
    "CaptureMatch",
    "Chunk",
    "ChunkBuilder",
    "ChunkExtractor",
    "ChunkKind",
    "ChunkNormalizer",
    "ChunkTree",
    "Matcher",
    "RuleMatch",
    "capture_matches",
    "chunk_id",
    "guess_language",
    "normalize_language",
]
