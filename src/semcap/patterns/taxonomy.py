"""Fixed chunk-kind taxonomy and the capture naming conventions of rule files."""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


class ChunkKind(str, Enum):
    MODULE = "module"
    CLASS = "class"
    FUNCTION = "function"
    METHOD = "method"
    TYPE = "type"
    DOCUMENTATION = "documentation"


# Capture names recognised as tags, mapped to the chunk kind they produce.
TAG_CAPTURES: Dict[str, ChunkKind] = {
    "module": ChunkKind.MODULE,
    "definition.module": ChunkKind.MODULE,
    "definition.class": ChunkKind.CLASS,
    "definition.function": ChunkKind.FUNCTION,
    "definition.method": ChunkKind.METHOD,
    "definition.type": ChunkKind.TYPE,
    "definition.documentation": ChunkKind.DOCUMENTATION,
}

# Higher wins when several captures cover the exact same span.
TAG_SPECIFICITY: Dict[Optional[ChunkKind], int] = {
    ChunkKind.MODULE: 5,
    ChunkKind.CLASS: 4,
    ChunkKind.TYPE: 4,
    ChunkKind.METHOD: 4,
    ChunkKind.FUNCTION: 3,
    ChunkKind.DOCUMENTATION: 1,
    None: 0,
}

NAME_CAPTURE = "name"

# Nodes that may sit between a documentation run and the chunk it documents,
# such as attributes, decorators or type specs.
TRIVIA_CAPTURE = "trivia"


def is_internal_capture(name: str) -> bool:
    """Internal-only captures feed predicates and are never surfaced."""
    return name.startswith("_") or name == "ignore"


def specificity(kind: Optional[ChunkKind]) -> int:
    return TAG_SPECIFICITY[kind]
