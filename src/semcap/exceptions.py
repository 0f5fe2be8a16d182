"""Exception hierarchy shared by the extraction pipeline."""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ConfigError",
    "ExtractionCancelled",
    "MatchError",
    "PartialExtractionError",
    "SemcapError",
]


class SemcapError(Exception):
    """Base exception for all semcap errors."""


class ConfigError(SemcapError):
    """Raised when a language's rule definitions are malformed or inconsistent."""

    def __init__(
        self,
        message: str,
        language: Optional[str] = None,
        position: Optional[int] = None,
    ) -> None:
        self.message = message
        self.language = language
        self.position = position
        details = []
        if language:
            details.append(f"language={language}")
        if position is not None:
            details.append(f"offset={position}")
        suffix = f" ({', '.join(details)})" if details else ""
        super().__init__(f"{message}{suffix}")


class MatchError(SemcapError):
    """A single match that could not become a chunk.

    Instances are recorded on the resulting ``ChunkTree`` rather than raised;
    the rest of the file is still processed.
    """

    def __init__(
        self,
        reason: str,
        rule_id: Optional[int] = None,
        capture: Optional[str] = None,
        span: Optional[tuple[int, int]] = None,
    ) -> None:
        self.reason = reason
        self.rule_id = rule_id
        self.capture = capture
        self.span = span
        super().__init__(reason)

    def __repr__(self) -> str:
        return (
            f"MatchError(reason={self.reason!r}, rule_id={self.rule_id!r}, "
            f"capture={self.capture!r}, span={self.span!r})"
        )


class PartialExtractionError(SemcapError):
    """No syntax tree was available for a file, so zero chunks were extracted."""


class ExtractionCancelled(SemcapError):
    """Raised inside a worker when the caller cancels or times out a file."""
