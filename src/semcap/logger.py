"""
Logging setup for semcap.

Library modules only ever call ``get_logger`` and emit snake_case events with
keyword context. Applications embedding the engine pick the output once,
either with ``configure_logging`` or from the ``[logging]`` settings section
via ``configure_from_settings``; every event is routed through the standard
``logging`` module so foreign handlers keep working.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import structlog
from structlog.stdlib import BoundLogger, ProcessorFormatter
from structlog.typing import Processor

LevelLike = Union[int, str]

_PRE_CHAIN: tuple[Processor, ...] = (
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
)


def _coerce_level(level: LevelLike) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=False)


def _configure_structlog(min_level: int) -> None:
    """Bridge structlog into the standard logging framework."""
    structlog.configure(
        processors=_PRE_CHAIN + (ProcessorFormatter.wrap_for_formatter,),
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _formatter(json_output: bool) -> ProcessorFormatter:
    return ProcessorFormatter(processor=_renderer(json_output), foreign_pre_chain=_PRE_CHAIN)


def configure_logging(
    level: LevelLike = logging.INFO,
    enable_console: bool = True,
    console_level: Optional[LevelLike] = None,
    json_output: bool = False,
) -> None:
    """
    Configure global logging.

    Parameters
    ----------
    level:
        Base level for the root logger, as a number or a name like ``"DEBUG"``.
    enable_console:
        When False, nothing is written to stderr.
    console_level:
        Threshold for the console handler. Defaults to ``level``.
    json_output:
        Render one JSON object per event instead of the console layout,
        for batch runs whose output is collected by a log shipper.
    """
    numeric_level = _coerce_level(level)
    _configure_structlog(numeric_level)
    logging.captureWarnings(True)

    handler: logging.Handler
    if enable_console:
        handler = logging.StreamHandler()
        handler.setLevel(_coerce_level(console_level) if console_level is not None else numeric_level)
        handler.setFormatter(_formatter(json_output))
    else:
        handler = logging.NullHandler()

    logging.basicConfig(level=numeric_level, handlers=[handler], force=True)


def configure_from_settings(enable_console: bool = True, json_output: bool = False) -> None:
    """Configure logging with the level from the ``[logging]`` settings section."""
    from .settings import settings

    configure_logging(settings.log_level, enable_console=enable_console, json_output=json_output)


def get_logger(name: Optional[str] = None) -> BoundLogger:
    """Retrieve a structlog logger with the provided name."""
    return structlog.get_logger(name)


def redirect_logging_to_file(path: Path, level: LevelLike = logging.INFO, json_output: bool = False) -> None:
    """Send all log output to ``path`` instead of the current handlers."""
    numeric_level = _coerce_level(level)
    _configure_structlog(numeric_level)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    handler.setFormatter(_formatter(json_output))
    root.addHandler(handler)
    root.setLevel(numeric_level)
