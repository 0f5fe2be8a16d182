"""
Centralized engine settings.

The configuration is shared by the registry loader, the per-file extractor,
and the concurrent extraction service.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore[no-redef]

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Project-wide settings loaded from env or .env files."""

    model_config = SettingsConfigDict(
        env_prefix="SEMCAP_",
        env_nested_delimiter="__",
        extra="allow",
    )

    query_dirs: List[Path] = []
    enabled_languages: Optional[List[str]] = None
    extension_overrides: Dict[str, str] = {}
    max_workers: int = Field(4, ge=1)
    file_timeout: Optional[float] = Field(30.0, ge=0)
    max_file_bytes: int = Field(2_000_000, gt=0)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()


_CONFIG_ENV_VAR = "SEMCAP_CONFIG_PATH"
_DEFAULT_CONFIG_FILE = Path("semcap_settings.toml")


def _load_toml_config() -> Dict[str, Any]:
    """Load configuration from the primary TOML file on disk."""
    candidates: List[Path] = []
    config_override = os.getenv(_CONFIG_ENV_VAR)
    if config_override:
        candidates.append(Path(config_override))
    candidates.append(_DEFAULT_CONFIG_FILE)

    for candidate in candidates:
        if candidate.is_file():
            with candidate.open("rb") as handle:
                return tomllib.load(handle)
    return {}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def _flatten_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Translate grouped TOML sections into AppSettings keyword arguments."""
    data: Dict[str, Any] = {}

    queries = raw.get("queries", {})
    if "dirs" in queries:
        data["query_dirs"] = [Path(entry) for entry in queries["dirs"]]
    if "languages" in queries:
        languages = queries["languages"]
        data["enabled_languages"] = [lang.lower() for lang in languages] if languages else None

    extraction = raw.get("extraction", {})
    if "max_workers" in extraction:
        data["max_workers"] = int(extraction["max_workers"])
    if "file_timeout" in extraction:
        timeout = _blank_to_none(extraction["file_timeout"])
        data["file_timeout"] = float(timeout) if timeout is not None and timeout != 0 else None
    if "max_file_bytes" in extraction:
        data["max_file_bytes"] = int(extraction["max_file_bytes"])

    extensions = raw.get("extensions", {})
    if extensions:
        data["extension_overrides"] = {
            (suffix if suffix.startswith(".") else f".{suffix}").lower(): language.lower()
            for suffix, language in extensions.items()
        }

    logging_section = raw.get("logging", {})
    if "level" in logging_section:
        data["log_level"] = str(logging_section["level"]).upper()

    return data


def load_settings() -> AppSettings:
    raw = _load_toml_config()
    flattened = _flatten_config(raw)
    return AppSettings(**flattened)


settings = load_settings()
