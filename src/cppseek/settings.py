"""
Centralized engine settings.

Values come from an optional TOML file, then ``CPPSEEK_*`` environment
variables. The same settings object is shared by the chunking service and
the CLI.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore[no-redef]

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Project-wide settings loaded from env or .env files."""

    model_config = SettingsConfigDict(
        env_prefix="CPPSEEK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    chunk_size: int = Field(default=500, ge=1)
    chunk_overlap: int = Field(default=50, ge=0)
    chunk_smart_boundaries: bool = True
    chunk_preserve_formatting: bool = True
    chunk_max_chunks: int = Field(default=1000, ge=1)
    chunk_search_radius: int = Field(default=100, ge=0)

    overlap_min_size: int = Field(default=25, ge=0)
    overlap_max_size: int = Field(default=100, ge=0)
    overlap_adaptive_mode: bool = True
    overlap_preserve_functions: bool = True
    overlap_preserve_comments: bool = True
    overlap_window_radius: int = Field(default=200, ge=0)

    tokenizer_encoding: str = "cl100k_base"
    tokenizer_sample_chars: int = Field(default=1024, ge=1)
    tokenizer_cache_size: int = Field(default=4096, ge=1)

    boundary_cache_size: int = Field(default=256, ge=1)

    chunk_concurrency: int = Field(default=4, ge=1)

    @model_validator(mode="after")
    def _check_overlap_bounds(self) -> "AppSettings":
        if self.overlap_max_size < self.overlap_min_size:
            raise ValueError("overlap_max_size must be >= overlap_min_size")
        return self


_CONFIG_ENV_VAR = "CPPSEEK_CONFIG_PATH"
_DEFAULT_CONFIG_FILE = Path("cppseek_settings.toml")

# TOML section -> {key in section: AppSettings field}
_SECTION_FIELDS: Dict[str, Dict[str, str]] = {
    "chunking": {
        "chunk_size": "chunk_size",
        "overlap_size": "chunk_overlap",
        "smart_boundaries": "chunk_smart_boundaries",
        "preserve_formatting": "chunk_preserve_formatting",
        "max_chunks": "chunk_max_chunks",
        "search_radius": "chunk_search_radius",
    },
    "overlap": {
        "min_size": "overlap_min_size",
        "max_size": "overlap_max_size",
        "adaptive_mode": "overlap_adaptive_mode",
        "preserve_functions": "overlap_preserve_functions",
        "preserve_comments": "overlap_preserve_comments",
        "window_radius": "overlap_window_radius",
    },
    "tokenizer": {
        "encoding": "tokenizer_encoding",
        "sample_chars": "tokenizer_sample_chars",
        "cache_size": "tokenizer_cache_size",
    },
    "boundaries": {
        "cache_size": "boundary_cache_size",
    },
    "service": {
        "concurrency": "chunk_concurrency",
    },
}


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


def _flatten_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Translate grouped TOML sections into AppSettings keyword arguments."""
    data: Dict[str, Any] = {}
    for section_name, fields in _SECTION_FIELDS.items():
        section = raw.get(section_name, {})
        for key, field_name in fields.items():
            if key in section:
                data[field_name] = section[key]
    return data


def _apply_environment_overrides(raw: Dict[str, Any]) -> None:
    env_section = raw.get("environment", {})
    cache_dir = env_section.get("tiktoken_cache_dir")
    if cache_dir:
        # Read by tiktoken for its downloaded BPE files.
        os.environ["TIKTOKEN_CACHE_DIR"] = str(Path(cache_dir).expanduser())


def _drop_env_overridden(data: Dict[str, Any]) -> Dict[str, Any]:
    # Init kwargs outrank env vars in pydantic-settings; keep env on top.
    prefix = AppSettings.model_config.get("env_prefix", "")
    return {
        key: value
        for key, value in data.items()
        if f"{prefix}{key}".upper() not in os.environ
    }


def load_settings() -> AppSettings:
    raw = _load_toml_config()
    _apply_environment_overrides(raw)
    flattened = _drop_env_overridden(_flatten_config(raw))
    return AppSettings(**flattened)


settings = load_settings()
