"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "SCWS_"
DEFAULT_CONFIG_PATH = Path("~/.config/scoped-workspace/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "blob_dir"): "blob_dir",
    ("embeddings", "provider"): "embedding_provider",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "max_chars"): "embedding_max_chars",
    ("embeddings", "base_url"): "embedding_base_url",
    ("embeddings", "timeout_seconds"): "embedding_timeout_seconds",
    ("embeddings", "cache_ttl_seconds"): "embedding_cache_ttl_seconds",
    ("embeddings", "cache_max_entries"): "embedding_cache_max_entries",
    ("embeddings", "max_concurrency"): "provider_max_concurrency",
    ("breaker", "failure_threshold"): "breaker_failure_threshold",
    ("breaker", "cooldown_seconds"): "breaker_cooldown_seconds",
    ("workspace", "session_ttl_seconds"): "session_ttl_seconds",
    ("workspace", "max_value_bytes"): "max_value_bytes",
    ("search", "default_limit"): "default_search_limit",
    ("search", "min_score"): "default_min_score",
    ("search", "multi_scope_limit"): "multi_scope_default_limit",
    ("search", "timeout_seconds"): "search_timeout_seconds",
    ("search", "workers"): "search_workers",
    ("indexing", "workers"): "indexer_workers",
    ("credentials", "api_key"): "provider_api_key",
    ("credentials", "api_keys"): "provider_api_keys",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".scoped-workspace" / "workspace.db")
    blob_dir: Path = Field(default=Path.home() / ".scoped-workspace" / "blobs")

    embedding_provider: str = "hashed"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = Field(default=1536, ge=1)
    embedding_max_chars: int = Field(default=8000, ge=1)
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_timeout_seconds: float = Field(default=30.0, gt=0)
    embedding_cache_ttl_seconds: float = Field(default=3600.0, gt=0)
    embedding_cache_max_entries: int = Field(default=1000, ge=1)
    provider_max_concurrency: int = Field(default=100, ge=1)

    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_cooldown_seconds: float = Field(default=60.0, gt=0)

    session_ttl_seconds: float = Field(default=86400.0, ge=0)
    max_value_bytes: int = Field(default=16 * 1024 * 1024, ge=1)

    default_search_limit: int = Field(default=10, ge=1)
    default_min_score: float = Field(default=0.7, ge=-1.0, le=1.0)
    multi_scope_default_limit: int = Field(default=20, ge=1)
    search_timeout_seconds: float = Field(default=10.0, gt=0)
    search_workers: int = Field(default=8, ge=1)
    indexer_workers: int = Field(default=4, ge=1)

    provider_api_key: str | None = None
    provider_api_keys: dict[str, str] = Field(default_factory=dict)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "blob_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("path settings must be a path or string")

    @field_validator("embedding_provider")
    @classmethod
    def _check_provider(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"hashed", "openai"}:
            raise ValueError(f"unknown embedding provider: {value}")
        return normalized

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        mapped_key = _YAML_KEY_MAP.get(next_prefix)
        if mapped_key:
            # api_keys is itself a mapping, so match before recursing
            flat[mapped_key] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with SCWS_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields and field_name != "provider_api_keys":
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
