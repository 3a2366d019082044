"""Embedding providers."""

from __future__ import annotations

import hashlib
import math
import re
from typing import Protocol

import requests

from scoped_workspace.core.config import Settings
from scoped_workspace.core.logging import get_logger

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class EmbeddingProvider(Protocol):
    """External embedding service. Errors of any kind propagate to the caller."""

    name: str
    dim: int
    requires_api_key: bool

    def embed(self, text: str, model: str, api_key: str | None = None) -> list[float]: ...


class HashedEmbeddingProvider:
    """Deterministic hashed bag-of-words vectors; needs no network or key."""

    name = "hashed"
    requires_api_key = False

    def __init__(self, dim: int = 384) -> None:
        self.dim = dim

    def embed(self, text: str, model: str, api_key: str | None = None) -> list[float]:
        vector = [0.0] * self.dim
        for token in _TOKEN_RE.findall(text.lower()):
            vector[_hash_token(token, self.dim)] += 1.0
        _normalize(vector)
        return vector


class OpenAIEmbeddingProvider:
    """Calls an OpenAI-compatible ``/embeddings`` endpoint."""

    name = "openai"
    requires_api_key = True

    def __init__(
        self,
        base_url: str,
        dim: int,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.dim = dim
        self.timeout = timeout
        self.session = session or requests.Session()

    def embed(self, text: str, model: str, api_key: str | None = None) -> list[float]:
        resp = self.session.post(
            f"{self.base_url}/embeddings",
            json={"model": model, "input": text, "encoding_format": "float"},
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
        vector = [float(value) for value in payload["data"][0]["embedding"]]
        if len(vector) != self.dim:
            raise ValueError(f"provider returned {len(vector)} dimensions, expected {self.dim}")
        return vector


def build_provider(settings: Settings) -> EmbeddingProvider:
    if settings.embedding_provider == "openai":
        return OpenAIEmbeddingProvider(
            base_url=settings.embedding_base_url,
            dim=settings.embedding_dim,
            timeout=settings.embedding_timeout_seconds,
        )
    return HashedEmbeddingProvider(dim=settings.embedding_dim)


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingProvider",
    "HashedEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "build_provider",
]
