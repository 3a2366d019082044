"""Hashing utilities."""

from __future__ import annotations

import hashlib


def sha256_text(*parts: str) -> str:
    """Return hex digest over the given text parts joined by ':'."""
    return hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()


def sha256_bytes(data: bytes) -> str:
    """Return hex digest for bytes input."""
    return hashlib.sha256(data).hexdigest()
