"""Storage collaborator interfaces."""

from __future__ import annotations

from typing import Any, Iterator, Mapping, Protocol, Sequence


class StorageBackend(Protocol):
    """Persists serialized entries keyed by canonical key and answers vector queries.

    ``metadata`` passed to ``put`` may carry ``expires_at`` (epoch seconds),
    ``version`` and ``revision``. A revision is unique to one write;
    ``attach_embedding(if_revision=...)`` only succeeds while it is current.
    Expired rows are invisible to ``list`` and ``vector_search``.
    """

    name: str

    def put(self, key: str, data: bytes, metadata: Mapping[str, Any]) -> None: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> bool: ...

    def exists(self, key: str) -> bool: ...

    def list(self, prefix: str, now: float | None = None) -> Iterator[str]: ...

    def attach_embedding(
        self,
        key: str,
        vector: Sequence[float],
        embedded_at: float,
        if_revision: str | None = None,
    ) -> bool: ...

    def get_embedding(self, key: str) -> tuple[list[float], float] | None: ...

    def vector_search(
        self,
        vector: Sequence[float],
        prefix: str,
        top_k: int,
        now: float | None = None,
    ) -> list[tuple[str, float]]: ...

    def purge_expired(self, now: float) -> int: ...

    def count(self) -> int: ...

    def close(self) -> None: ...


class BlobStore(Protocol):
    """Raw byte storage for file-reference entries."""

    name: str

    def upload(self, key: str, data: bytes) -> None: ...

    def download(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...

    def exists(self, key: str) -> bool: ...

    def list(self, prefix: str) -> list[str]: ...


__all__ = ["StorageBackend", "BlobStore"]
