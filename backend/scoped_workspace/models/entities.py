"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

import base64
from dataclasses import asdict, dataclass, field
from typing import Any

import orjson

RECORD_FORMAT = 1


@dataclass(slots=True)
class FileReference:
    """Points at bytes held by the blob store rather than inline in the entry."""

    blob_key: str
    filename: str
    size: int
    content_type: str
    sha256: str


@dataclass(slots=True)
class EntryMetadata:
    content_type: str
    size: int
    created_at: float
    updated_at: float
    version: int = 1
    revision: str | None = None
    creation_context: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class WorkspaceEntry:
    key: str
    value: Any
    metadata: EntryMetadata
    expires_at: float | None = None
    embedding: list[float] | None = None
    embedded_at: float | None = None

    @property
    def is_file(self) -> bool:
        return isinstance(self.value, FileReference)

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_record(self) -> bytes:
        """Serialize to the stored JSON record; embeddings are stored separately."""
        if isinstance(self.value, FileReference):
            kind, payload = "file", asdict(self.value)
        elif isinstance(self.value, (bytes, bytearray)):
            kind, payload = "bytes", base64.b64encode(bytes(self.value)).decode("ascii")
        else:
            kind, payload = "value", self.value
        record = {
            "format": RECORD_FORMAT,
            "key": self.key,
            "kind": kind,
            "value": payload,
            "metadata": asdict(self.metadata),
            "expires_at": self.expires_at,
        }
        return orjson.dumps(record)

    @classmethod
    def from_record(cls, data: bytes) -> "WorkspaceEntry":
        record = orjson.loads(data)
        kind = record.get("kind", "value")
        payload = record.get("value")
        if kind == "file":
            value: Any = FileReference(**payload)
        elif kind == "bytes":
            value = base64.b64decode(payload)
        else:
            value = payload
        return cls(
            key=record["key"],
            value=value,
            metadata=EntryMetadata(**record["metadata"]),
            expires_at=record.get("expires_at"),
        )


__all__ = ["FileReference", "EntryMetadata", "WorkspaceEntry"]
