"""Workspace store: scoped key/value persistence over a storage backend."""

from __future__ import annotations

import posixpath
import re
from typing import Any, Callable, Iterator, Mapping

from scoped_workspace.core.config import Settings
from scoped_workspace.core.errors import ConfigurationError, NotFoundError, ValidationError
from scoped_workspace.core.logging import get_logger
from scoped_workspace.core.metrics import WORKSPACE_OPS
from scoped_workspace.models.entities import EntryMetadata, FileReference, WorkspaceEntry
from scoped_workspace.scopes.paths import ScopePath, ScopeRef, coerce_key, coerce_prefix, parse_canonical_key
from scoped_workspace.storage.backend import BlobStore, StorageBackend
from scoped_workspace.utils.hashing import sha256_bytes
from scoped_workspace.utils.ids import new_id
from scoped_workspace.utils.text import to_text
from scoped_workspace.utils.time import Clock, now_s

logger = get_logger(__name__)

WriteListener = Callable[[str], None]

_MIME_TYPES = {
    ".json": "application/json",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".mp3": "audio/mpeg",
    ".mp4": "video/mp4",
    ".pdf": "application/pdf",
    ".csv": "text/csv",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9.\-]")


def detect_content_type(path: str, value: Any = None) -> str:
    """Guess a content type from the path extension, then from the value."""
    ext = posixpath.splitext(path)[1].lower()
    if ext in _MIME_TYPES:
        return _MIME_TYPES[ext]
    if isinstance(value, (bytes, bytearray)):
        return "application/octet-stream"
    if isinstance(value, str):
        return "text/plain"
    return "application/json"


class WorkspaceStore:
    """Scoped get/set/list/delete over canonical keys.

    Expiry is lazy: expired entries stay in the backend until ``purge_expired``
    but every read treats them as absent.
    """

    def __init__(
        self,
        backend: StorageBackend,
        settings: Settings,
        blobs: BlobStore | None = None,
        clock: Clock = now_s,
    ) -> None:
        self.backend = backend
        self.settings = settings
        self.blobs = blobs
        self.clock = clock
        self._listeners: list[WriteListener] = []

    def add_write_listener(self, listener: WriteListener) -> None:
        self._listeners.append(listener)

    # Core operations ----------------------------------------------------

    def set(
        self,
        key: "str | ScopePath",
        value: Any,
        metadata: Mapping[str, Any] | None = None,
        ttl: float | None = None,
        creation_context: Mapping[str, Any] | None = None,
    ) -> WorkspaceEntry:
        """Upsert ``value`` at ``key`` and schedule it for indexing.

        ``ttl`` is in seconds; ``None`` applies the scope default (sessions
        expire, other scopes do not) and ``0`` disables expiry.
        """
        canonical = coerce_key(key)
        entry = self._write(canonical, value, metadata, ttl, creation_context)
        WORKSPACE_OPS.labels(operation="set").inc()
        self._notify(canonical)
        return entry

    def get(self, key: "str | ScopePath") -> Any:
        return self.get_entry(key).value

    def get_entry(self, key: "str | ScopePath") -> WorkspaceEntry:
        canonical = coerce_key(key)
        WORKSPACE_OPS.labels(operation="get").inc()
        entry = self._load(canonical)
        if entry is None:
            raise NotFoundError(canonical)
        embedded = self.backend.get_embedding(canonical)
        if embedded is not None:
            entry.embedding, entry.embedded_at = embedded
        return entry

    def exists(self, key: "str | ScopePath") -> bool:
        return self._load(coerce_key(key)) is not None

    def list(self, prefix: "str | ScopeRef | ScopePath" = "/") -> Iterator[str]:
        """Lazily enumerate live keys under ``prefix``; each call starts a fresh scan."""
        WORKSPACE_OPS.labels(operation="list").inc()
        return self.backend.list(coerce_prefix(prefix), now=self.clock())

    def delete(self, key: "str | ScopePath") -> bool:
        """Remove ``key``; True only if a live entry was removed."""
        canonical = coerce_key(key)
        WORKSPACE_OPS.labels(operation="delete").inc()
        return self._remove(canonical)

    def clear(self, prefix: "str | ScopeRef | ScopePath", confirm: bool = False) -> int:
        """Delete every key under ``prefix``. Requires ``confirm=True``."""
        if not confirm:
            raise ValidationError("clear requires confirm=True")
        resolved = coerce_prefix(prefix)
        keys = list(self.backend.list(resolved))
        removed = sum(1 for key in keys if self._remove(key))
        WORKSPACE_OPS.labels(operation="clear").inc()
        logger.info("Cleared %s entries under %s", removed, resolved)
        return removed

    def export(self, prefix: "str | ScopeRef | ScopePath" = "/") -> dict[str, Any]:
        data: dict[str, Any] = {}
        for key in self.list(prefix):
            entry = self._load(key)
            if entry is not None:
                data[key] = entry.value
        return data

    def import_entries(self, data: Mapping[str, Any]) -> int:
        count = 0
        for key, value in data.items():
            self.set(key, value)
            count += 1
        logger.info("Imported %s entries", count)
        return count

    def move(self, source: "str | ScopePath", destination: "str | ScopePath") -> WorkspaceEntry:
        """Move an entry; the destination is overwritten if present."""
        src, dst = coerce_key(source), coerce_key(destination)
        entry = self._load(src)
        if entry is None:
            raise NotFoundError(src)
        if src == dst:
            return entry
        moved = self._write(dst, entry.value, _carry_metadata(entry), None, entry.metadata.creation_context)
        # the blob now belongs to the destination entry
        self._remove(src, keep_blob=True)
        WORKSPACE_OPS.labels(operation="move").inc()
        self._notify(dst)
        return moved

    def copy(self, source: "str | ScopePath", destination: "str | ScopePath") -> WorkspaceEntry:
        src, dst = coerce_key(source), coerce_key(destination)
        entry = self._load(src)
        if entry is None:
            raise NotFoundError(src)
        if src == dst:
            return entry
        value = entry.value
        if isinstance(value, FileReference):
            value = self._copy_blob(dst, value)
        copied = self._write(dst, value, _carry_metadata(entry), None, entry.metadata.creation_context)
        WORKSPACE_OPS.labels(operation="copy").inc()
        self._notify(dst)
        return copied

    # Files --------------------------------------------------------------

    def put_file(
        self,
        key: "str | ScopePath",
        filename: str,
        data: bytes,
        content_type: str | None = None,
        ttl: float | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> WorkspaceEntry:
        """Store ``data`` in the blob store and a file reference at ``key``."""
        blobs = self._require_blobs()
        canonical = coerce_key(key)
        location = parse_canonical_key(canonical)
        safe_name = _UNSAFE_FILENAME.sub("_", filename) or "file"
        reference = FileReference(
            blob_key=f"/files{location.scope.prefix}{new_id()}/{safe_name}",
            filename=filename,
            size=len(data),
            content_type=content_type or detect_content_type(filename, data),
            sha256=sha256_bytes(data),
        )
        blobs.upload(reference.blob_key, data)
        merged = dict(metadata or {})
        merged["content_type"] = reference.content_type
        entry = self._write(canonical, reference, merged, ttl, None)
        logger.info("Stored file %s at %s (%s bytes)", filename, canonical, len(data))
        WORKSPACE_OPS.labels(operation="put_file").inc()
        self._notify(canonical)
        return entry

    def read_file(self, key: "str | ScopePath") -> bytes:
        entry = self.get_entry(key)
        if not entry.is_file:
            raise ValidationError(f"{entry.key} is not a file entry")
        return self._require_blobs().download(entry.value.blob_key)

    # Maintenance --------------------------------------------------------

    def purge_expired(self) -> int:
        """Physically remove expired entries and their blobs."""
        now = self.clock()
        if self.blobs is None:
            return self.backend.purge_expired(now)
        removed = 0
        for key in list(self.backend.list("/")):
            entry = self._load(key, include_expired=True)
            if entry is not None and entry.is_expired(now):
                self._discard(entry)
                removed += 1
        if removed:
            logger.info("Purged %s expired entries", removed)
        return removed

    def info(self) -> dict[str, Any]:
        return {
            "entries": self.backend.count(),
            "backend": self.backend.name,
            "blobs": self.blobs.name if self.blobs is not None else None,
        }

    def text_for_indexing(self, entry: WorkspaceEntry) -> str:
        """Text representation used for embedding; files contribute their name and type."""
        if isinstance(entry.value, FileReference):
            return f"{entry.value.filename} ({entry.value.content_type})"
        if isinstance(entry.value, (bytes, bytearray)):
            return ""
        return to_text(entry.value)

    def attach_embedding(self, entry: WorkspaceEntry, vector: list[float]) -> bool:
        """Attach ``vector`` only while the write ``entry`` was loaded from is still current."""
        return self.backend.attach_embedding(
            entry.key,
            vector,
            embedded_at=self.clock(),
            if_revision=entry.metadata.revision,
        )

    # Internal helpers ---------------------------------------------------

    def _write(
        self,
        canonical: str,
        value: Any,
        metadata: Mapping[str, Any] | None,
        ttl: float | None,
        creation_context: Mapping[str, Any] | None,
    ) -> WorkspaceEntry:
        location = parse_canonical_key(canonical)
        size = _payload_size(value)
        if size > self.settings.max_value_bytes:
            raise ValidationError(f"value size {size} exceeds limit of {self.settings.max_value_bytes} bytes")

        now = self.clock()
        extra = dict(metadata or {})
        content_type = extra.pop("content_type", None) or detect_content_type(location.relative_path, value)
        previous = self._load(canonical, include_expired=True)
        existing = previous if previous is not None and not previous.is_expired(now) else None
        entry = WorkspaceEntry(
            key=canonical,
            value=value,
            metadata=EntryMetadata(
                content_type=content_type,
                size=size,
                created_at=existing.metadata.created_at if existing else now,
                updated_at=now,
                version=existing.metadata.version + 1 if existing else 1,
                revision=new_id(),
                creation_context=dict(creation_context) if creation_context else None,
                extra=extra,
            ),
            expires_at=self._expiry_for(location, ttl, now),
        )
        self.backend.put(
            canonical,
            entry.to_record(),
            {
                "expires_at": entry.expires_at,
                "version": entry.metadata.version,
                "revision": entry.metadata.revision,
            },
        )
        if previous is not None and isinstance(previous.value, FileReference) and self.blobs is not None:
            replaced = not isinstance(value, FileReference) or value.blob_key != previous.value.blob_key
            if replaced:
                self.blobs.delete(previous.value.blob_key)
        logger.debug("%s %s (%s bytes)", "Updated" if existing else "Created", canonical, size)
        return entry

    def _expiry_for(self, location: ScopePath, ttl: float | None, now: float) -> float | None:
        if ttl is None:
            if not location.scope_type.ephemeral:
                return None
            ttl = self.settings.session_ttl_seconds
        if ttl < 0:
            raise ValidationError("ttl must not be negative")
        return now + ttl if ttl else None

    def _load(self, canonical: str, include_expired: bool = False) -> WorkspaceEntry | None:
        try:
            data = self.backend.get(canonical)
        except NotFoundError:
            return None
        entry = WorkspaceEntry.from_record(data)
        if not include_expired and entry.is_expired(self.clock()):
            return None
        return entry

    def _remove(self, canonical: str, keep_blob: bool = False) -> bool:
        entry = self._load(canonical, include_expired=True)
        if entry is None:
            return False
        live = not entry.is_expired(self.clock())
        self._discard(entry, keep_blob=keep_blob)
        logger.debug("Deleted %s", canonical)
        return live

    def _discard(self, entry: WorkspaceEntry, keep_blob: bool = False) -> None:
        self.backend.delete(entry.key)
        if not keep_blob and isinstance(entry.value, FileReference) and self.blobs is not None:
            self.blobs.delete(entry.value.blob_key)

    def _copy_blob(self, destination: str, reference: FileReference) -> FileReference:
        blobs = self._require_blobs()
        location = parse_canonical_key(destination)
        data = blobs.download(reference.blob_key)
        blob_key = f"/files{location.scope.prefix}{new_id()}/{posixpath.basename(reference.blob_key)}"
        blobs.upload(blob_key, data)
        return FileReference(
            blob_key=blob_key,
            filename=reference.filename,
            size=reference.size,
            content_type=reference.content_type,
            sha256=reference.sha256,
        )

    def _require_blobs(self) -> BlobStore:
        if self.blobs is None:
            raise ConfigurationError("no blob store configured for file entries")
        return self.blobs

    def _notify(self, canonical: str) -> None:
        for listener in self._listeners:
            try:
                listener(canonical)
            except Exception:
                logger.exception("Write listener failed for %s", canonical)


def _payload_size(value: Any) -> int:
    if isinstance(value, FileReference):
        return value.size
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    return len(to_text(value).encode("utf-8"))


def _carry_metadata(entry: WorkspaceEntry) -> dict[str, Any]:
    carried = dict(entry.metadata.extra)
    carried["content_type"] = entry.metadata.content_type
    return carried


__all__ = ["WorkspaceStore", "detect_content_type"]
