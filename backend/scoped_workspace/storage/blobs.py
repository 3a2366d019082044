"""Local filesystem blob storage for file-reference entries."""

from __future__ import annotations

from pathlib import Path

from scoped_workspace.core.errors import NotFoundError, ValidationError
from scoped_workspace.core.logging import get_logger

logger = get_logger(__name__)


class LocalBlobStore:
    """Stores raw bytes under ``base_dir`` using the blob key as relative path."""

    name = "local"

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _full_path(self, key: str) -> Path:
        parts = [part for part in key.split("/") if part]
        if not parts or any(part in {".", ".."} for part in parts):
            raise ValidationError(f"invalid blob key: {key!r}")
        return self.base_dir.joinpath(*parts)

    def upload(self, key: str, data: bytes) -> None:
        path = self._full_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)
        logger.debug("Uploaded blob %s (%s bytes)", key, len(data))

    def download(self, key: str) -> bytes:
        path = self._full_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(key) from None

    def delete(self, key: str) -> None:
        path = self._full_path(key)
        path.unlink(missing_ok=True)
        logger.debug("Deleted blob %s", key)

    def exists(self, key: str) -> bool:
        return self._full_path(key).is_file()

    def list(self, prefix: str) -> list[str]:
        keys = []
        for path in self.base_dir.rglob("*"):
            if not path.is_file() or path.name.endswith(".part"):
                continue
            key = "/" + path.relative_to(self.base_dir).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)


__all__ = ["LocalBlobStore"]
