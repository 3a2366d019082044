"""SQLite storage backend with an in-process cosine vector scan."""

from __future__ import annotations

import math
import sqlite3
import threading
import time
from array import array
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Sequence

from scoped_workspace.core.errors import NotFoundError
from scoped_workspace.core.logging import get_logger
from scoped_workspace.utils.ids import new_id

logger = get_logger(__name__)

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA temp_store=MEMORY;",
)

_LIST_PAGE_SIZE = 500


class SQLiteDatabase:
    """Thin wrapper around sqlite3 providing pragmatic defaults.

    One connection is shared between threads; every statement runs under a
    re-entrant lock.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path).expanduser() if str(db_path) != ":memory:" else Path(":memory:")
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> sqlite3.Connection:
        with self._lock:
            if self._connection is None:
                if str(self.db_path) != ":memory:":
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
                self._connection.row_factory = sqlite3.Row
                for pragma in DEFAULT_PRAGMAS:
                    self._connection.execute(pragma)
            return self._connection

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        with self._lock:
            return self.connect().execute(sql, params or [])

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        with self._lock:
            return self.connect().execute(sql, params or []).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            conn = self.connect()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def ensure_schema(self, schema_sql: str | None = None) -> None:
        if schema_sql is None:
            schema_path = Path(__file__).with_name("schema.sql")
            schema_sql = schema_path.read_text(encoding="utf-8")
        with self._lock:
            self.connect().executescript(schema_sql)


class SQLiteBackend:
    """StorageBackend persisted in a single ``entries`` table."""

    name = "sqlite"

    def __init__(self, database: SQLiteDatabase) -> None:
        self.db = database
        self.db.ensure_schema()

    @classmethod
    def open(cls, db_path: Path | str) -> "SQLiteBackend":
        return cls(SQLiteDatabase(db_path))

    def put(self, key: str, data: bytes, metadata: Mapping[str, Any]) -> None:
        with self.db.transaction() as cur:
            cur.execute(
                """
                INSERT INTO entries (key, data, version, revision, expires_at, embedding, embedding_dim, embedded_at, updated_at)
                VALUES (?, ?, ?, ?, ?, NULL, NULL, NULL, ?)
                ON CONFLICT(key) DO UPDATE SET
                  data = excluded.data,
                  version = excluded.version,
                  revision = excluded.revision,
                  expires_at = excluded.expires_at,
                  embedding = NULL,
                  embedding_dim = NULL,
                  embedded_at = NULL,
                  updated_at = excluded.updated_at
                """,
                [
                    key,
                    data,
                    int(metadata.get("version") or 1),
                    metadata.get("revision") or new_id(),
                    metadata.get("expires_at"),
                    time.time(),
                ],
            )

    def get(self, key: str) -> bytes:
        rows = self.db.query("SELECT data FROM entries WHERE key = ?", [key])
        if not rows:
            raise NotFoundError(key)
        return bytes(rows[0]["data"])

    def delete(self, key: str) -> bool:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM entries WHERE key = ?", [key])
            return cur.rowcount > 0

    def exists(self, key: str) -> bool:
        return bool(self.db.query("SELECT 1 FROM entries WHERE key = ?", [key]))

    def list(self, prefix: str, now: float | None = None) -> Iterator[str]:
        """Yield matching keys in key order, one page per query."""
        last_key = ""
        while True:
            params: list[Any] = [len(prefix), prefix, last_key]
            expiry_clause = ""
            if now is not None:
                expiry_clause = " AND (expires_at IS NULL OR expires_at > ?)"
                params.append(now)
            params.append(_LIST_PAGE_SIZE)
            rows = self.db.query(
                f"""
                SELECT key FROM entries
                WHERE substr(key, 1, ?) = ? AND key > ?{expiry_clause}
                ORDER BY key ASC
                LIMIT ?
                """,
                params,
            )
            if not rows:
                return
            for row in rows:
                yield row["key"]
            last_key = rows[-1]["key"]
            if len(rows) < _LIST_PAGE_SIZE:
                return

    def attach_embedding(
        self,
        key: str,
        vector: Sequence[float],
        embedded_at: float,
        if_revision: str | None = None,
    ) -> bool:
        """Store ``vector`` for ``key``; with ``if_revision`` only if that write is still current."""
        sql = "UPDATE entries SET embedding = ?, embedding_dim = ?, embedded_at = ? WHERE key = ?"
        params: list[Any] = [_to_bytes(vector), len(vector), embedded_at, key]
        if if_revision is not None:
            sql += " AND revision = ?"
            params.append(if_revision)
        with self.db.transaction() as cur:
            cur.execute(sql, params)
            return cur.rowcount > 0

    def get_embedding(self, key: str) -> tuple[list[float], float] | None:
        rows = self.db.query(
            "SELECT embedding, embedded_at FROM entries WHERE key = ? AND embedding IS NOT NULL",
            [key],
        )
        if not rows:
            return None
        return _from_bytes(rows[0]["embedding"]), float(rows[0]["embedded_at"])

    def vector_search(
        self,
        vector: Sequence[float],
        prefix: str,
        top_k: int,
        now: float | None = None,
    ) -> list[tuple[str, float]]:
        if top_k <= 0:
            return []
        now = time.time() if now is None else now
        rows = self.db.query(
            """
            SELECT key, embedding FROM entries
            WHERE embedding IS NOT NULL
              AND embedding_dim = ?
              AND substr(key, 1, ?) = ?
              AND (expires_at IS NULL OR expires_at > ?)
            """,
            [len(vector), len(prefix), prefix, now],
        )
        query_norm = _norm(vector)
        if query_norm == 0:
            return []
        scored = [(row["key"], _cosine(vector, query_norm, _from_bytes(row["embedding"]))) for row in rows]
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[:top_k]

    def purge_expired(self, now: float) -> int:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM entries WHERE expires_at IS NOT NULL AND expires_at <= ?", [now])
            removed = cur.rowcount
        if removed:
            logger.info("Purged %s expired entries", removed)
        return removed

    def count(self) -> int:
        rows = self.db.query("SELECT COUNT(*) AS count FROM entries")
        return int(rows[0]["count"]) if rows else 0

    def close(self) -> None:
        self.db.close()


def _to_bytes(vector: Iterable[float]) -> bytes:
    return array("f", vector).tobytes()


def _from_bytes(data: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(bytes(data))
    return list(floats)


def _norm(vector: Sequence[float]) -> float:
    return math.sqrt(sum(value * value for value in vector))


def _cosine(query: Sequence[float], query_norm: float, other: Sequence[float]) -> float:
    other_norm = _norm(other)
    if other_norm == 0:
        return 0.0
    return sum(x * y for x, y in zip(query, other)) / (query_norm * other_norm)


__all__ = ["SQLiteDatabase", "SQLiteBackend"]
