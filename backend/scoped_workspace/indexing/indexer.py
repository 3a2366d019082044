"""Background embedding of workspace entries."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures

from scoped_workspace.core.config import Settings
from scoped_workspace.core.errors import NotFoundError
from scoped_workspace.core.logging import get_logger
from scoped_workspace.core.metrics import INDEX_JOBS
from scoped_workspace.embeddings.generator import EmbeddingGenerator
from scoped_workspace.scopes.identity import ScopeResolver
from scoped_workspace.scopes.paths import parse_canonical_key
from scoped_workspace.workspace.store import WorkspaceStore

logger = get_logger(__name__)


class BackgroundIndexer:
    """Embeds entries after they are written.

    ``submit`` only enqueues. Provider calls go through the generator and so
    share its rate limiter with interactive searches. Failures are logged and
    leave the entry without an embedding; nothing is raised to the writer.
    """

    def __init__(
        self,
        store: WorkspaceStore,
        generator: EmbeddingGenerator,
        scopes: ScopeResolver,
        settings: Settings,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.store = store
        self.generator = generator
        self.scopes = scopes
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=settings.indexer_workers,
            thread_name_prefix="scws-indexer",
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, key: str) -> Future:
        future = self.executor.submit(self.index_entry, key)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def index_entry(self, key: str) -> bool:
        """Embed the current content of ``key``; returns True when a vector was attached."""
        try:
            return self._index(key)
        except Exception:
            INDEX_JOBS.labels(status="failed").inc()
            logger.exception("Embedding failed for %s", key)
            return False

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every submitted job has finished; False on timeout."""
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=wait, cancel_futures=not wait)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _index(self, key: str) -> bool:
        try:
            entry = self.store.get_entry(key)
        except NotFoundError:
            INDEX_JOBS.labels(status="skipped").inc()
            logger.debug("No live entry to embed at %s", key)
            return False

        text = self.store.text_for_indexing(entry)
        if not text.strip():
            INDEX_JOBS.labels(status="skipped").inc()
            logger.debug("No text to embed at %s", key)
            return False

        scope = parse_canonical_key(key).scope
        tenant = self.scopes.tenant_for(scope)
        if tenant is None:
            INDEX_JOBS.labels(status="skipped").inc()
            logger.warning("No owning organization for %s; not embedding", scope, extra={"ctx_key": key})
            return False

        vector = self.generator.embed(text, tenant)
        if not self.store.attach_embedding(entry, vector):
            INDEX_JOBS.labels(status="stale").inc()
            logger.debug("Entry %s changed while embedding; newer write will re-index", key)
            return False

        INDEX_JOBS.labels(status="embedded").inc()
        logger.info("Document embedded", extra={"ctx_key": key, "ctx_tenant": tenant})
        return True


__all__ = ["BackgroundIndexer"]
