"""Process-wide service wiring."""

from __future__ import annotations

from dataclasses import dataclass

from scoped_workspace.core.config import Settings, get_settings
from scoped_workspace.core.logging import get_logger
from scoped_workspace.embeddings.breaker import CircuitBreaker
from scoped_workspace.embeddings.cache import EmbeddingCache
from scoped_workspace.embeddings.generator import EmbeddingGenerator
from scoped_workspace.embeddings.limiter import RateLimiter
from scoped_workspace.embeddings.providers import EmbeddingProvider, build_provider
from scoped_workspace.indexing.indexer import BackgroundIndexer
from scoped_workspace.scopes.identity import IdentityResolver, ScopeResolver
from scoped_workspace.search.aggregate import MultiScopeSearcher
from scoped_workspace.search.single import ScopeSearcher
from scoped_workspace.security.credentials import CredentialStore
from scoped_workspace.storage.backend import BlobStore, StorageBackend
from scoped_workspace.storage.blobs import LocalBlobStore
from scoped_workspace.storage.sqlite import SQLiteBackend
from scoped_workspace.utils.time import Clock, now_s
from scoped_workspace.workspace.store import WorkspaceStore

logger = get_logger(__name__)


@dataclass(slots=True)
class WorkspaceServices:
    """One shared instance of every component; build once per process."""

    settings: Settings
    backend: StorageBackend
    blobs: BlobStore | None
    scopes: ScopeResolver
    generator: EmbeddingGenerator
    store: WorkspaceStore
    indexer: BackgroundIndexer
    searcher: ScopeSearcher
    multi_searcher: MultiScopeSearcher

    @classmethod
    def build(
        cls,
        identity: IdentityResolver,
        settings: Settings | None = None,
        provider: EmbeddingProvider | None = None,
        backend: StorageBackend | None = None,
        blobs: BlobStore | None = None,
        clock: Clock = now_s,
    ) -> "WorkspaceServices":
        settings = settings or get_settings()
        backend = backend or SQLiteBackend.open(settings.db_path)
        blobs = blobs or LocalBlobStore(settings.blob_dir)
        provider = provider or build_provider(settings)
        scopes = ScopeResolver(identity)

        generator = EmbeddingGenerator(
            provider=provider,
            settings=settings,
            cache=EmbeddingCache(
                ttl=settings.embedding_cache_ttl_seconds,
                max_entries=settings.embedding_cache_max_entries,
                clock=clock,
            ),
            breaker=CircuitBreaker(
                threshold=settings.breaker_failure_threshold,
                cooldown=settings.breaker_cooldown_seconds,
                clock=clock,
            ),
            limiter=RateLimiter(settings.provider_max_concurrency),
            credentials=CredentialStore(settings),
        )
        store = WorkspaceStore(backend, settings, blobs=blobs, clock=clock)
        indexer = BackgroundIndexer(store, generator, scopes, settings)
        store.add_write_listener(indexer.submit)
        searcher = ScopeSearcher(backend, generator, settings, scopes=scopes, clock=clock)
        multi_searcher = MultiScopeSearcher(searcher, generator, identity, settings)
        logger.info(
            "Workspace services ready",
            extra={"ctx_backend": backend.name, "ctx_provider": provider.name},
        )
        return cls(
            settings=settings,
            backend=backend,
            blobs=blobs,
            scopes=scopes,
            generator=generator,
            store=store,
            indexer=indexer,
            searcher=searcher,
            multi_searcher=multi_searcher,
        )

    def close(self) -> None:
        self.indexer.shutdown(wait=True)
        self.backend.close()


__all__ = ["WorkspaceServices"]
