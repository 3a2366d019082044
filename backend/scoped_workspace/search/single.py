"""Semantic search within a single scope."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Sequence

from scoped_workspace.core.config import Settings
from scoped_workspace.core.errors import NotFoundError
from scoped_workspace.core.logging import get_logger
from scoped_workspace.core.metrics import SEARCH_LATENCY
from scoped_workspace.embeddings.generator import EmbeddingGenerator
from scoped_workspace.models.entities import WorkspaceEntry
from scoped_workspace.scopes.identity import ScopeResolver
from scoped_workspace.scopes.paths import ScopeRef, ScopeType, parse_canonical_key
from scoped_workspace.storage.backend import StorageBackend
from scoped_workspace.utils.time import Clock, now_s

logger = get_logger(__name__)


@dataclass(slots=True)
class SearchResult:
    relative_path: str
    score: float
    scope_type: ScopeType
    owner_id: str
    metadata: dict[str, Any] = field(default_factory=dict)


class ScopeSearcher:
    """Ranks embedded, unexpired entries of one scope against a query vector."""

    def __init__(
        self,
        backend: StorageBackend,
        generator: EmbeddingGenerator,
        settings: Settings,
        scopes: ScopeResolver | None = None,
        clock: Clock = now_s,
    ) -> None:
        self.backend = backend
        self.generator = generator
        self.settings = settings
        self.scopes = scopes
        self.clock = clock

    def search(
        self,
        query_vector: Sequence[float],
        scope: ScopeRef,
        limit: int,
        min_score: float,
    ) -> list[SearchResult]:
        start_time = time.perf_counter()
        now = self.clock()
        # extra candidates cover entries deleted or expired since the scan
        hits = self.backend.vector_search(query_vector, scope.prefix, top_k=limit * 2, now=now)
        results: list[SearchResult] = []
        for key, score in hits:
            if score < min_score or len(results) >= limit:
                break
            entry = self._load(key, now)
            if entry is None:
                continue
            location = parse_canonical_key(key)
            results.append(
                SearchResult(
                    relative_path=location.relative_path,
                    score=score,
                    scope_type=location.scope_type,
                    owner_id=location.owner_id,
                    metadata={
                        "content_type": entry.metadata.content_type,
                        "size": entry.metadata.size,
                        "created_at": entry.metadata.created_at,
                        "updated_at": entry.metadata.updated_at,
                    },
                )
            )
        SEARCH_LATENCY.labels(kind="single").observe(time.perf_counter() - start_time)
        return results

    def search_text(
        self,
        query: str,
        scope: ScopeRef,
        tenant: str | None = None,
        limit: int | None = None,
        min_score: float | None = None,
    ) -> list[SearchResult]:
        """Embed ``query`` on behalf of the scope's tenant and search that scope."""
        if tenant is None and self.scopes is not None:
            tenant = self.scopes.tenant_for(scope)
        vector = self.generator.embed(query, tenant)
        return self.search(
            vector,
            scope,
            limit=limit or self.settings.default_search_limit,
            min_score=self.settings.default_min_score if min_score is None else min_score,
        )

    def _load(self, key: str, now: float) -> WorkspaceEntry | None:
        try:
            entry = WorkspaceEntry.from_record(self.backend.get(key))
        except NotFoundError:
            return None
        if entry.is_expired(now):
            return None
        return entry


__all__ = ["ScopeSearcher", "SearchResult"]
