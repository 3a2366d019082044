"""Concurrent semantic search across many scopes."""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from scoped_workspace.core.config import Settings
from scoped_workspace.core.errors import PartialAggregateFailure, ValidationError
from scoped_workspace.core.logging import get_logger
from scoped_workspace.core.metrics import SEARCH_BRANCH_FAILURES, SEARCH_LATENCY
from scoped_workspace.embeddings.generator import EmbeddingGenerator
from scoped_workspace.models.dto import ALL, CallerContext, ScopeRequest, SearchQuery
from scoped_workspace.scopes.identity import IdentityResolver, ScopeResolver
from scoped_workspace.scopes.paths import ScopeRef, ScopeType
from scoped_workspace.search.single import ScopeSearcher, SearchResult

logger = get_logger(__name__)


@dataclass(slots=True)
class AggregateResult:
    results: list[SearchResult]
    failures: list[PartialAggregateFailure] = field(default_factory=list)
    scopes_searched: list[ScopeRef] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failures)


def merge_results(branches: Iterable[Sequence[SearchResult]], limit: int) -> list[SearchResult]:
    """Keep the best-scoring result per relative path, then rank and truncate.

    Ties keep whichever branch came first, so the order of ``branches``
    decides between equal scores.
    """
    best: dict[str, SearchResult] = {}
    for branch in branches:
        for result in branch:
            current = best.get(result.relative_path)
            if current is None or result.score > current.score:
                best[result.relative_path] = result
    ranked = sorted(best.values(), key=lambda item: item.score, reverse=True)
    return ranked[:limit]


class MultiScopeSearcher:
    """Fans one query out over several scopes.

    The query is embedded once. Each scope runs on a pool private to the call;
    a branch that raises or misses the deadline contributes nothing and is
    reported in ``AggregateResult.failures``. Only a failed query embedding
    raises.
    """

    def __init__(
        self,
        searcher: ScopeSearcher,
        generator: EmbeddingGenerator,
        identity: IdentityResolver,
        settings: Settings,
    ) -> None:
        self.searcher = searcher
        self.generator = generator
        self.identity = identity
        self.scopes = ScopeResolver(identity)
        self.settings = settings

    def resolve_scopes(self, request: ScopeRequest, caller: CallerContext) -> list[ScopeRef]:
        org = caller.organization_id
        resolved: list[ScopeRef] = []
        if request.include_organization:
            resolved.append(ScopeRef(ScopeType.ORGANIZATION, org))

        if request.agent_ids == ALL:
            agent_ids = self.identity.list_agents_for_organization(org)
        else:
            agent_ids = [
                self.scopes.resolve_scope(ScopeType.AGENT, identifier, org).owner_id
                for identifier in request.agent_ids or []
            ]
        resolved.extend(ScopeRef(ScopeType.AGENT, agent_id) for agent_id in agent_ids)

        if request.team_ids:
            if not caller.user_id:
                raise ValidationError("team scopes require a calling user")
            member_of = self.identity.list_teams_for_user(caller.user_id, org)
            if request.team_ids == ALL:
                team_ids = member_of
            else:
                team_ids = []
                for identifier in request.team_ids:
                    team_id = self.scopes.resolve_scope(ScopeType.TEAM, identifier, org).owner_id
                    if team_id in member_of:
                        team_ids.append(team_id)
                    else:
                        logger.warning(
                            "Skipping team %s: user is not a member",
                            team_id,
                            extra={"ctx_user_id": caller.user_id},
                        )
            resolved.extend(ScopeRef(ScopeType.TEAM, team_id) for team_id in team_ids)

        for identifier in request.session_ids or []:
            resolved.append(self.scopes.resolve_scope(ScopeType.SESSION, identifier, org))

        return list(dict.fromkeys(resolved))

    def search_multi_scope(
        self,
        query: "str | SearchQuery",
        request: ScopeRequest,
        caller: CallerContext,
        limit: int | None = None,
        min_score: float | None = None,
        timeout: float | None = None,
    ) -> AggregateResult:
        """Search every requested scope; explicit arguments override a SearchQuery's own limits.

        ``timeout`` covers the whole call: the query embedding, including any
        wait for a provider slot, and the branches that follow.
        """
        start_time = time.perf_counter()
        if isinstance(query, SearchQuery):
            limit = limit or query.limit
            min_score = query.min_score if min_score is None else min_score
            query = query.query
        limit = limit or self.settings.multi_scope_default_limit
        min_score = self.settings.default_min_score if min_score is None else min_score
        timeout = self.settings.search_timeout_seconds if timeout is None else timeout
        deadline = time.monotonic() + timeout

        scopes = self.resolve_scopes(request, caller)
        if not scopes:
            return AggregateResult(results=[])
        query_vector = self.generator.embed(
            query, caller.organization_id, timeout=max(0.0, deadline - time.monotonic())
        )

        # a branch that overruns keeps its worker, so each call gets its own pool
        executor = ThreadPoolExecutor(
            max_workers=min(len(scopes), self.settings.search_workers),
            thread_name_prefix="scws-search",
        )
        try:
            futures: dict[Future, ScopeRef] = {
                executor.submit(self.searcher.search, query_vector, scope, limit * 2, min_score): scope
                for scope in scopes
            }
            _, pending = wait(futures, timeout=max(0.0, deadline - time.monotonic()))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        failures: list[PartialAggregateFailure] = []
        branch_results: list[list[SearchResult]] = []
        for future, scope in futures.items():
            if future in pending:
                failures.append(self._failure(scope, "timeout", f"no result within {timeout}s"))
                continue
            try:
                branch_results.append(future.result())
            except Exception as exc:
                failures.append(self._failure(scope, "error", str(exc) or type(exc).__name__))

        merged = merge_results(branch_results, limit)
        SEARCH_LATENCY.labels(kind="multi").observe(time.perf_counter() - start_time)
        logger.info(
            "Multi-scope search completed",
            extra={
                "ctx_scope_count": len(scopes),
                "ctx_failed_scopes": len(failures),
                "ctx_total_results": len(merged),
            },
        )
        return AggregateResult(results=merged, failures=failures, scopes_searched=scopes)

    def _failure(self, scope: ScopeRef, reason: str, detail: str) -> PartialAggregateFailure:
        SEARCH_BRANCH_FAILURES.labels(reason=reason).inc()
        logger.warning(
            "Search branch %s failed (%s): %s",
            scope,
            reason,
            detail,
        )
        return PartialAggregateFailure(scope.scope_type.value, scope.owner_id, f"{reason}: {detail}")


__all__ = ["AggregateResult", "MultiScopeSearcher", "merge_results"]
