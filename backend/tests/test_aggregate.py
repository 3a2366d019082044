"""Tests for multi-scope search: scope resolution, fan-out and merging."""

from __future__ import annotations

import threading
import time

import pytest

from conftest import KeywordProvider
from scoped_workspace.core.errors import ProviderUnavailableError, UnresolvableOwnerError, ValidationError
from scoped_workspace.models.dto import CallerContext, ScopeRequest, SearchQuery
from scoped_workspace.scopes.identity import Directory
from scoped_workspace.scopes.paths import ScopeRef, ScopeType
from scoped_workspace.search.aggregate import MultiScopeSearcher, merge_results
from scoped_workspace.search.single import SearchResult
from scoped_workspace.services import WorkspaceServices

ALICE = CallerContext(organization_id="acme", user_id="u-alice")
BOB = CallerContext(organization_id="acme", user_id="u-bob")


def result(path: str, score: float, scope: ScopeRef) -> SearchResult:
    return SearchResult(relative_path=path, score=score, scope_type=scope.scope_type, owner_id=scope.owner_id)


class StubSearcher:
    """Per-scope canned outcomes: a result list, an exception, or a blocking event."""

    def __init__(self, outcomes: dict) -> None:
        self.outcomes = outcomes
        self.calls: list[tuple[ScopeRef, int, float]] = []
        self._lock = threading.Lock()

    def search(self, query_vector, scope, limit, min_score):
        with self._lock:
            self.calls.append((scope, limit, min_score))
        outcome = self.outcomes.get(scope, [])
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, threading.Event):
            outcome.wait(5)
            return []
        return outcome


@pytest.fixture
def make_multi(services: WorkspaceServices, directory: Directory):
    def factory(outcomes: dict) -> tuple[MultiScopeSearcher, StubSearcher]:
        stub = StubSearcher(outcomes)
        return MultiScopeSearcher(stub, services.generator, directory, services.settings), stub

    return factory


ORG = ScopeRef(ScopeType.ORGANIZATION, "acme")
AGENT_1 = ScopeRef(ScopeType.AGENT, "agt-1")
AGENT_2 = ScopeRef(ScopeType.AGENT, "agt-2")


# Merging ----------------------------------------------------------------


def test_merge_keeps_highest_score_per_path() -> None:
    merged = merge_results(
        [[result("doc.txt", 0.81, ORG)], [result("doc.txt", 0.93, AGENT_1), result("other.txt", 0.85, AGENT_1)]],
        limit=10,
    )
    assert [(r.relative_path, r.score, r.owner_id) for r in merged] == [
        ("doc.txt", 0.93, "agt-1"),
        ("other.txt", 0.85, "agt-1"),
    ]


def test_merge_ties_keep_first_branch_and_truncate() -> None:
    merged = merge_results(
        [[result("doc.txt", 0.9, ORG), result("a.txt", 0.8, ORG)], [result("doc.txt", 0.9, AGENT_1)]],
        limit=1,
    )
    assert len(merged) == 1
    assert merged[0].owner_id == "acme"


# Fan-out ----------------------------------------------------------------


def test_failed_branch_is_reported_not_raised(make_multi, provider: KeywordProvider) -> None:
    multi, stub = make_multi(
        {
            ORG: [result("org.txt", 0.9, ORG)],
            AGENT_1: RuntimeError("index corrupted"),
            AGENT_2: [result("agent.txt", 0.95, AGENT_2)],
        }
    )
    outcome = multi.search_multi_scope(
        "hello", ScopeRequest(agent_ids=["agt-1", "agt-2"]), ALICE, limit=5, min_score=0.5
    )
    assert [r.relative_path for r in outcome.results] == ["agent.txt", "org.txt"]
    assert outcome.partial
    assert len(outcome.failures) == 1
    failure = outcome.failures[0]
    assert (failure.scope_type, failure.owner_id) == ("agent", "agt-1")
    assert failure.reason.startswith("error")
    assert "index corrupted" in failure.reason
    assert outcome.scopes_searched == [ORG, AGENT_1, AGENT_2]

    assert provider.call_count == 1
    assert {call[1] for call in stub.calls} == {10}
    assert {call[2] for call in stub.calls} == {0.5}


def test_slow_branch_times_out(make_multi) -> None:
    release = threading.Event()
    multi, _ = make_multi({ORG: [result("org.txt", 0.9, ORG)], AGENT_1: release})
    try:
        outcome = multi.search_multi_scope("hello", ScopeRequest(agent_ids=["agt-1"]), ALICE, timeout=0.2)
    finally:
        release.set()
    assert [r.relative_path for r in outcome.results] == ["org.txt"]
    assert [(f.owner_id, f.reason.split(":")[0]) for f in outcome.failures] == [("agt-1", "timeout")]


def test_overrun_branches_do_not_starve_later_searches(make_multi, services: WorkspaceServices) -> None:
    release = threading.Event()
    multi, _ = make_multi({ORG: [result("org.txt", 0.9, ORG)], AGENT_1: release})
    try:
        for _ in range(services.settings.search_workers + 2):
            outcome = multi.search_multi_scope("hello", ScopeRequest(agent_ids=["agt-1"]), ALICE, timeout=0.05)
            assert [f.owner_id for f in outcome.failures] == ["agt-1"]

        healthy = multi.search_multi_scope("hello", ScopeRequest(), ALICE, timeout=2)
    finally:
        release.set()
    assert [r.relative_path for r in healthy.results] == ["org.txt"]
    assert healthy.failures == []


def test_timeout_covers_wait_for_provider_slot(
    make_multi, services: WorkspaceServices, provider: KeywordProvider
) -> None:
    multi, stub = make_multi({ORG: [result("org.txt", 0.9, ORG)]})
    limiter = services.generator.limiter
    for _ in range(limiter.max_concurrency):
        limiter.acquire()
    try:
        started = time.monotonic()
        with pytest.raises(ProviderUnavailableError):
            multi.search_multi_scope("budget", ScopeRequest(), ALICE, timeout=0.1)
        assert time.monotonic() - started < 2
    finally:
        for _ in range(limiter.max_concurrency):
            limiter.release()
    assert provider.call_count == 0
    assert stub.calls == []
    assert services.generator.breaker.snapshot().consecutive_failures == 0
    assert limiter.queued == 0


def test_query_embedding_failure_raises(make_multi, provider: KeywordProvider) -> None:
    multi, stub = make_multi({})
    provider.fail_with = RuntimeError("provider down")
    with pytest.raises(ProviderUnavailableError):
        multi.search_multi_scope("hello", ScopeRequest(), ALICE)
    assert stub.calls == []


def test_unresolvable_agent_fails_before_embedding(make_multi, provider: KeywordProvider) -> None:
    multi, stub = make_multi({})
    with pytest.raises(UnresolvableOwnerError):
        multi.search_multi_scope("hello", ScopeRequest(agent_ids=["Nobody Bot"]), ALICE)
    assert provider.call_count == 0
    assert stub.calls == []


def test_no_scopes_returns_empty_without_embedding(make_multi, provider: KeywordProvider) -> None:
    multi, stub = make_multi({})
    outcome = multi.search_multi_scope("hello", ScopeRequest(include_organization=False), ALICE)
    assert outcome.results == []
    assert not outcome.partial
    assert stub.calls == []
    assert provider.call_count == 0


# Scope resolution -------------------------------------------------------


def test_all_agents_expands_to_caller_organization(services: WorkspaceServices) -> None:
    scopes = services.multi_searcher.resolve_scopes(ScopeRequest(agent_ids="ALL"), ALICE)
    assert scopes == [ORG, AGENT_1, AGENT_2]


def test_agents_resolve_by_name(services: WorkspaceServices) -> None:
    scopes = services.multi_searcher.resolve_scopes(
        ScopeRequest(include_organization=False, agent_ids=["research-bot", "agt-1", "SUPPORT BOT"]),
        ALICE,
    )
    assert scopes == [AGENT_1, AGENT_2]


def test_all_teams_expands_to_memberships(services: WorkspaceServices) -> None:
    scopes = services.multi_searcher.resolve_scopes(
        ScopeRequest(include_organization=False, team_ids="all"), BOB
    )
    assert scopes == [ScopeRef("team", "team-eng"), ScopeRef("team", "team-ops")]


def test_non_member_team_is_skipped(services: WorkspaceServices) -> None:
    scopes = services.multi_searcher.resolve_scopes(
        ScopeRequest(include_organization=False, team_ids=["Engineering", "team-ops"]), ALICE
    )
    assert scopes == [ScopeRef("team", "team-eng")]


def test_team_scopes_require_user(services: WorkspaceServices) -> None:
    with pytest.raises(ValidationError):
        services.multi_searcher.resolve_scopes(
            ScopeRequest(team_ids="all"), CallerContext(organization_id="acme")
        )


def test_sessions_resolve_within_organization(services: WorkspaceServices) -> None:
    scopes = services.multi_searcher.resolve_scopes(ScopeRequest(session_ids=["s1"]), ALICE)
    assert scopes == [ORG, ScopeRef("session", "s1")]
    with pytest.raises(UnresolvableOwnerError):
        services.multi_searcher.resolve_scopes(
            ScopeRequest(session_ids=["s1"]), CallerContext(organization_id="globex")
        )


# End to end -------------------------------------------------------------


def test_multi_scope_search_over_real_store(services: WorkspaceServices) -> None:
    services.store.set("/organization/acme/notes/a.txt", "hello world")
    services.store.set("/agent/agt-1/notes/a.txt", "hello budget")
    services.store.set("/team/team-eng/welcome.md", "welcome")
    services.store.set("/team/team-ops/ops.md", "hello")
    services.store.set("/organization/globex/notes/b.txt", "hello")
    assert services.indexer.wait_idle(timeout=5)

    outcome = services.multi_searcher.search_multi_scope(
        "greeting",
        ScopeRequest(agent_ids=["agt-1"], team_ids="all"),
        ALICE,
        min_score=0.5,
    )
    assert not outcome.partial
    assert [(r.relative_path, r.scope_type, r.owner_id) for r in outcome.results] == [
        ("notes/a.txt", ScopeType.ORGANIZATION, "acme"),
        ("welcome.md", ScopeType.TEAM, "team-eng"),
    ]
    assert outcome.scopes_searched == [ORG, AGENT_1, ScopeRef("team", "team-eng")]


def test_search_query_supplies_limit_and_min_score(make_multi) -> None:
    multi, stub = make_multi(
        {ORG: [result("a.txt", 0.9, ORG), result("b.txt", 0.8, ORG), result("c.txt", 0.7, ORG)]}
    )
    outcome = multi.search_multi_scope(SearchQuery(query="hello", limit=2, min_score=0.3), ScopeRequest(), ALICE)
    assert [r.relative_path for r in outcome.results] == ["a.txt", "b.txt"]
    assert stub.calls == [(ORG, 4, 0.3)]

    multi.search_multi_scope(SearchQuery(query="hello", limit=2), ScopeRequest(), ALICE, limit=5, min_score=0.6)
    assert stub.calls[-1] == (ORG, 10, 0.6)
