"""Tests for single-scope semantic search."""

from __future__ import annotations

import sqlite3

import pytest

from conftest import FakeClock
from scoped_workspace.scopes.paths import ScopeRef, ScopeType
from scoped_workspace.search.single import ScopeSearcher
from scoped_workspace.services import WorkspaceServices

ACME = ScopeRef(ScopeType.ORGANIZATION, "acme")


def _index(services: WorkspaceServices) -> None:
    assert services.indexer.wait_idle(timeout=5)


def test_written_entry_is_found_by_related_query(services: WorkspaceServices) -> None:
    services.store.set("/organization/acme/notes/a.txt", "hello world")
    _index(services)

    results = services.searcher.search_text("greeting", ACME)
    assert [result.relative_path for result in results] == ["notes/a.txt"]
    top = results[0]
    assert top.score == pytest.approx(1.0, abs=1e-6)
    assert top.scope_type is ScopeType.ORGANIZATION
    assert top.owner_id == "acme"
    assert top.metadata["content_type"] == "text/plain"
    assert top.metadata["size"] == len("hello world")


def test_min_score_and_ordering(services: WorkspaceServices) -> None:
    services.store.set("/organization/acme/exact.txt", "hello")
    services.store.set("/organization/acme/mixed.txt", "hello budget")
    services.store.set("/organization/acme/unrelated.txt", "invoice finance")
    _index(services)

    loose = services.searcher.search_text("greeting", ACME, min_score=0.5)
    assert [result.relative_path for result in loose] == ["exact.txt", "mixed.txt"]
    assert loose[0].score > loose[1].score

    strict = services.searcher.search_text("greeting", ACME, min_score=0.9)
    assert [result.relative_path for result in strict] == ["exact.txt"]


def test_limit_truncates(services: WorkspaceServices) -> None:
    for name in ("a.txt", "b.txt", "c.txt"):
        services.store.set(f"/organization/acme/{name}", "welcome")
    _index(services)

    results = services.searcher.search_text("hi", ACME, limit=2)
    # equal scores fall back to key order
    assert [result.relative_path for result in results] == ["a.txt", "b.txt"]


def test_other_scopes_are_not_searched(services: WorkspaceServices) -> None:
    services.store.set("/organization/globex/a.txt", "hello")
    services.store.set("/organization/acme-labs/a.txt", "hello")
    services.store.set("/agent/agt-1/a.txt", "hello")
    _index(services)

    assert services.searcher.search_text("hello", ACME) == []
    agent_results = services.searcher.search_text("hello", ScopeRef("agent", "agt-1"))
    assert [(r.scope_type, r.owner_id) for r in agent_results] == [(ScopeType.AGENT, "agt-1")]


def test_expired_entries_are_not_returned(services: WorkspaceServices, clock: FakeClock) -> None:
    session = ScopeRef(ScopeType.SESSION, "s1")
    services.store.set("/session/s1/tmp.txt", "hello", ttl=10)
    _index(services)
    assert len(services.searcher.search_text("hello", session)) == 1

    clock.advance(11)
    assert services.searcher.search_text("hello", session) == []


def test_overwrite_is_reindexed(services: WorkspaceServices) -> None:
    services.store.set("/organization/acme/doc.txt", "hello")
    _index(services)
    services.store.set("/organization/acme/doc.txt", "budget")
    _index(services)

    assert services.searcher.search_text("greeting", ACME) == []
    assert [r.relative_path for r in services.searcher.search_text("finance", ACME)] == ["doc.txt"]


def test_deleted_entries_disappear(services: WorkspaceServices) -> None:
    services.store.set("/organization/acme/doc.txt", "hello")
    _index(services)
    services.store.delete("/organization/acme/doc.txt")
    assert services.searcher.search_text("hello", ACME) == []


def test_files_are_searchable_by_name(services: WorkspaceServices) -> None:
    services.store.put_file("/agent/agt-1/docs/trip.pdf", "travel plan.pdf", b"%PDF")
    _index(services)
    results = services.searcher.search_text("flight", ScopeRef("agent", "agt-1"))
    assert [result.relative_path for result in results] == ["docs/trip.pdf"]
    assert results[0].metadata["content_type"] == "application/pdf"


class BrokenBackend:
    name = "broken"

    def vector_search(self, vector, prefix, top_k, now=None):
        raise sqlite3.OperationalError("database is locked")


def test_backend_errors_propagate(services: WorkspaceServices) -> None:
    searcher = ScopeSearcher(BrokenBackend(), services.generator, services.settings)
    vector = services.generator.embed("hello", "acme")
    with pytest.raises(sqlite3.OperationalError):
        searcher.search(vector, ACME, limit=5, min_score=0.0)
