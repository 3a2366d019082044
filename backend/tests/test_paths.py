"""Tests for scoped path canonicalization."""

from __future__ import annotations

import pytest

from scoped_workspace.core.errors import ValidationError
from scoped_workspace.scopes.paths import (
    ScopePath,
    ScopeRef,
    ScopeType,
    coerce_key,
    coerce_prefix,
    parse_canonical_key,
    to_canonical_key,
)


def test_canonical_key_round_trip() -> None:
    scope = ScopeRef(ScopeType.ORGANIZATION, "acme")
    key = to_canonical_key(scope, "notes/a.txt")
    assert key == "/organization/acme/notes/a.txt"
    parsed = parse_canonical_key(key)
    assert parsed == ScopePath(ScopeType.ORGANIZATION, "acme", "notes/a.txt")
    assert parsed.key == key
    assert key[len(scope.prefix) :] == parsed.relative_path


def test_relative_path_is_normalized_once() -> None:
    location = ScopePath("agent", "agt-1", "//docs//plan.md")
    assert location.relative_path == "docs/plan.md"
    assert parse_canonical_key(location.key) == location


def test_company_alias_maps_to_organization() -> None:
    assert ScopeType.parse("Company") is ScopeType.ORGANIZATION
    assert coerce_key("/company/acme/x.txt") == "/organization/acme/x.txt"


@pytest.mark.parametrize(
    "scope_type, owner, path",
    [
        ("agent", "", "a.txt"),
        ("agent", "a/b", "a.txt"),
        ("team", "t1", ""),
        ("team", "t1", "../escape.txt"),
        ("planet", "p1", "a.txt"),
    ],
)
def test_invalid_locations_rejected(scope_type: str, owner: str, path: str) -> None:
    with pytest.raises(ValidationError):
        ScopePath(scope_type, owner, path)


@pytest.mark.parametrize("key", ["organization/acme/a.txt", "/organization/acme", "/organization/acme/"])
def test_parse_rejects_malformed_keys(key: str) -> None:
    with pytest.raises(ValidationError):
        parse_canonical_key(key)


def test_coerce_helpers() -> None:
    assert coerce_key("session/s1//tmp") == "/session/s1/tmp"
    assert coerce_prefix(ScopeRef("team", "team-eng")) == "/team/team-eng/"
    assert coerce_prefix("") == "/"
    assert coerce_prefix("agent//agt-1") == "/agent/agt-1"
