"""Scoped path model and canonical key conversion.

Every workspace key has the shape ``/<scope_type>/<owner_id>/<relative_path>``.
Owner ids never contain ``/``, so the first two segments after the leading
separator are unambiguous and the remainder is the relative path verbatim.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from scoped_workspace.core.errors import ValidationError

SEPARATOR = "/"
_REPEATED_SEPARATORS = re.compile(r"/{2,}")


class ScopeType(str, Enum):
    ORGANIZATION = "organization"
    TEAM = "team"
    AGENT = "agent"
    SESSION = "session"

    @classmethod
    def parse(cls, value: "str | ScopeType") -> "ScopeType":
        if isinstance(value, ScopeType):
            return value
        normalized = str(value).strip().lower()
        if normalized == "company":
            return cls.ORGANIZATION
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(f"unknown scope type: {value!r}") from None

    @property
    def ephemeral(self) -> bool:
        return self is ScopeType.SESSION


def normalize_relative_path(path: str) -> str:
    """Strip the leading separator and collapse repeated separators."""
    collapsed = _REPEATED_SEPARATORS.sub(SEPARATOR, path.strip())
    return collapsed.lstrip(SEPARATOR)


def _check_owner(owner_id: str) -> str:
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise ValidationError("owner id is required")
    if SEPARATOR in owner_id:
        raise ValidationError(f"owner id must not contain {SEPARATOR!r}: {owner_id!r}")
    return owner_id.strip()


@dataclass(slots=True, frozen=True)
class ScopeRef:
    """A whole scope: one tenancy boundary identified by type and owner."""

    scope_type: ScopeType
    owner_id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "scope_type", ScopeType.parse(self.scope_type))
        object.__setattr__(self, "owner_id", _check_owner(self.owner_id))

    @property
    def prefix(self) -> str:
        return f"{SEPARATOR}{self.scope_type.value}{SEPARATOR}{self.owner_id}{SEPARATOR}"

    def path(self, relative_path: str) -> "ScopePath":
        return ScopePath(self.scope_type, self.owner_id, relative_path)

    def __str__(self) -> str:
        return f"{self.scope_type.value}/{self.owner_id}"


@dataclass(slots=True, frozen=True)
class ScopePath:
    """A single workspace location inside a scope."""

    scope_type: ScopeType
    owner_id: str
    relative_path: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "scope_type", ScopeType.parse(self.scope_type))
        object.__setattr__(self, "owner_id", _check_owner(self.owner_id))
        relative = normalize_relative_path(self.relative_path or "")
        if not relative:
            raise ValidationError("relative path is required")
        if ".." in relative.split(SEPARATOR):
            raise ValidationError(f"relative path must not contain '..': {self.relative_path!r}")
        object.__setattr__(self, "relative_path", relative)

    @property
    def scope(self) -> ScopeRef:
        return ScopeRef(self.scope_type, self.owner_id)

    @property
    def key(self) -> str:
        return to_canonical_key(self.scope, self.relative_path)


def to_canonical_key(scope: ScopeRef, relative_path: str) -> str:
    """Build ``/<type>/<owner>/<relative_path>`` for a scope and path."""
    location = ScopePath(scope.scope_type, scope.owner_id, relative_path)
    return f"{scope.prefix}{location.relative_path}"


def parse_canonical_key(key: str) -> ScopePath:
    """Split a canonical key back into its scope type, owner and relative path."""
    if not key.startswith(SEPARATOR):
        raise ValidationError(f"canonical key must start with {SEPARATOR!r}: {key!r}")
    parts = key[1:].split(SEPARATOR, 2)
    if len(parts) < 3 or not parts[2]:
        raise ValidationError(f"canonical key is missing a relative path: {key!r}")
    scope_type, owner_id, relative_path = parts
    location = ScopePath(ScopeType.parse(scope_type), owner_id, relative_path)
    if location.relative_path != relative_path:
        raise ValidationError(f"canonical key is not normalized: {key!r}")
    return location


def coerce_key(key: "str | ScopePath") -> str:
    """Accept a ScopePath or canonical key string and return the canonical key."""
    if isinstance(key, ScopePath):
        return key.key
    if not key.startswith(SEPARATOR):
        key = SEPARATOR + key
    return parse_canonical_key(_REPEATED_SEPARATORS.sub(SEPARATOR, key)).key


def coerce_prefix(prefix: "str | ScopeRef | ScopePath") -> str:
    """Accept a scope, a location or a raw key prefix and return a key prefix."""
    if isinstance(prefix, ScopeRef):
        return prefix.prefix
    if isinstance(prefix, ScopePath):
        return prefix.key
    if not prefix:
        return SEPARATOR
    if not prefix.startswith(SEPARATOR):
        prefix = SEPARATOR + prefix
    return _REPEATED_SEPARATORS.sub(SEPARATOR, prefix)


__all__ = [
    "ScopeType",
    "ScopeRef",
    "ScopePath",
    "to_canonical_key",
    "parse_canonical_key",
    "normalize_relative_path",
    "coerce_key",
    "coerce_prefix",
]
