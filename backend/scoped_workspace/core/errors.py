"""Error taxonomy shared by the workspace components."""

from __future__ import annotations

from dataclasses import dataclass


class WorkspaceError(Exception):
    """Base class for all workspace errors."""


class NotFoundError(WorkspaceError, KeyError):
    """Key or scope is absent, or its entry has expired."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"not found: {self.key}"


class ValidationError(WorkspaceError, ValueError):
    """Malformed scope, key or payload."""


class UnresolvableOwnerError(WorkspaceError):
    """A name or external reference could not be mapped to an owner id."""

    def __init__(self, scope_type: str, identifier: str, reason: str = "no match") -> None:
        super().__init__(f"cannot resolve {scope_type} owner {identifier!r}: {reason}")
        self.scope_type = scope_type
        self.identifier = identifier
        self.reason = reason


class ProviderUnavailableError(WorkspaceError):
    """The embedding provider failed or the circuit breaker is open."""


class ConfigurationError(WorkspaceError):
    """Required configuration, such as provider credentials, is missing."""


@dataclass(slots=True, frozen=True)
class PartialAggregateFailure:
    """One failed branch of a multi-scope search; reported, never raised."""

    scope_type: str
    owner_id: str
    reason: str


__all__ = [
    "WorkspaceError",
    "NotFoundError",
    "ValidationError",
    "UnresolvableOwnerError",
    "ProviderUnavailableError",
    "ConfigurationError",
    "PartialAggregateFailure",
]
