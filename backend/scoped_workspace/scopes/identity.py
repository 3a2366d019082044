"""Owner resolution and membership lookups for scopes."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Protocol

from scoped_workspace.core.errors import UnresolvableOwnerError, ValidationError
from scoped_workspace.core.logging import get_logger
from scoped_workspace.scopes.paths import ScopeRef, ScopeType

logger = get_logger(__name__)

_NAME_SEPARATORS = re.compile(r"[\s\-_]+")


class IdentityResolver(Protocol):
    """External identity and membership collaborator."""

    def resolve_owner(self, scope_type: ScopeType, identifier: str, organization_id: str) -> str: ...

    def list_teams_for_user(self, user_id: str, organization_id: str) -> list[str]: ...

    def list_agents_for_organization(self, organization_id: str) -> list[str]: ...

    def organization_for(self, scope_type: ScopeType, owner_id: str) -> str | None: ...


def normalize_name(value: str) -> str:
    """Reduce a name or URL-like reference to a comparable form.

    ``agents/Research_Bot`` and ``research-bot`` both become ``research bot``.
    """
    text = value.strip()
    if "/" in text or "." in text:
        text = text.rstrip("/").split("/")[-1]
    return _NAME_SEPARATORS.sub(" ", text).strip().casefold()


def match_owner(scope_type: ScopeType, identifier: str, candidates: Mapping[str, str]) -> str:
    """Pick the single candidate id matching ``identifier``.

    ``candidates`` maps owner id to display name. Order: exact id, then
    case-insensitive exact name, then normalized name. No match and more than
    one match at the deciding stage both raise.
    """
    trimmed = (identifier or "").strip()
    if not trimmed:
        raise UnresolvableOwnerError(scope_type.value, identifier, "empty identifier")
    if trimmed in candidates:
        return trimmed

    folded = trimmed.casefold()
    exact = [owner for owner, name in candidates.items() if name.casefold() == folded]
    if len(exact) == 1:
        return exact[0]
    if len(exact) > 1:
        raise UnresolvableOwnerError(scope_type.value, identifier, f"ambiguous ({len(exact)} matches)")

    wanted = normalize_name(trimmed)
    fuzzy = [owner for owner, name in candidates.items() if normalize_name(name) == wanted]
    if len(fuzzy) == 1:
        return fuzzy[0]
    if len(fuzzy) > 1:
        raise UnresolvableOwnerError(scope_type.value, identifier, f"ambiguous ({len(fuzzy)} matches)")
    raise UnresolvableOwnerError(scope_type.value, identifier)


@dataclass(slots=True)
class Team:
    id: str
    organization_id: str
    name: str
    members: set[str] = field(default_factory=set)


@dataclass(slots=True)
class Agent:
    id: str
    organization_id: str
    name: str


@dataclass(slots=True)
class Session:
    id: str
    organization_id: str
    user_id: str | None = None


class Directory:
    """In-process identity resolver over registered organizations, teams, agents and sessions."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._organizations: dict[str, str] = {}
        self._teams: dict[str, Team] = {}
        self._agents: dict[str, Agent] = {}
        self._sessions: dict[str, Session] = {}

    def add_organization(self, organization_id: str, name: str | None = None) -> None:
        with self._lock:
            self._organizations[organization_id] = name or organization_id

    def add_team(self, team_id: str, organization_id: str, name: str, members: Iterable[str] = ()) -> Team:
        with self._lock:
            self._require_organization(organization_id)
            team = Team(id=team_id, organization_id=organization_id, name=name, members=set(members))
            self._teams[team_id] = team
            return team

    def add_agent(self, agent_id: str, organization_id: str, name: str) -> Agent:
        with self._lock:
            self._require_organization(organization_id)
            agent = Agent(id=agent_id, organization_id=organization_id, name=name)
            self._agents[agent_id] = agent
            return agent

    def add_session(self, session_id: str, organization_id: str, user_id: str | None = None) -> Session:
        with self._lock:
            self._require_organization(organization_id)
            session = Session(id=session_id, organization_id=organization_id, user_id=user_id)
            self._sessions[session_id] = session
            return session

    def _require_organization(self, organization_id: str) -> None:
        if organization_id not in self._organizations:
            raise ValidationError(f"unknown organization: {organization_id}")

    # IdentityResolver -------------------------------------------------

    def resolve_owner(self, scope_type: ScopeType, identifier: str, organization_id: str) -> str:
        scope_type = ScopeType.parse(scope_type)
        with self._lock:
            if scope_type is ScopeType.ORGANIZATION:
                candidates = {org: name for org, name in self._organizations.items() if org == organization_id}
            elif scope_type is ScopeType.TEAM:
                candidates = {t.id: t.name for t in self._teams.values() if t.organization_id == organization_id}
            elif scope_type is ScopeType.AGENT:
                candidates = {a.id: a.name for a in self._agents.values() if a.organization_id == organization_id}
            else:
                # sessions have no display name; only the id resolves
                session = self._sessions.get((identifier or "").strip())
                if session is None or session.organization_id != organization_id:
                    raise UnresolvableOwnerError(scope_type.value, identifier)
                return session.id
        return match_owner(scope_type, identifier, candidates)

    def list_teams_for_user(self, user_id: str, organization_id: str) -> list[str]:
        with self._lock:
            return sorted(
                team.id
                for team in self._teams.values()
                if team.organization_id == organization_id and user_id in team.members
            )

    def list_agents_for_organization(self, organization_id: str) -> list[str]:
        with self._lock:
            return sorted(agent.id for agent in self._agents.values() if agent.organization_id == organization_id)

    def organization_for(self, scope_type: ScopeType, owner_id: str) -> str | None:
        scope_type = ScopeType.parse(scope_type)
        with self._lock:
            if scope_type is ScopeType.ORGANIZATION:
                return owner_id if owner_id in self._organizations else None
            if scope_type is ScopeType.TEAM:
                team = self._teams.get(owner_id)
                return team.organization_id if team else None
            if scope_type is ScopeType.AGENT:
                agent = self._agents.get(owner_id)
                return agent.organization_id if agent else None
            session = self._sessions.get(owner_id)
            return session.organization_id if session else None


class ScopeResolver:
    """Turns caller-supplied scope identifiers into validated ScopeRefs."""

    def __init__(self, identity: IdentityResolver) -> None:
        self.identity = identity

    def resolve_scope(
        self,
        scope_type: "ScopeType | str",
        identifier: str | None,
        organization_id: str,
    ) -> ScopeRef:
        scope_type = ScopeType.parse(scope_type)
        if scope_type is ScopeType.ORGANIZATION:
            if identifier and identifier != organization_id:
                raise UnresolvableOwnerError(scope_type.value, identifier, "outside caller organization")
            return ScopeRef(scope_type, organization_id)
        if not identifier:
            raise ValidationError(f"an owner id is required for {scope_type.value} scope")
        owner_id = self.identity.resolve_owner(scope_type, identifier, organization_id)
        logger.debug("Resolved %s owner %r to %s", scope_type.value, identifier, owner_id)
        return ScopeRef(scope_type, owner_id)

    def tenant_for(self, scope: ScopeRef) -> str | None:
        """Owning organization used to attribute provider calls for a scope."""
        if scope.scope_type is ScopeType.ORGANIZATION:
            return scope.owner_id
        return self.identity.organization_for(scope.scope_type, scope.owner_id)


__all__ = [
    "IdentityResolver",
    "Directory",
    "ScopeResolver",
    "match_owner",
    "normalize_name",
]
