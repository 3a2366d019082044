"""Pydantic request models for the search layer."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

ALL: Literal["all"] = "all"


class CallerContext(BaseModel):
    organization_id: str = Field(min_length=1)
    user_id: str | None = None


class ScopeRequest(BaseModel):
    """Which scopes a multi-scope search should cover.

    ``"all"`` expands agents to every agent of the caller's organization and
    teams to every team the calling user belongs to.
    """

    include_organization: bool = True
    agent_ids: list[str] | Literal["all"] | None = None
    team_ids: list[str] | Literal["all"] | None = None
    session_ids: list[str] | None = None

    @field_validator("agent_ids", "team_ids", mode="before")
    @classmethod
    def _lower_all(cls, value: object) -> object:
        if isinstance(value, str) and value.strip().lower() == ALL:
            return ALL
        return value


class SearchQuery(BaseModel):
    query: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1, le=200)
    min_score: float | None = Field(default=None, ge=-1.0, le=1.0)


__all__ = ["ALL", "CallerContext", "ScopeRequest", "SearchQuery"]
