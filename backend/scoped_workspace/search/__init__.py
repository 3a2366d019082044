"""Semantic search components."""

from .single import ScopeSearcher, SearchResult
from .aggregate import AggregateResult, MultiScopeSearcher, merge_results

__all__ = [
    "ScopeSearcher",
    "SearchResult",
    "AggregateResult",
    "MultiScopeSearcher",
    "merge_results",
]
