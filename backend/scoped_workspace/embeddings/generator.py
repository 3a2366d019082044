"""Embedding generation with caching, rate limiting and circuit breaking."""

from __future__ import annotations

from scoped_workspace.core.config import Settings
from scoped_workspace.core.errors import ProviderUnavailableError, ValidationError
from scoped_workspace.core.logging import get_logger
from scoped_workspace.core.metrics import EMBEDDING_CACHE, PROVIDER_CALLS
from scoped_workspace.embeddings.breaker import CircuitBreaker
from scoped_workspace.embeddings.cache import EmbeddingCache, cache_key
from scoped_workspace.embeddings.limiter import RateLimiter
from scoped_workspace.embeddings.providers import EmbeddingProvider
from scoped_workspace.security.credentials import CredentialStore
from scoped_workspace.utils.text import normalize

logger = get_logger(__name__)


class EmbeddingGenerator:
    """Produces query and document vectors for a tenant.

    A fresh cache hit never touches the breaker or the provider. On a miss the
    breaker is consulted first, then a limiter slot is taken for the provider
    call itself. Any provider error, timeouts included, counts against the
    breaker and surfaces as ProviderUnavailableError.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        settings: Settings,
        cache: EmbeddingCache,
        breaker: CircuitBreaker,
        limiter: RateLimiter,
        credentials: CredentialStore,
    ) -> None:
        self.provider = provider
        self.settings = settings
        self.cache = cache
        self.breaker = breaker
        self.limiter = limiter
        self.credentials = credentials

    @property
    def model(self) -> str:
        return self.settings.embedding_model

    @property
    def dim(self) -> int:
        return self.provider.dim

    def prepare(self, text: str) -> str:
        return normalize(text)[: self.settings.embedding_max_chars]

    def embed(self, text: str, tenant: str | None, timeout: float | None = None) -> list[float]:
        """Return the vector for ``text``.

        ``timeout`` bounds the wait for a limiter slot. Running out of it raises
        ProviderUnavailableError without counting against the breaker.
        """
        prepared = self.prepare(text)
        if not prepared:
            raise ValidationError("cannot embed empty text")

        key = cache_key(prepared, self.model)
        cached = self.cache.get(key)
        if cached is not None:
            EMBEDDING_CACHE.labels(result="hit").inc()
            logger.debug("Embedding cache hit", extra={"ctx_cache_key": key[:8]})
            return cached
        EMBEDDING_CACHE.labels(result="miss").inc()

        api_key = self.credentials.api_key_for(tenant) if self.provider.requires_api_key else None
        self.breaker.before_call()
        if not self.limiter.acquire(timeout):
            self.breaker.release_trial()
            logger.warning(
                "No provider slot within %.2fs",
                timeout,
                extra={"ctx_tenant": tenant, "ctx_in_flight": self.limiter.in_flight},
            )
            raise ProviderUnavailableError(f"no provider slot within {timeout:.2f}s")
        try:
            vector = self.provider.embed(prepared, self.model, api_key)
        except Exception as exc:
            self.breaker.record_failure()
            PROVIDER_CALLS.labels(outcome="failure").inc()
            logger.error(
                "Embedding generation failed: %s",
                exc,
                extra={"ctx_tenant": tenant, "ctx_circuit": self.breaker.state.value},
            )
            raise ProviderUnavailableError(f"embedding provider call failed: {exc}") from exc
        finally:
            self.limiter.release()

        self.breaker.record_success()
        PROVIDER_CALLS.labels(outcome="success").inc()
        self.cache.put(key, vector)
        return list(vector)


__all__ = ["EmbeddingGenerator"]
