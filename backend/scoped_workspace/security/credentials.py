"""Per-tenant embedding provider credentials."""

from __future__ import annotations

import os
import re

from scoped_workspace.core.config import ENV_PREFIX, Settings
from scoped_workspace.core.errors import ConfigurationError

_ENV_UNSAFE = re.compile(r"\W")


def get_secret(name: str) -> str | None:
    """Read a secret from the environment (``SCWS_<NAME>``)."""
    value = os.environ.get(f"{ENV_PREFIX}{_ENV_UNSAFE.sub('_', name).upper()}")
    return value or None


class CredentialStore:
    """Looks up the provider API key to bill a tenant's embedding calls to.

    Order: configured per-tenant key, ``SCWS_API_KEY_<TENANT>`` env var, then
    the process-wide fallback key.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def api_key_for(self, tenant: str | None) -> str:
        if tenant:
            key = self.settings.provider_api_keys.get(tenant) or get_secret(f"api_key_{tenant}")
            if key:
                return key
        if self.settings.provider_api_key:
            return self.settings.provider_api_key
        raise ConfigurationError(f"no embedding provider credentials for tenant {tenant!r}")


__all__ = ["CredentialStore", "get_secret"]
