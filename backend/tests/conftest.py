"""Test fixtures for the scoped workspace."""

from __future__ import annotations

import re
import sys
import threading
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from scoped_workspace.core.config import Settings, get_settings  # noqa: E402
from scoped_workspace.scopes.identity import Directory  # noqa: E402
from scoped_workspace.services import WorkspaceServices  # noqa: E402
from scoped_workspace.storage.blobs import LocalBlobStore  # noqa: E402
from scoped_workspace.storage.sqlite import SQLiteBackend  # noqa: E402
from scoped_workspace.workspace.store import WorkspaceStore  # noqa: E402

_WORD_RE = re.compile(r"\w+")

# word -> axis; words sharing an axis are "synonyms"
CONCEPTS = {
    "hello": 0,
    "hi": 0,
    "greeting": 0,
    "welcome": 0,
    "budget": 1,
    "invoice": 1,
    "finance": 1,
    "flight": 2,
    "hotel": 2,
    "travel": 2,
    "python": 3,
    "bug": 3,
    "code": 3,
}


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class KeywordProvider:
    """Maps known words onto concept axes so related words embed close together."""

    name = "keyword"
    dim = 8
    requires_api_key = False

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str | None]] = []
        self.fail_with: Exception | None = None
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def embed(self, text: str, model: str, api_key: str | None = None) -> list[float]:
        with self._lock:
            self.calls.append((text, model, api_key))
        if self.fail_with is not None:
            raise self.fail_with
        vector = [0.0] * self.dim
        for word in _WORD_RE.findall(text.lower()):
            if word in CONCEPTS:
                vector[CONCEPTS[word]] += 1.0
        if not any(vector):
            vector[self.dim - 1] = 1.0
        norm = sum(value * value for value in vector) ** 0.5
        return [value / norm for value in vector]


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset cached settings and environment between tests."""
    monkeypatch.setenv("SCWS_DB_PATH", str(tmp_path / "workspace.db"))
    monkeypatch.setenv("SCWS_BLOB_DIR", str(tmp_path / "blobs"))
    monkeypatch.delenv("SCWS_CONFIG", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "workspace.db",
        blob_dir=tmp_path / "blobs",
        embedding_dim=KeywordProvider.dim,
        session_ttl_seconds=3600,
        breaker_failure_threshold=3,
        breaker_cooldown_seconds=60,
        search_timeout_seconds=5,
    )


@pytest.fixture
def provider() -> KeywordProvider:
    return KeywordProvider()


@pytest.fixture
def directory() -> Directory:
    directory = Directory()
    directory.add_organization("acme", "Acme Corp")
    directory.add_organization("globex", "Globex")
    directory.add_agent("agt-1", "acme", "Research Bot")
    directory.add_agent("agt-2", "acme", "Support Bot")
    directory.add_agent("agt-9", "globex", "Research Bot")
    directory.add_team("team-eng", "acme", "Engineering", members=["u-alice", "u-bob"])
    directory.add_team("team-ops", "acme", "Operations", members=["u-bob"])
    directory.add_session("s1", "acme", user_id="u-alice")
    return directory


@pytest.fixture
def backend(settings: Settings) -> SQLiteBackend:
    backend = SQLiteBackend.open(settings.db_path)
    yield backend
    backend.close()


@pytest.fixture
def store(backend: SQLiteBackend, settings: Settings, clock: FakeClock) -> WorkspaceStore:
    return WorkspaceStore(backend, settings, blobs=LocalBlobStore(settings.blob_dir), clock=clock)


@pytest.fixture
def services(settings: Settings, directory: Directory, provider: KeywordProvider, clock: FakeClock) -> WorkspaceServices:
    services = WorkspaceServices.build(directory, settings=settings, provider=provider, clock=clock)
    yield services
    services.close()
