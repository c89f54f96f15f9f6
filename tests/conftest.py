"""
Shared pytest fixtures for Code Index Sync tests.

Provides a deterministic in-process embedding provider, a manually driven
file watch and factories for configuration and synchronizers.
"""

import hashlib
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import pytest

from code_index_sync.config import SyncConfig
from code_index_sync.exceptions import FatalEmbeddingError
from code_index_sync.services.embedding_provider import EmbeddingProvider
from code_index_sync.services.index_synchronizer import IndexSynchronizer
from code_index_sync.storage.vector_store import InMemoryVectorStore
from code_index_sync.watch.file_watch import EventCallback, FileEvent, FileWatch

TEST_DIMENSION = 8


def fake_vector(text: str, dimension: int = TEST_DIMENSION) -> List[float]:
    """Deterministic embedding derived from the text's sha256 digest."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [(digest[i % len(digest)] + 1) / 256.0 for i in range(dimension)]


class FakeEmbeddingProvider(EmbeddingProvider):
    """Embedding provider that records calls and can be held or made to fail."""

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self.calls: List[str] = []
        self.failing_markers: Set[str] = set()
        self._gates: Dict[str, threading.Event] = {}
        self._entered: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def hold(self, marker: str) -> threading.Event:
        """Block calls whose text contains marker until the returned event is set."""
        gate = threading.Event()
        self._gates[marker] = gate
        self._entered[marker] = threading.Event()
        return gate

    def wait_entered(self, marker: str, timeout: float = 5.0) -> bool:
        """Wait until a call for marker is being held."""
        return self._entered[marker].wait(timeout=timeout)

    def fail_on(self, marker: str) -> None:
        self.failing_markers.add(marker)

    def get_embedding(self, text: str) -> List[float]:
        with self._lock:
            self.calls.append(text)

        for marker, gate in list(self._gates.items()):
            if marker in text:
                self._entered[marker].set()
                gate.wait(timeout=10)

        for marker in list(self.failing_markers):
            if marker in text:
                raise FatalEmbeddingError(f"Refusing to embed text containing {marker}")

        return fake_vector(text, self.dimension)

    def get_provider_name(self) -> str:
        return "fake"


class ManualFileWatch(FileWatch):
    """FileWatch whose notifications are emitted explicitly by the test."""

    def __init__(self):
        self.root: Optional[Path] = None
        self.callback: Optional[EventCallback] = None
        self.alive = False
        self.unsubscribe_calls = 0

    def subscribe(
        self, root: Path, callback: EventCallback, recursive: bool = True
    ) -> None:
        self.root = root
        self.callback = callback
        self.alive = True

    def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1
        self.alive = False

    def is_alive(self) -> bool:
        return self.alive

    def emit(self, event: FileEvent) -> None:
        assert self.callback is not None, "emit() before subscribe()"
        self.callback(event)

    def terminate(self) -> None:
        """Simulate the subscription dying without unsubscribe()."""
        self.alive = False


@pytest.fixture
def embedding_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def file_watch() -> ManualFileWatch:
    return ManualFileWatch()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore(TEST_DIMENSION)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., SyncConfig]:
    """Factory for SyncConfig rooted at tmp_path indexing .go files."""

    def _make(**overrides) -> SyncConfig:
        values = dict(
            root_path=tmp_path,
            file_extensions=["go"],
            max_chunk_chars=1000,
            embedding_dimension=TEST_DIMENSION,
            worker_count=4,
            embedding_threads=4,
            embedding_retry_delay=0.0,
            shutdown_timeout=5.0,
        )
        values.update(overrides)
        return SyncConfig(**values)

    return _make


@pytest.fixture
def make_synchronizer(make_config, embedding_provider, vector_store, file_watch):
    """Factory for synchronizers wired to the fake collaborators; stopped on teardown."""
    created: List[IndexSynchronizer] = []

    def _make(**overrides) -> IndexSynchronizer:
        synchronizer = IndexSynchronizer(
            make_config(**overrides),
            embedding_provider,
            vector_store,
            file_watch=file_watch,
        )
        created.append(synchronizer)
        return synchronizer

    yield _make

    for synchronizer in created:
        synchronizer.stop()
