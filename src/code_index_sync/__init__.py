"""
Code Index Sync - keeps a vector search index in step with a watched source tree.

Performs a bulk scan of the tree at startup, then applies filesystem change
notifications as atomic per-file updates (chunk, embed, swap vector ids) so
that semantic search always reflects the latest on-disk state.
"""

__version__ = "0.3.0"

from .config import ConfigManager, OllamaConfig, SyncConfig
from .exceptions import (
    EmbeddingError,
    FatalEmbeddingError,
    IndexSyncError,
    SynchronizerStateError,
    TransientEmbeddingError,
    VectorStoreError,
    WatchTerminatedError,
)
from .services.index_synchronizer import (
    BulkScanResult,
    IndexSynchronizer,
    SearchResult,
    WatchedFile,
)
from .storage.vector_store import InMemoryVectorStore, VectorStore
from .watch.file_watch import FileEvent, FileEventKind, FileWatch, WatchdogFileWatch

__all__ = [
    "BulkScanResult",
    "ConfigManager",
    "EmbeddingError",
    "FatalEmbeddingError",
    "FileEvent",
    "FileEventKind",
    "FileWatch",
    "InMemoryVectorStore",
    "IndexSyncError",
    "IndexSynchronizer",
    "OllamaConfig",
    "SearchResult",
    "SyncConfig",
    "SynchronizerStateError",
    "TransientEmbeddingError",
    "VectorStore",
    "VectorStoreError",
    "WatchTerminatedError",
    "WatchdogFileWatch",
    "WatchedFile",
]
