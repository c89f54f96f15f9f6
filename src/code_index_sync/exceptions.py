"""Exception classes for index synchronization."""

from typing import Optional


class IndexSyncError(Exception):
    """Base exception for index synchronization errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class EmbeddingError(IndexSyncError):
    """Exception raised when an embedding provider fails to embed a chunk."""

    pass


class TransientEmbeddingError(EmbeddingError):
    """Embedding failure worth retrying (connection errors, rate limits, 5xx)."""

    pass


class FatalEmbeddingError(EmbeddingError):
    """Embedding failure that will not succeed on retry (missing model, bad vector)."""

    pass


class VectorStoreError(IndexSyncError):
    """Exception raised when a vector store add, remove or search fails."""

    pass


class WatchTerminatedError(IndexSyncError):
    """Exception raised when the file watch subscription ends unexpectedly."""

    pass


class SynchronizerStateError(IndexSyncError):
    """Exception raised when synchronizer lifecycle methods are misused."""

    pass
