"""Vector storage interface and in-memory numpy implementation.

Defines the interface the index synchronizer needs from a vector store
(add with ids, remove by ids, k-nearest search) and a thread-safe exact
search implementation suitable for a single process.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np

from ..config import SyncConfig
from ..exceptions import VectorStoreError

logger = logging.getLogger(__name__)

VectorBatch = Union[np.ndarray, Sequence[Sequence[float]]]


class VectorStore(ABC):
    """Abstract interface for vector stores.

    All methods must be safe to call concurrently from several threads.
    """

    @abstractmethod
    def add_with_ids(self, vectors: VectorBatch, ids: Sequence[int]) -> None:
        """Add vectors under caller-allocated ids.

        Args:
            vectors: One row per id, each of the store's dimension
            ids: Unique int64 ids, not already present in the store

        Raises:
            VectorStoreError: If the batch is malformed or an id already exists
        """
        pass

    @abstractmethod
    def remove_ids(self, ids: Iterable[int]) -> int:
        """Remove vectors by id. Unknown ids are ignored.

        Returns:
            Number of vectors actually removed
        """
        pass

    @abstractmethod
    def search(self, query_vector: Sequence[float], k: int) -> List[Tuple[int, float]]:
        """Find the k nearest vectors.

        Returns:
            (id, score) pairs ordered from best to worst match
        """
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of vectors currently stored."""
        pass


class InMemoryVectorStore(VectorStore):
    """Exact nearest-neighbour search over vectors held in numpy arrays.

    Scores are inner products ("ip") or cosine similarities ("cosine"); higher
    is better. Ties are broken by ascending id so results are deterministic.
    """

    VALID_METRICS = {"ip", "cosine"}

    def __init__(self, dimension: int, metric: str = "ip"):
        """Initialize the store.

        Args:
            dimension: Dimension of every stored vector
            metric: 'ip' (inner product) or 'cosine'

        Raises:
            ValueError: If dimension is not positive or metric is invalid
        """
        if dimension <= 0:
            raise ValueError(f"Dimension must be positive, got {dimension}")
        if metric not in self.VALID_METRICS:
            raise ValueError(
                f"Invalid metric: {metric}. Must be one of {self.VALID_METRICS}"
            )

        self.dimension = dimension
        self.metric = metric
        self._ids = np.empty((0,), dtype=np.int64)
        self._vectors = np.empty((0, dimension), dtype=np.float32)
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: SyncConfig) -> "InMemoryVectorStore":
        """Create a store sized and scored according to a SyncConfig."""
        return cls(config.embedding_dimension, metric=config.search_metric)

    def _normalize(self, vectors: np.ndarray) -> np.ndarray:
        if self.metric != "cosine":
            return vectors
        norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
        norms[norms == 0] = 1.0
        return vectors / norms

    def add_with_ids(self, vectors: VectorBatch, ids: Sequence[int]) -> None:
        new_ids = np.asarray(ids, dtype=np.int64).reshape(-1)
        try:
            new_vectors = np.asarray(vectors, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise VectorStoreError("Vectors are not numeric", str(e))

        if new_ids.size == 0:
            return

        if new_vectors.ndim != 2 or new_vectors.shape != (new_ids.size, self.dimension):
            raise VectorStoreError(
                "Vector batch has wrong shape",
                f"expected ({new_ids.size}, {self.dimension}), got {new_vectors.shape}",
            )

        if np.unique(new_ids).size != new_ids.size:
            raise VectorStoreError("Duplicate ids in vector batch")

        new_vectors = self._normalize(new_vectors)

        with self._lock:
            clashing = np.intersect1d(self._ids, new_ids)
            if clashing.size:
                raise VectorStoreError(
                    "Ids already present in vector store",
                    ", ".join(str(i) for i in clashing[:10]),
                )
            self._ids = np.concatenate([self._ids, new_ids])
            self._vectors = np.vstack([self._vectors, new_vectors])

        logger.debug(f"Added {new_ids.size} vectors")

    def remove_ids(self, ids: Iterable[int]) -> int:
        doomed = np.fromiter((int(i) for i in ids), dtype=np.int64)
        if doomed.size == 0:
            return 0

        with self._lock:
            keep = ~np.isin(self._ids, doomed)
            removed = int(self._ids.size - np.count_nonzero(keep))
            if removed:
                self._ids = self._ids[keep]
                self._vectors = self._vectors[keep]

        logger.debug(f"Removed {removed} vectors")
        return removed

    def search(self, query_vector: Sequence[float], k: int) -> List[Tuple[int, float]]:
        query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
        if query.shape[0] != self.dimension:
            raise VectorStoreError(
                "Query vector has wrong dimension",
                f"expected {self.dimension}, got {query.shape[0]}",
            )
        if k <= 0:
            return []

        query = self._normalize(query)

        with self._lock:
            ids = self._ids
            vectors = self._vectors

        if ids.size == 0:
            return []

        scores = vectors @ query
        # Primary key: descending score, secondary: ascending id
        order = np.lexsort((ids, -scores))[:k]
        return [(int(ids[i]), float(scores[i])) for i in order]

    def count(self) -> int:
        with self._lock:
            return int(self._ids.size)

    def contains(self, vector_id: int) -> bool:
        """Check whether an id is currently stored."""
        with self._lock:
            return bool(np.any(self._ids == vector_id))

    def ids(self) -> List[int]:
        """All stored ids in ascending order."""
        with self._lock:
            return sorted(int(i) for i in self._ids)
