"""
Multi-threaded embedding calculation for the chunks of one index update.

Provides thread pool management for calculating the embeddings of every chunk
of a file in parallel, while keeping the all-or-nothing contract of an update:
either every chunk gets a vector or the whole batch fails.
"""

import logging
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..exceptions import EmbeddingError, FatalEmbeddingError, TransientEmbeddingError
from .embedding_provider import EmbeddingProvider

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingCalculationStats:
    """Statistics for embedding calculation."""

    total_chunks_submitted: int = 0
    total_chunks_completed: int = 0
    total_chunks_failed: int = 0
    total_retries: int = 0
    total_processing_time: float = 0.0

    @property
    def average_processing_time(self) -> float:
        if self.total_chunks_completed == 0:
            return 0.0
        return self.total_processing_time / self.total_chunks_completed


class EmbeddingCalculator:
    """Manages parallel per-chunk embedding using a thread pool."""

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        thread_count: int,
        expected_dimension: int,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        exponential_backoff: bool = True,
    ):
        """
        Initialize embedding calculator.

        Args:
            embedding_provider: Provider for generating embeddings
            thread_count: Number of worker threads
            expected_dimension: Dimension every returned vector must have
            max_retries: Retries for TransientEmbeddingError per chunk
            retry_delay: Initial delay between retries in seconds
            exponential_backoff: Double the delay after every retry
        """
        self.embedding_provider = embedding_provider
        self.thread_count = thread_count
        self.expected_dimension = expected_dimension
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.exponential_backoff = exponential_backoff

        self.executor: Optional[ThreadPoolExecutor] = None
        self.is_running = False
        self._lifecycle_lock = threading.Lock()

        # Cancellation support
        self.cancellation_event = threading.Event()

        self.stats = EmbeddingCalculationStats()
        self.stats_lock = threading.Lock()

    def start(self) -> None:
        """Start the thread pool."""
        with self._lifecycle_lock:
            if self.is_running:
                return

            self.executor = ThreadPoolExecutor(
                max_workers=self.thread_count, thread_name_prefix="EmbeddingCalc"
            )
            self.is_running = True

        logger.info(
            f"Started embedding thread pool with {self.thread_count} workers "
            f"({self.embedding_provider.get_provider_name()})"
        )

    def request_cancellation(self) -> None:
        """Make pending and future embedding calls fail fast."""
        self.cancellation_event.set()
        logger.info("Embedding cancellation requested")

    def shutdown(self, wait: bool = True) -> None:
        """Shut down the thread pool, dropping chunks that have not started."""
        with self._lifecycle_lock:
            if not self.is_running or self.executor is None:
                return
            executor = self.executor
            self.executor = None
            self.is_running = False

        executor.shutdown(wait=wait, cancel_futures=True)
        logger.info("Embedding thread pool shut down")

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        """Embed every text concurrently.

        Args:
            texts: Chunk texts, in chunk order

        Returns:
            float32 array of shape (len(texts), expected_dimension), rows in input order

        Raises:
            EmbeddingError: If any chunk fails; no partial result is returned
        """
        if not texts:
            return np.empty((0, self.expected_dimension), dtype=np.float32)

        if self.cancellation_event.is_set():
            raise EmbeddingError("Embedding cancelled")

        if not self.is_running:
            self.start()

        executor = self.executor
        if executor is None:
            raise EmbeddingError("Embedding calculator is not running")

        futures: List["Future[np.ndarray]"] = []
        try:
            for text in texts:
                futures.append(executor.submit(self._embed_one, text))
        except RuntimeError as e:
            # Executor shut down between the check and submit
            for future in futures:
                future.cancel()
            raise EmbeddingError("Embedding calculator is not running", str(e))

        with self.stats_lock:
            self.stats.total_chunks_submitted += len(futures)

        vectors = []
        try:
            for future in futures:
                vectors.append(future.result())
        except CancelledError:
            raise EmbeddingError("Embedding cancelled")
        finally:
            if len(vectors) != len(futures):
                for future in futures:
                    future.cancel()

        return np.vstack(vectors)

    def _embed_one(self, text: str) -> np.ndarray:
        """Embed a single chunk, retrying transient failures."""
        start_time = time.time()
        attempt = 0

        while True:
            if self.cancellation_event.is_set():
                self._record_failure()
                raise EmbeddingError("Embedding cancelled")

            try:
                raw_vector = self.embedding_provider.get_embedding(text)
                vector = self._validate(raw_vector)
            except TransientEmbeddingError as e:
                if attempt >= self.max_retries:
                    self._record_failure()
                    raise

                wait_time = self.retry_delay * (
                    2**attempt if self.exponential_backoff else 1
                )
                logger.warning(
                    f"Transient embedding error, retrying in {wait_time:.2f}s "
                    f"(attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                with self.stats_lock:
                    self.stats.total_retries += 1

                if self.cancellation_event.wait(timeout=wait_time):
                    self._record_failure()
                    raise EmbeddingError("Embedding cancelled")
                attempt += 1
                continue
            except EmbeddingError:
                self._record_failure()
                raise
            except Exception as e:
                self._record_failure()
                raise FatalEmbeddingError(
                    f"Embedding provider {self.embedding_provider.get_provider_name()} failed",
                    str(e),
                ) from e

            with self.stats_lock:
                self.stats.total_chunks_completed += 1
                self.stats.total_processing_time += time.time() - start_time
            return vector

    def _validate(self, raw_vector: Sequence[float]) -> np.ndarray:
        vector = np.asarray(raw_vector, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.expected_dimension:
            raise FatalEmbeddingError(
                "Embedding has wrong dimension",
                f"expected {self.expected_dimension}, got shape {vector.shape}",
            )
        if not np.all(np.isfinite(vector)):
            raise FatalEmbeddingError("Embedding contains non-finite values")
        return vector

    def _record_failure(self) -> None:
        with self.stats_lock:
            self.stats.total_chunks_failed += 1

    def get_stats(self) -> EmbeddingCalculationStats:
        """Get a snapshot of the current statistics."""
        with self.stats_lock:
            return EmbeddingCalculationStats(
                total_chunks_submitted=self.stats.total_chunks_submitted,
                total_chunks_completed=self.stats.total_chunks_completed,
                total_chunks_failed=self.stats.total_chunks_failed,
                total_retries=self.stats.total_retries,
                total_processing_time=self.stats.total_processing_time,
            )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
