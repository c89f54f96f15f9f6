"""
Index synchronizer that keeps a vector store consistent with a watched source tree.

Performs a synchronous bulk scan at startup, then applies change notifications
as atomic per-file updates. Each path carries a generation counter that is
bumped, in notification order, by a single dispatcher thread; workers read,
chunk and embed concurrently, and an update is committed only if its
generation is still the latest one for its path, so a slow embedding for an
older notification never overwrites a newer result.
"""

import contextlib
import hashlib
import logging
import os
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, replace
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

import numpy as np

from ..config import SyncConfig
from ..exceptions import (
    EmbeddingError,
    SynchronizerStateError,
    WatchTerminatedError,
)
from ..indexing.chunk_splitter import Chunk, ChunkSplitter, read_text_file
from ..indexing.file_finder import FileFinder
from ..storage.vector_store import VectorStore
from ..watch.file_watch import FileEvent, FileEventKind, FileWatch, WatchdogFileWatch
from .embedding_calculator import EmbeddingCalculator
from .embedding_provider import EmbeddingProvider

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class WatchedFile:
    """Index state of one tracked file.

    chunk_ids are exactly the vector store ids representing the content last
    accepted for this path, in chunk order.
    """

    path: str
    generation: int
    chunk_ids: Tuple[int, ...]
    content_hash: str


@dataclass
class IndexUpdate:
    """In-flight unit of work for one path."""

    path: str
    generation: int
    chunks: List[Chunk]
    content_hash: str
    embeddings: Optional[np.ndarray] = None


@dataclass(frozen=True)
class SearchResult:
    """A search hit resolved to the file chunk it represents."""

    id: int
    score: float
    path: str
    chunk_index: int


@dataclass
class BulkScanResult:
    """Summary of the startup bulk scan."""

    files_found: int = 0
    files_indexed: int = 0
    chunks_indexed: int = 0
    failures: int = 0
    duration: float = 0.0


@dataclass
class SyncStatistics:
    """Counters for notifications and update outcomes."""

    events_received: int = 0
    events_ignored: int = 0
    events_dropped: int = 0
    updates_committed: int = 0
    updates_unchanged: int = 0
    renames_relocated: int = 0
    deletes_committed: int = 0
    stale_updates_discarded: int = 0
    update_failures: int = 0


class UpdateOutcome(Enum):
    """How a single unit of work ended."""

    COMMITTED = "committed"
    UNCHANGED = "unchanged"
    RELOCATED = "relocated"
    DELETED = "deleted"
    STALE = "stale"
    SKIPPED = "skipped"
    FAILED = "failed"


class _SourceUnavailable(Exception):
    """The file vanished or is no longer indexable."""


def _hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8", "surrogatepass")).hexdigest()


class IndexSynchronizer:
    """Keeps a vector store in step with the files under a root directory."""

    _POLL_INTERVAL = 0.1

    def __init__(
        self,
        config: SyncConfig,
        embedding_provider: EmbeddingProvider,
        vector_store: VectorStore,
        file_watch: Optional[FileWatch] = None,
        on_fatal_error: Optional[Callable[[Exception], None]] = None,
    ):
        """Initialize the synchronizer.

        Args:
            config: Synchronizer configuration
            embedding_provider: Provider used to embed every chunk
            vector_store: Store receiving chunk vectors and serving searches
            file_watch: Source of change notifications (watchdog by default)
            on_fatal_error: Called from the dispatcher thread if the watch dies
        """
        self.config = config
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store
        self.file_watch = file_watch or WatchdogFileWatch()
        self.on_fatal_error = on_fatal_error

        self.file_finder = FileFinder(config)
        self.chunk_splitter = ChunkSplitter(config.max_chunk_chars)
        self.embedding_calculator = EmbeddingCalculator(
            embedding_provider,
            thread_count=config.embedding_threads,
            expected_dimension=config.embedding_dimension,
            max_retries=config.embedding_max_retries,
            retry_delay=config.embedding_retry_delay,
            exponential_backoff=config.exponential_backoff,
        )

        # Entries are replaced whole, only while holding that path's lock
        self._files: Dict[str, WatchedFile] = {}

        # Latest generation handed out per path, kept after deletes
        self._generations: Dict[str, int] = {}
        self._generation_lock = threading.Lock()

        self._path_locks: Dict[str, threading.Lock] = {}
        self._path_locks_guard = threading.Lock()

        self._next_id = 1
        self._id_lock = threading.Lock()

        # Ids whose removal from the store failed; retried after later commits
        self._orphan_ids: Set[int] = set()
        self._orphan_lock = threading.Lock()

        self._events: "queue.Queue[FileEvent]" = queue.Queue(
            maxsize=config.max_pending_events
        )
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatcher_thread: Optional[threading.Thread] = None

        self._lifecycle_lock = threading.Lock()
        self._started = False
        self._stopped = False
        self._stop_event = threading.Event()
        self._fatal_error: Optional[WatchTerminatedError] = None

        # Queued notifications plus submitted work items
        self._outstanding = 0
        self._idle_condition = threading.Condition()

        self._stats = SyncStatistics()
        self._stats_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> BulkScanResult:
        """Subscribe to changes, bulk-scan the tree, then process notifications.

        Notifications arriving during the bulk scan are queued and replayed
        once the scan completes.

        Returns:
            Summary of the bulk scan

        Raises:
            SynchronizerStateError: If already started or stopped
            FileNotFoundError: If the root path is not a directory
        """
        with self._lifecycle_lock:
            if self._stopped:
                raise SynchronizerStateError("Index synchronizer cannot be restarted")
            if self._started:
                raise SynchronizerStateError("Index synchronizer already started")
            self._started = True

        root = self.file_finder.root_path
        if not root.is_dir():
            raise FileNotFoundError(f"Root path is not a directory: {root}")

        logger.info(f"Starting index synchronizer for {root}")

        self.embedding_calculator.start()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.worker_count, thread_name_prefix="IndexSync"
        )

        try:
            # Subscribe first so nothing that happens during the scan is lost
            self.file_watch.subscribe(root, self.handle_event, recursive=True)
            result = self._bulk_scan()
        except BaseException:
            self.stop(wait=False)
            raise

        self._dispatcher_thread = threading.Thread(
            target=self._dispatch_loop, name="IndexSyncDispatcher", daemon=True
        )
        self._dispatcher_thread.start()

        logger.info(
            f"Bulk scan indexed {result.files_indexed}/{result.files_found} files "
            f"({result.chunks_indexed} chunks, {result.failures} failures) "
            f"in {result.duration:.2f}s"
        )
        return result

    def stop(self, wait: bool = True) -> None:
        """Stop watching and processing.

        Work that has not started is dropped; work already running may finish
        (wait=True blocks until it has). Calling stop more than once is a no-op.
        """
        with self._lifecycle_lock:
            if self._stopped:
                return
            self._stopped = True
            was_started = self._started

        self._stop_event.set()
        if not was_started:
            return

        logger.info("Stopping index synchronizer")

        self.file_watch.unsubscribe()

        dispatcher = self._dispatcher_thread
        if (
            dispatcher is not None
            and dispatcher.is_alive()
            and dispatcher is not threading.current_thread()
        ):
            dispatcher.join(timeout=self.config.shutdown_timeout)
            if dispatcher.is_alive():
                logger.warning("Dispatcher thread did not stop cleanly")

        self.embedding_calculator.request_cancellation()
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=True)
        self.embedding_calculator.shutdown(wait=wait)

        # Queued notifications and cancelled work will never run
        while True:
            try:
                self._events.get_nowait()
            except queue.Empty:
                break
        with self._idle_condition:
            self._outstanding = 0
            self._idle_condition.notify_all()

        logger.info("Index synchronizer stopped")

    def is_running(self) -> bool:
        """True between a successful start() and stop()."""
        return self._started and not self._stop_event.is_set()

    def check_health(self) -> None:
        """Raise the fatal error that ended notification processing, if any.

        Raises:
            WatchTerminatedError: If the watch subscription ended unexpectedly
        """
        if self._fatal_error is not None:
            raise self._fatal_error

    def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no notification is queued and no update is in flight.

        Returns:
            True if idle was reached, False on timeout
        """
        with self._idle_condition:
            return self._idle_condition.wait_for(
                lambda: self._outstanding == 0, timeout=timeout
            )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query_vector: Sequence[float], k: int) -> List[Tuple[int, float]]:
        """Find the k chunk ids nearest to query_vector (passthrough to the store)."""
        return self.vector_store.search(query_vector, k)

    def search_text(self, query: str, k: int) -> List[SearchResult]:
        """Embed query text and return hits resolved to file chunks.

        Hits whose id no longer belongs to a tracked file are left out.

        Raises:
            EmbeddingError: If the query cannot be embedded
        """
        query_vector = self.embedding_calculator.embed_texts([query])[0]
        hits = self.search(query_vector, k)

        locations = {
            chunk_id: (watched.path, index)
            for watched in self._files.copy().values()
            for index, chunk_id in enumerate(watched.chunk_ids)
        }

        results = []
        for chunk_id, score in hits:
            location = locations.get(chunk_id)
            if location is None:
                continue
            results.append(
                SearchResult(
                    id=chunk_id, score=score, path=location[0], chunk_index=location[1]
                )
            )
        return results

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_watched_file(self, path: PathLike) -> Optional[WatchedFile]:
        """Current index state of a path, or None if it is not tracked."""
        return self._files.get(self._key(path))

    def watched_paths(self) -> List[str]:
        """All tracked paths, sorted."""
        return sorted(self._files.copy())

    def get_statistics(self) -> Dict[str, Any]:
        """Get synchronizer statistics."""
        files = self._files.copy()
        with self._stats_lock:
            stats = asdict(self._stats)
        with self._orphan_lock:
            orphaned = len(self._orphan_ids)

        stats.update(
            {
                "watched_files": len(files),
                "indexed_chunks": sum(len(f.chunk_ids) for f in files.values()),
                "pending_events": self._events.qsize(),
                "orphaned_ids": orphaned,
                "is_running": self.is_running(),
                "embedding": asdict(self.embedding_calculator.get_stats()),
            }
        )
        return stats

    # ------------------------------------------------------------------
    # Notification intake
    # ------------------------------------------------------------------

    def handle_event(self, event: FileEvent) -> None:
        """Queue a change notification (the FileWatch callback).

        Notifications for paths that can never be indexed are ignored here.
        When the queue is full, either blocks or drops the oldest queued
        notification, depending on backpressure_policy.
        """
        if self._stop_event.is_set() or self._fatal_error is not None:
            return

        self._count("events_received")

        if not self._is_relevant(event):
            self._count("events_ignored")
            logger.debug(f"Ignoring {event.kind.value} notification for {event.path}")
            return

        with self._idle_condition:
            self._outstanding += 1

        if self.config.backpressure_policy == "drop_oldest":
            self._enqueue_dropping_oldest(event)
        else:
            self._enqueue_blocking(event)

    def _is_relevant(self, event: FileEvent) -> bool:
        if event.is_directory:
            return self.file_finder.is_within_root(event.path) or (
                event.old_path is not None
                and self.file_finder.is_within_root(event.old_path)
            )
        if self.file_finder.is_candidate_path(event.path):
            return True
        return event.old_path is not None and self.file_finder.is_candidate_path(
            event.old_path
        )

    def _enqueue_blocking(self, event: FileEvent) -> None:
        while not self._stop_event.is_set():
            try:
                self._events.put(event, timeout=self._POLL_INTERVAL)
                return
            except queue.Full:
                continue
        self._task_done()

    def _enqueue_dropping_oldest(self, event: FileEvent) -> None:
        while True:
            try:
                self._events.put_nowait(event)
                return
            except queue.Full:
                pass

            try:
                dropped = self._events.get_nowait()
            except queue.Empty:
                continue

            self._count("events_dropped")
            self._task_done()
            logger.warning(
                f"Notification queue full, dropped oldest "
                f"{dropped.kind.value} notification for {dropped.path}"
            )

    def _task_done(self) -> None:
        with self._idle_condition:
            self._outstanding = max(0, self._outstanding - 1)
            if self._outstanding == 0:
                self._idle_condition.notify_all()

    # ------------------------------------------------------------------
    # Dispatch: the only place generations are assigned for live events
    # ------------------------------------------------------------------

    def _dispatch_loop(self) -> None:
        logger.debug("Dispatcher started")

        while not self._stop_event.is_set():
            try:
                event = self._events.get(timeout=self._POLL_INTERVAL)
            except queue.Empty:
                if not self.file_watch.is_alive() and not self._stop_event.is_set():
                    self._report_fatal(
                        WatchTerminatedError(
                            "File watch subscription ended unexpectedly",
                            str(self.file_finder.root_path),
                        )
                    )
                    break
                continue

            try:
                works = self._plan(event)
            except Exception:
                logger.exception(f"Failed to dispatch notification for {event.path}")
                works = []

            if not works:
                self._task_done()
                continue

            # One outstanding unit per work item instead of one per event
            with self._idle_condition:
                self._outstanding += len(works) - 1
            for work in works:
                self._submit(work)

        logger.debug("Dispatcher stopped")

    def _discard_pending(self) -> None:
        """Drop queued notifications that will never be dispatched."""
        discarded = 0
        while True:
            try:
                self._events.get_nowait()
            except queue.Empty:
                break
            discarded += 1
            self._task_done()

        if discarded:
            logger.warning(f"Discarded {discarded} undispatched notifications")

    def _plan(self, event: FileEvent) -> List[Callable[[], UpdateOutcome]]:
        """Assign generations for an event and return the work that applies it."""
        if event.is_directory:
            return self._plan_directory(event)

        is_candidate = self.file_finder.is_candidate_path

        if event.kind in (FileEventKind.CREATED, FileEventKind.MODIFIED):
            if not is_candidate(event.path):
                return []
            return [self._plan_update(event.path)]

        if event.kind is FileEventKind.DELETED:
            if not is_candidate(event.path):
                return []
            return [self._plan_delete(event.path)]

        # RENAMED
        old_path = event.old_path
        old_ok = old_path is not None and is_candidate(old_path)
        new_ok = is_candidate(event.path)

        if old_ok and new_ok:
            old_key, new_key = self._key(old_path), self._key(event.path)
            if old_key == new_key:
                return [self._plan_update(event.path)]
            g_old, g_new = self._next_generations(old_key, new_key)
            return [partial(self._run_rename, old_key, g_old, new_key, g_new)]

        if old_ok:
            # Moved to a name that is not indexed
            return [self._plan_delete(old_path)]

        if new_ok:
            # Moved in from a name that was not indexed
            return [self._plan_update(event.path)]

        return []

    def _plan_directory(self, event: FileEvent) -> List[Callable[[], UpdateOutcome]]:
        """Expand a directory delete or move into per-file work."""
        if event.kind is FileEventKind.DELETED:
            return [self._plan_delete(key) for key in self._known_keys_under(event.path)]

        if event.kind is not FileEventKind.RENAMED:
            return []

        works: List[Callable[[], UpdateOutcome]] = []
        moved_to: Set[str] = set()

        if event.old_path is not None:
            old_dir = self._key(event.old_path)
            for old_key in self._known_keys_under(old_dir):
                new_path = Path(event.path) / os.path.relpath(old_key, old_dir)
                moved_to.add(self._key(new_path))
                works.extend(
                    self._plan(FileEvent(FileEventKind.RENAMED, new_path, Path(old_key)))
                )

        # Files arriving with the directory that were not indexed under the old name
        for file_path in self.file_finder.find_files(event.path):
            if self._key(file_path) not in moved_to:
                works.append(self._plan_update(file_path))

        return works

    def _plan_update(self, path: PathLike) -> Callable[[], UpdateOutcome]:
        key = self._key(path)
        return partial(self._run_update, key, self._next_generation(key))

    def _plan_delete(self, path: PathLike) -> Callable[[], UpdateOutcome]:
        key = self._key(path)
        return partial(self._commit_delete, key, self._next_generation(key))

    def _known_keys_under(self, directory: PathLike) -> List[str]:
        """Paths below directory that have ever been given a generation."""
        prefix = os.path.join(self._key(directory), "")
        with self._generation_lock:
            return sorted(key for key in self._generations if key.startswith(prefix))

    def _submit(self, work: Callable[[], UpdateOutcome]) -> None:
        def run() -> None:
            try:
                if not self._stop_event.is_set():
                    work()
            except Exception:
                self._count("update_failures")
                logger.exception("Unexpected error in index update worker")
            finally:
                self._task_done()

        try:
            if self._executor is None:
                raise RuntimeError("Worker pool not started")
            self._executor.submit(run)
        except RuntimeError:
            # Pool already shut down
            self._task_done()

    def _report_fatal(self, error: WatchTerminatedError) -> None:
        self._fatal_error = error
        self._discard_pending()
        logger.error(f"Index synchronizer stopped processing notifications: {error}")
        if self.on_fatal_error is not None:
            try:
                self.on_fatal_error(error)
            except Exception:
                logger.exception("on_fatal_error callback failed")

    # ------------------------------------------------------------------
    # Bulk scan
    # ------------------------------------------------------------------

    def _bulk_scan(self) -> BulkScanResult:
        start_time = time.time()
        files = self.file_finder.find_files()
        result = BulkScanResult(files_found=len(files))

        for file_path in files:
            if self._stop_event.is_set():
                break

            key = self._key(file_path)
            try:
                outcome = self._run_update(key, self._next_generation(key))
            except Exception:
                self._count("update_failures")
                logger.exception(f"Unexpected error indexing {key}")
                outcome = UpdateOutcome.FAILED

            if outcome in (UpdateOutcome.COMMITTED, UpdateOutcome.UNCHANGED):
                result.files_indexed += 1
                watched = self._files.get(key)
                if watched is not None:
                    result.chunks_indexed += len(watched.chunk_ids)
            elif outcome is UpdateOutcome.FAILED:
                result.failures += 1

        result.duration = time.time() - start_time
        return result

    # ------------------------------------------------------------------
    # Per-path work
    # ------------------------------------------------------------------

    def _run_update(self, key: str, generation: int) -> UpdateOutcome:
        """Apply a created/modified notification."""
        if not self._is_current(key, generation):
            self._count("stale_updates_discarded")
            return UpdateOutcome.STALE

        try:
            text = self._read_source(key)
        except _SourceUnavailable as e:
            logger.debug(f"{e}; dropping any index entry")
            return self._commit_delete(key, generation)
        except OSError as e:
            self._count("update_failures")
            logger.warning(f"Failed to read {key}, keeping previous index state: {e}")
            return UpdateOutcome.FAILED

        return self._index_content(key, generation, text, _hash_text(text))

    def _run_rename(
        self, old_key: str, g_old: int, new_key: str, g_new: int
    ) -> UpdateOutcome:
        """Apply a rename, moving the entry when the content did not change."""
        if old_key not in self._files:
            logger.debug(f"Rename source {old_key} is not tracked; indexing {new_key}")
            return self._run_update(new_key, g_new)

        try:
            text = self._read_source(new_key)
        except _SourceUnavailable as e:
            logger.debug(f"{e}; dropping both rename paths")
            self._commit_delete(old_key, g_old)
            return self._commit_delete(new_key, g_new)
        except OSError as e:
            self._count("update_failures")
            logger.warning(f"Failed to read {new_key}, keeping previous index state: {e}")
            return UpdateOutcome.FAILED

        content_hash = _hash_text(text)
        if self._commit_relocation(old_key, g_old, new_key, g_new, content_hash):
            self._purge_orphans()
            return UpdateOutcome.RELOCATED

        # Content changed with the move, or a newer notification owns a path
        logger.debug(f"Rename {old_key} -> {new_key} applied as delete + create")
        self._commit_delete(old_key, g_old)
        return self._index_content(new_key, g_new, text, content_hash)

    def _read_source(self, key: str) -> str:
        path = Path(key)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            raise _SourceUnavailable(f"{key} no longer exists")

        if not path.is_file():
            raise _SourceUnavailable(f"{key} is not a regular file")
        if size > self.config.max_file_size:
            raise _SourceUnavailable(
                f"{key} is {size} bytes, above max_file_size {self.config.max_file_size}"
            )

        try:
            return read_text_file(path)
        except FileNotFoundError:
            raise _SourceUnavailable(f"{key} no longer exists")

    def _index_content(
        self, key: str, generation: int, text: str, content_hash: str
    ) -> UpdateOutcome:
        """Chunk and embed content, then commit it if still current."""
        update = IndexUpdate(
            path=key,
            generation=generation,
            chunks=self.chunk_splitter.split(text),
            content_hash=content_hash,
        )

        previous = self._files.get(key)
        if previous is None or previous.content_hash != content_hash:
            if not self._is_current(key, generation):
                self._count("stale_updates_discarded")
                return UpdateOutcome.STALE

            try:
                update.embeddings = self.embedding_calculator.embed_texts(
                    [chunk.text for chunk in update.chunks]
                )
            except EmbeddingError as e:
                self._count("update_failures")
                if self._stop_event.is_set():
                    logger.debug(f"Abandoned update of {key} during shutdown: {e}")
                else:
                    logger.warning(
                        f"Embedding failed for {key}, keeping previous index state: {e}"
                    )
                return UpdateOutcome.FAILED

        outcome = self._commit_update(update)
        if outcome is UpdateOutcome.COMMITTED:
            self._purge_orphans()
        return outcome

    def _commit_update(self, update: IndexUpdate) -> UpdateOutcome:
        """Swap a path's chunk ids for the update's, adding before removing."""
        key = update.path

        with self._path_lock(key):
            if not self._is_current(key, update.generation):
                self._count("stale_updates_discarded")
                logger.debug(
                    f"Discarding stale update of {key} (generation {update.generation})"
                )
                return UpdateOutcome.STALE

            previous = self._files.get(key)

            if update.embeddings is None:
                # Content matched the tracked entry when the update was prepared
                if previous is None or previous.content_hash != update.content_hash:
                    self._count("stale_updates_discarded")
                    return UpdateOutcome.STALE
                self._files[key] = replace(previous, generation=update.generation)
                self._count("updates_unchanged")
                return UpdateOutcome.UNCHANGED

            new_ids = self._allocate_ids(len(update.chunks))
            if new_ids:
                try:
                    self.vector_store.add_with_ids(update.embeddings, new_ids)
                except Exception as e:
                    # The add may have partially landed
                    self._add_orphans(new_ids)
                    self._count("update_failures")
                    logger.warning(
                        f"Vector store add failed for {key}, keeping previous index state: {e}"
                    )
                    return UpdateOutcome.FAILED

            if previous is not None and previous.chunk_ids:
                self._remove_from_store(previous.chunk_ids, key)

            self._files[key] = WatchedFile(
                path=key,
                generation=update.generation,
                chunk_ids=tuple(new_ids),
                content_hash=update.content_hash,
            )
            self._count("updates_committed")

        logger.debug(
            f"Indexed {key} (generation {update.generation}, {len(new_ids)} chunks)"
        )
        return UpdateOutcome.COMMITTED

    def _commit_delete(self, key: str, generation: int) -> UpdateOutcome:
        """Drop a path's entry and its ids if the generation is still current."""
        with self._path_lock(key):
            if not self._is_current(key, generation):
                self._count("stale_updates_discarded")
                return UpdateOutcome.STALE

            previous = self._files.pop(key, None)
            if previous is None:
                return UpdateOutcome.SKIPPED

            if previous.chunk_ids:
                self._remove_from_store(previous.chunk_ids, key)
            self._count("deletes_committed")

        logger.debug(f"Removed {key} from index ({len(previous.chunk_ids)} chunks)")
        self._purge_orphans()
        return UpdateOutcome.DELETED

    def _commit_relocation(
        self, old_key: str, g_old: int, new_key: str, g_new: int, content_hash: str
    ) -> bool:
        """Move old_key's entry to new_key without re-embedding.

        Returns:
            False if the entry cannot be moved as-is (content differs, entry
            gone, or a newer notification exists for either path)
        """
        with self._path_locks_for(old_key, new_key):
            if not (
                self._is_current(old_key, g_old) and self._is_current(new_key, g_new)
            ):
                return False

            entry = self._files.get(old_key)
            if entry is None or entry.content_hash != content_hash:
                return False

            displaced = self._files.get(new_key)
            # The moved entry belongs to new_key now, so it carries new_key's generation
            self._files[new_key] = replace(entry, path=new_key, generation=g_new)
            del self._files[old_key]

            if displaced is not None and displaced.chunk_ids:
                self._remove_from_store(displaced.chunk_ids, new_key)
            self._count("renames_relocated")

        logger.debug(
            f"Moved index entry {old_key} -> {new_key} ({len(entry.chunk_ids)} chunks)"
        )
        return True

    # ------------------------------------------------------------------
    # Generations, locks and ids
    # ------------------------------------------------------------------

    @staticmethod
    def _key(path: PathLike) -> str:
        return os.path.abspath(os.fspath(path))

    def _next_generation(self, key: str) -> int:
        with self._generation_lock:
            generation = self._generations.get(key, 0) + 1
            self._generations[key] = generation
            return generation

    def _next_generations(self, *keys: str) -> Tuple[int, ...]:
        with self._generation_lock:
            generations = []
            for key in keys:
                generation = self._generations.get(key, 0) + 1
                self._generations[key] = generation
                generations.append(generation)
            return tuple(generations)

    def _is_current(self, key: str, generation: int) -> bool:
        with self._generation_lock:
            return self._generations.get(key) == generation

    def _path_lock(self, key: str) -> threading.Lock:
        with self._path_locks_guard:
            lock = self._path_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._path_locks[key] = lock
            return lock

    @contextlib.contextmanager
    def _path_locks_for(self, *keys: str) -> Iterator[None]:
        # Sorted acquisition order prevents deadlock between two renames
        with contextlib.ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self._path_lock(key))
            yield

    def _allocate_ids(self, count: int) -> List[int]:
        with self._id_lock:
            first = self._next_id
            self._next_id += count
        return list(range(first, first + count))

    # ------------------------------------------------------------------
    # Store cleanup
    # ------------------------------------------------------------------

    def _remove_from_store(self, ids: Sequence[int], key: str) -> None:
        try:
            self.vector_store.remove_ids(list(ids))
        except Exception as e:
            self._add_orphans(ids)
            logger.warning(
                f"Vector store remove failed for {len(ids)} ids of {key}, "
                f"will retry later: {e}"
            )

    def _add_orphans(self, ids: Sequence[int]) -> None:
        with self._orphan_lock:
            self._orphan_ids.update(ids)

    def _purge_orphans(self) -> None:
        with self._orphan_lock:
            if not self._orphan_ids:
                return
            pending = sorted(self._orphan_ids)
            self._orphan_ids.clear()

        try:
            self.vector_store.remove_ids(pending)
            logger.info(f"Removed {len(pending)} orphaned ids from vector store")
        except Exception as e:
            self._add_orphans(pending)
            logger.warning(f"Vector store remove of orphaned ids failed again: {e}")

    def _count(self, field: str) -> None:
        with self._stats_lock:
            setattr(self._stats, field, getattr(self._stats, field) + 1)
