"""
File watch subscription that turns filesystem activity into change notifications.

Defines the notification model consumed by the index synchronizer and a
watchdog-backed implementation for a recursive directory subtree.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class FileEventKind(Enum):
    """Kinds of change notifications."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class FileEvent:
    """A single change notification for one path.

    For RENAMED events, old_path is the source and path the destination.
    is_directory marks a directory DELETED or RENAMED, which stands for every
    file below it.
    """

    kind: FileEventKind
    path: Path
    old_path: Optional[Path] = None
    is_directory: bool = False

    def __post_init__(self):
        if self.kind is FileEventKind.RENAMED and self.old_path is None:
            raise ValueError("RENAMED events require old_path")


EventCallback = Callable[[FileEvent], None]


class FileWatch(ABC):
    """Source of change notifications for a directory subtree.

    Notifications may be duplicated, dropped or delivered out of order
    relative to the real filesystem state; consumers must tolerate that.
    """

    @abstractmethod
    def subscribe(
        self, root: Path, callback: EventCallback, recursive: bool = True
    ) -> None:
        """Start delivering notifications for root to callback."""
        pass

    @abstractmethod
    def unsubscribe(self) -> None:
        """Stop delivering notifications. Safe to call more than once."""
        pass

    @abstractmethod
    def is_alive(self) -> bool:
        """True while the subscription is active and delivering notifications."""
        pass


class _WatchdogEventHandler(FileSystemEventHandler):
    """Translates watchdog events into FileEvents."""

    def __init__(self, callback: EventCallback):
        super().__init__()
        self.callback = callback

    def _deliver(self, event: FileEvent) -> None:
        try:
            self.callback(event)
        except Exception:
            # Keep the observer thread alive
            logger.exception(f"Change notification callback failed for {event.path}")

    def on_created(self, event: FileSystemEvent):
        """Handle file creation events."""
        if event.is_directory:
            return
        self._deliver(FileEvent(FileEventKind.CREATED, Path(event.src_path)))

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification events."""
        if event.is_directory:
            return
        self._deliver(FileEvent(FileEventKind.MODIFIED, Path(event.src_path)))

    def on_deleted(self, event: FileSystemEvent):
        """Handle file and directory deletion events."""
        self._deliver(
            FileEvent(
                FileEventKind.DELETED,
                Path(event.src_path),
                is_directory=event.is_directory,
            )
        )

    def on_moved(self, event: FileSystemEvent):
        """Handle file and directory moves as a single rename notification."""
        self._deliver(
            FileEvent(
                FileEventKind.RENAMED,
                Path(event.dest_path),
                old_path=Path(event.src_path),
                is_directory=event.is_directory,
            )
        )


class WatchdogFileWatch(FileWatch):
    """FileWatch backed by a watchdog Observer."""

    def __init__(self, join_timeout: float = 5.0):
        self.join_timeout = join_timeout
        self.observer: Optional[Observer] = None
        self._lock = threading.Lock()

    def subscribe(
        self, root: Path, callback: EventCallback, recursive: bool = True
    ) -> None:
        with self._lock:
            if self.observer is not None:
                raise RuntimeError("File watch is already subscribed")

            observer = Observer()
            observer.schedule(
                _WatchdogEventHandler(callback), str(root), recursive=recursive
            )
            observer.start()
            self.observer = observer

        logger.info(f"File system observer started for {root}")

    def unsubscribe(self) -> None:
        with self._lock:
            observer = self.observer
            self.observer = None

        if observer is None:
            return

        if observer.is_alive():
            observer.stop()
            observer.join(timeout=self.join_timeout)
        logger.info("File system observer stopped")

    def is_alive(self) -> bool:
        with self._lock:
            return self.observer is not None and self.observer.is_alive()
