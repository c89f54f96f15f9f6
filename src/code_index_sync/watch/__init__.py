"""Filesystem change notification sources."""

from .file_watch import FileEvent, FileEventKind, FileWatch, WatchdogFileWatch

__all__ = ["FileEvent", "FileEventKind", "FileWatch", "WatchdogFileWatch"]
