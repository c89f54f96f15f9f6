"""File discovery and filtering for indexing."""

import logging
import os
from pathlib import Path
from typing import List, Optional, Union

import pathspec

from ..config import SyncConfig

logger = logging.getLogger(__name__)


class FileFinder:
    """Finds and filters files for indexing based on configuration."""

    def __init__(self, config: SyncConfig):
        self.config = config
        self.root_path = Path(os.path.abspath(config.root_path))
        self._create_exclude_spec()

    def _create_exclude_spec(self) -> None:
        """Create pathspec for excluded directories."""
        patterns = []
        for exclude_dir in self.config.exclude_dirs:
            # /** suffix excludes all contents under the directory
            patterns.append(f"{exclude_dir}/**")  # From root: build/**
            patterns.append(f"**/{exclude_dir}/**")  # Nested: any/path/build/**

        self.exclude_spec = pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def _relative_posix(self, file_path: Path) -> str:
        """Path relative to the root in POSIX form. Raises ValueError outside root."""
        return Path(os.path.abspath(file_path)).relative_to(self.root_path).as_posix()

    def is_candidate_path(self, file_path: Union[str, Path]) -> bool:
        """Check extension and excluded directories without touching the filesystem.

        Used for live notifications, including deletes where the file is gone.
        """
        file_path = Path(file_path)
        if not self.config.matches_extension(file_path):
            return False

        try:
            relative = self._relative_posix(file_path)
        except ValueError:
            # Outside the watched root
            return False

        return not self.exclude_spec.match_file(relative)

    def is_within_root(self, path: Union[str, Path]) -> bool:
        """True if path is the root or lies below it."""
        try:
            self._relative_posix(Path(path))
        except ValueError:
            return False
        return True

    def is_indexable_file(self, file_path: Union[str, Path]) -> bool:
        """Check if an existing file should be indexed (candidate, regular file, size)."""
        file_path = Path(file_path)
        if not self.is_candidate_path(file_path):
            return False

        try:
            stat = file_path.stat()
        except OSError:
            return False

        if not file_path.is_file():
            return False

        if stat.st_size > self.config.max_file_size:
            logger.debug(
                f"Skipping {file_path}: {stat.st_size} bytes exceeds max_file_size"
            )
            return False

        return True

    def find_files(self, start: Optional[Union[str, Path]] = None) -> List[Path]:
        """Enumerate indexable files under the root, or under start if given.

        A start directory outside the root or inside an excluded directory
        yields nothing.

        Returns:
            Absolute paths sorted by their POSIX path relative to the root, so the
            order is deterministic for a given tree.
        """
        top = self.root_path if start is None else Path(os.path.abspath(start))
        if not self._is_walkable(top):
            return []

        found = []
        for dirpath, dirnames, filenames in os.walk(top):
            current = Path(dirpath)

            # Prune excluded directories so os.walk never descends into them
            kept = []
            for dirname in dirnames:
                relative_dir = (current / dirname).relative_to(self.root_path)
                if self.exclude_spec.match_file(f"{relative_dir.as_posix()}/"):
                    continue
                kept.append(dirname)
            dirnames[:] = kept

            for filename in filenames:
                file_path = current / filename
                if self.is_indexable_file(file_path):
                    found.append(file_path)

        found.sort(key=self._relative_posix)
        return found

    def _is_walkable(self, directory: Path) -> bool:
        try:
            relative = self._relative_posix(directory)
        except ValueError:
            return False
        if relative == ".":
            return True
        return not self.exclude_spec.match_file(f"{relative}/")
