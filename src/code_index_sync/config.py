"""Configuration management for Code Index Sync."""

import json
import logging
from pathlib import Path
from typing import Any, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class OllamaConfig(BaseModel):
    """Configuration for the Ollama embedding service.

    Environment variable references:
    - Ollama FAQ: https://github.com/ollama/ollama/blob/main/docs/faq.md#how-do-i-configure-ollama-server
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="http://localhost:11434", description="Ollama API host")
    model: str = Field(default="nomic-embed-text", description="Embedding model name")
    timeout: int = Field(default=30, description="Request timeout in seconds")


class SyncConfig(BaseModel):
    """Configuration for one index synchronizer instance.

    Immutable for the lifetime of the synchronizer that receives it.
    """

    model_config = ConfigDict(frozen=True)

    root_path: Path = Field(default=Path("."), description="Directory to index and watch")
    file_extensions: List[str] = Field(
        default=["cs", "ts", "sql", "scss", "css"],
        description="File extensions eligible for indexing (case-insensitive)",
    )
    exclude_dirs: List[str] = Field(
        default=[
            ".git",
            "node_modules",
            "__pycache__",
            "venv",
            ".venv",
            "bin",
            "obj",
            "dist",
            "build",
            "target",
            ".idea",
            ".vscode",
            ".code-index-sync",
        ],
        description="Directories to exclude from indexing",
    )
    max_chunk_chars: int = Field(
        default=2000, gt=0, description="Maximum chunk length in characters"
    )
    embedding_dimension: int = Field(
        default=1536, gt=0, description="Dimension of every embedding vector"
    )
    max_file_size: int = Field(
        default=1048576, gt=0, description="Maximum file size to index in bytes"
    )

    # Concurrency
    worker_count: int = Field(
        default=4, gt=0, description="Number of concurrent per-path update workers"
    )
    embedding_threads: int = Field(
        default=4, gt=0, description="Number of concurrent embedding requests"
    )
    max_pending_events: int = Field(
        default=10000, gt=0, description="Bound of the change notification queue"
    )
    backpressure_policy: Literal["block", "drop_oldest"] = Field(
        default="block",
        description="What to do when the notification queue is full: block the "
        "watcher thread or drop the oldest queued notification",
    )
    shutdown_timeout: float = Field(
        default=10.0, gt=0, description="Seconds stop() waits for worker threads"
    )

    # Retry configuration for transient embedding failures
    embedding_max_retries: int = Field(
        default=2, ge=0, description="Maximum retries for transient embedding errors"
    )
    embedding_retry_delay: float = Field(
        default=0.5, ge=0, description="Initial delay between retries in seconds"
    )
    exponential_backoff: bool = Field(
        default=True, description="Use exponential backoff for retries"
    )

    search_metric: Literal["ip", "cosine"] = Field(
        default="ip",
        description="Similarity used by the in-memory vector store: inner product or cosine",
    )

    ollama: OllamaConfig = Field(default_factory=OllamaConfig)

    @field_validator("root_path", mode="before")
    @classmethod
    def convert_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        if isinstance(v, Path):
            return v
        raise ValueError(f"Expected str or Path, got {type(v)}")

    @field_validator("file_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        """Remove dots from file extensions and lower-case them."""
        normalized = [ext.strip().lstrip(".").lower() for ext in v]
        if any(not ext for ext in normalized):
            raise ValueError("File extensions must not be empty")
        return normalized

    @property
    def extension_set(self) -> FrozenSet[str]:
        """Configured extensions as a frozenset for membership tests."""
        return frozenset(self.file_extensions)

    def matches_extension(self, path: Union[str, Path]) -> bool:
        """Check whether a path's suffix is one of the configured extensions."""
        suffix = Path(path).suffix.lstrip(".").lower()
        return bool(suffix) and suffix in self.extension_set


class ConfigManager:
    """Manages configuration loading and saving."""

    DEFAULT_CONFIG_PATH = Path(".code-index-sync/config.json")

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._config: Optional[SyncConfig] = None

    def load(self) -> SyncConfig:
        """Load configuration from file or create default."""
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)

                if "root_path" in data:
                    data["root_path"] = str(
                        self._resolve_relative_path(data["root_path"])
                    )

                self._config = SyncConfig(**data)
            except Exception as e:
                raise ValueError(f"Failed to load config from {self.config_path}: {e}")
        else:
            self._config = SyncConfig()

        return self._config

    def save(self, config: Optional[SyncConfig] = None) -> None:
        """Save configuration to file, storing root_path relative when possible."""
        if config is None:
            config = self._config

        if config is None:
            raise ValueError("No configuration to save")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(mode="json")
        config_dict["root_path"] = self._make_relative_to_config(config.root_path)

        with open(self.config_path, "w") as f:
            json.dump(config_dict, f, indent=2)

        self._config = config
        logger.debug(f"Saved configuration to {self.config_path}")

    def get_config(self) -> SyncConfig:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            self.load()
        if self._config is None:
            raise RuntimeError("Failed to load configuration")
        return self._config

    def _config_root(self) -> Path:
        # Parent of .code-index-sync/
        return self.config_path.parent.parent

    def _make_relative_to_config(self, path: Path) -> str:
        """Convert an absolute path to relative path from config location."""
        if not path.is_absolute() or str(path) == ".":
            return path.as_posix()

        absolute_path = path.resolve()
        try:
            relative_path = absolute_path.relative_to(self._config_root().resolve())
            return relative_path.as_posix() if str(relative_path) != "." else "."
        except ValueError:
            # Outside the config root
            return str(absolute_path)

    def _resolve_relative_path(self, path_str: str) -> Path:
        """Resolve a potentially relative path from config to absolute path."""
        path = Path(path_str)
        if path.is_absolute():
            return path
        return (self._config_root() / path).resolve()
