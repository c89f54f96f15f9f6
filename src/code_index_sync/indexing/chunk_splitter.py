"""Fixed-width chunk splitter.

This module implements the chunking step of every index update:
- Fixed window: each chunk holds at most max_chunk_chars characters
- No overlap: concatenating chunk texts in order reproduces the input exactly
- Pure arithmetic: no parsing, no regex, no line or token boundary detection
- Pattern: chunk i covers text[i * max_chunk_chars:(i + 1) * max_chunk_chars]
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List


@dataclass(frozen=True)
class Chunk:
    """A bounded-length slice of a file's text, the unit submitted for embedding."""

    sequence_index: int
    text: str


def split_text(text: str, max_chunk_chars: int) -> List[Chunk]:
    """Split text into ordered fixed-width chunks.

    Args:
        text: Text to split
        max_chunk_chars: Maximum length of each chunk

    Returns:
        ceil(len(text) / max_chunk_chars) non-empty chunks, or no chunks for empty text

    Raises:
        ValueError: If max_chunk_chars is not positive
    """
    if max_chunk_chars <= 0:
        raise ValueError(f"max_chunk_chars must be positive, got {max_chunk_chars}")

    return [
        Chunk(sequence_index=index, text=text[start : start + max_chunk_chars])
        for index, start in enumerate(range(0, len(text), max_chunk_chars))
    ]


class ChunkSplitter:
    """Splits file content into fixed-width chunks.

    Algorithm:
    1. Windows of exactly max_chunk_chars characters, starting at offset 0
    2. The last window takes the remainder (never empty)
    3. Deterministic for identical input
    """

    def __init__(self, max_chunk_chars: int):
        if max_chunk_chars <= 0:
            raise ValueError(f"max_chunk_chars must be positive, got {max_chunk_chars}")
        self.max_chunk_chars = max_chunk_chars

    def split(self, text: str) -> List[Chunk]:
        """Split text into chunks of at most max_chunk_chars characters."""
        return split_text(text, self.max_chunk_chars)

    def estimate_chunks(self, text: str) -> int:
        """Number of chunks split() will produce for text, without slicing it."""
        # Ceiling division
        return (len(text) + self.max_chunk_chars - 1) // self.max_chunk_chars


def read_text_file(file_path: Path) -> str:
    """Read a source file as text, trying common encodings in order.

    A UTF-8 byte order mark is stripped. latin-1 is the last resort since it
    decodes any byte sequence.

    Raises:
        OSError: If the file cannot be read (e.g. it was deleted)
    """
    raw = Path(file_path).read_bytes()

    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue

    return raw.decode("latin-1")
