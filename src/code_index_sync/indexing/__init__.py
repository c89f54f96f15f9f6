"""Indexing components for file discovery and chunking."""

from .chunk_splitter import Chunk, ChunkSplitter, read_text_file, split_text
from .file_finder import FileFinder

__all__ = ["Chunk", "ChunkSplitter", "FileFinder", "read_text_file", "split_text"]
