"""Embedding services and the index synchronizer."""

from .embedding_provider import EmbeddingProvider
from .embedding_calculator import EmbeddingCalculator
from .ollama import OllamaClient
from .index_synchronizer import IndexSynchronizer

__all__ = ["EmbeddingProvider", "EmbeddingCalculator", "IndexSynchronizer", "OllamaClient"]
