"""Vector storage components."""

from .vector_store import InMemoryVectorStore, VectorStore

__all__ = ["InMemoryVectorStore", "VectorStore"]
