"""Abstract base class for embedding providers."""

from abc import ABC, abstractmethod
from typing import List


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers.

    Implementations must be safe to call from several threads at once; the
    synchronizer embeds the chunks of one file concurrently.

    Failures should be raised as TransientEmbeddingError when a retry may
    succeed and FatalEmbeddingError otherwise. Any other exception is treated
    as fatal for the update that triggered it.
    """

    @abstractmethod
    def get_embedding(self, text: str) -> List[float]:
        """Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            List of floats representing the embedding vector
        """
        pass

    def get_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts, one request per text.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors (one per input text)
        """
        return [self.get_embedding(text) for text in texts]

    @abstractmethod
    def get_provider_name(self) -> str:
        """Get the name of this embedding provider.

        Returns:
            Provider name (e.g., "ollama")
        """
        pass

    def health_check(self) -> bool:
        """Check if the embedding provider is healthy and accessible."""
        return True
