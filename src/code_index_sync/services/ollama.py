"""Ollama API client for embeddings generation."""

from typing import Any, Dict, List, Optional

import httpx

from ..config import OllamaConfig
from ..exceptions import FatalEmbeddingError, TransientEmbeddingError
from .embedding_provider import EmbeddingProvider


class OllamaClient(EmbeddingProvider):
    """Client for interacting with Ollama API."""

    def __init__(self, config: OllamaConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or httpx.Client(
            base_url=config.host, timeout=config.timeout
        )

    def health_check(self) -> bool:
        """Check if Ollama service is accessible."""
        try:
            response = self.client.get("/api/tags")
            return bool(response.status_code == 200)
        except httpx.HTTPError:
            return False

    def list_models(self) -> List[Dict[str, Any]]:
        """List available models."""
        try:
            response = self.client.get("/api/tags")
            response.raise_for_status()
            return list(response.json().get("models", []))
        except httpx.RequestError as e:
            raise TransientEmbeddingError("Failed to connect to Ollama", str(e))
        except httpx.HTTPStatusError as e:
            raise FatalEmbeddingError("Ollama API error", str(e))

    def get_embedding(self, text: str) -> List[float]:
        """Generate embedding for given text."""
        model_name = self.config.model

        try:
            response = self.client.post(
                "/api/embeddings", json={"model": model_name, "prompt": text}
            )
            response.raise_for_status()
        except httpx.RequestError as e:
            raise TransientEmbeddingError("Failed to connect to Ollama", str(e))
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 404:
                raise FatalEmbeddingError(
                    f"Model {model_name} not found. Try pulling it first."
                )
            if status == 429 or status >= 500:
                raise TransientEmbeddingError(f"Ollama API error {status}", str(e))
            raise FatalEmbeddingError(f"Ollama API error {status}", str(e))

        embedding = response.json().get("embedding")
        if not embedding:
            raise FatalEmbeddingError("No embedding returned from Ollama")

        return [float(value) for value in embedding]

    def get_provider_name(self) -> str:
        """Get the name of this embedding provider."""
        return "ollama"

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
