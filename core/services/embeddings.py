"""
Ollama embedding client.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

import httpx

import core.config as config
from core.errors import EmbeddingProviderError

logger = config.logger

# nomic-embed-text is trained with task prefixes on both sides of retrieval.
_TASK_PREFIXES = {
    "nomic-embed-text": ("search_document: ", "search_query: "),
}


class Embedder(Protocol):
    def embed_for_storage(self, text: str) -> List[float]:
        ...

    def embed_for_query(self, text: str) -> List[float]:
        ...


def _raise_embedding_unavailable(detail: str) -> None:
    logger.warning("embedding_provider_unavailable", extra={"detail": detail})
    raise EmbeddingProviderError(f"embedding provider unavailable: {detail}")


class OllamaEmbedder:
    """Calls ``POST /api/embeddings`` on an Ollama server.

    Failures surface immediately as ``EmbeddingProviderError``; there are no
    retries. Pass ``client`` to reuse an existing ``httpx.Client``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url or config.OLLAMA_URL).rstrip("/")
        self.model = model or config.EMBEDDING_MODEL
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=timeout_seconds or config.EMBEDDING_TIMEOUT_SECONDS
        )

    def _prefixes(self) -> tuple[str, str]:
        base_model = self.model.split(":", 1)[0]
        return _TASK_PREFIXES.get(base_model, ("", ""))

    def embed_for_storage(self, text: str) -> List[float]:
        return self._embed(self._prefixes()[0] + text)

    def embed_for_query(self, text: str) -> List[float]:
        return self._embed(self._prefixes()[1] + text)

    def _embed(self, prompt: str) -> List[float]:
        try:
            response = self._client.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model, "prompt": prompt},
            )
        except httpx.RequestError as exc:
            _raise_embedding_unavailable(f"request error: {exc}")

        if response.status_code >= 400:
            _raise_embedding_unavailable(f"status {response.status_code}")

        try:
            embedding = response.json()["embedding"]
        except (ValueError, KeyError, TypeError):
            _raise_embedding_unavailable("malformed response")
        if not embedding:
            _raise_embedding_unavailable("empty embedding")
        return [float(value) for value in embedding]

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


__all__ = ["Embedder", "OllamaEmbedder"]
