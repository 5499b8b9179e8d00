import hashlib
import logging
import re
from abc import ABC, abstractmethod
from typing import List

import numpy as np
from openai import OpenAI, OpenAIError

from recipe_rag.core.config import Settings
from recipe_rag.core.exceptions import ConfigurationError, EmbeddingFailure


logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """
    Turns texts into fixed-length vectors.

    `model` identifies the embedding space. Stores pin it at build time and
    queries are refused when the provider's model differs.
    """

    model: str

    @abstractmethod
    def embed_texts(self, texts: List[str]) -> np.ndarray:
        """Return a float32 array of shape (len(texts), dim)."""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings through the OpenAI embeddings API, or any compatible endpoint
    (e.g. Ollama's `/v1`) when `base_url` is set.
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        client: OpenAI | None = None,
    ) -> None:
        # Local OpenAI-compatible servers accept any key.
        self.client = client or OpenAI(api_key=api_key or ("unused" if base_url else None), base_url=base_url)
        self.model = model

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, 0), dtype="float32")

        try:
            response = self.client.embeddings.create(model=self.model, input=texts)
        except OpenAIError as exc:
            raise EmbeddingFailure(f"Embedding request to {self.model} failed: {exc}") from exc

        if len(response.data) != len(texts):
            raise EmbeddingFailure(
                f"Embedding provider returned {len(response.data)} vectors for {len(texts)} texts."
            )

        ordered = sorted(response.data, key=lambda item: item.index)
        vectors = np.array([item.embedding for item in ordered], dtype="float32")
        logger.debug("Generated embeddings for %d texts (dim=%d).", len(texts), vectors.shape[1])
        return vectors


class HashEmbeddingProvider(EmbeddingProvider):
    """
    Very simple hash-based embedding function for offline use and testing.

    Tokens are hashed with blake2b rather than the builtin `hash`, which is
    salted per process and would make persisted vectors unreproducible.
    """

    def __init__(self, dim: int = 384) -> None:
        self._dim = dim
        self.model = f"local-hash-{dim}"

    def _bucket(self, token: str) -> int:
        digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
        return int.from_bytes(digest, "big") % self._dim

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        vectors = np.zeros((len(texts), self._dim), dtype="float32")
        for i, text in enumerate(texts):
            for tok in re.findall(r"\w+", text.lower()):
                vectors[i, self._bucket(tok)] += 1.0
        # L2-normalize to ensure embeddings are in vector space
        norms = np.linalg.norm(vectors, axis=1, keepdims=True) + 1e-8
        return vectors / norms


def create_embedding_provider(settings: Settings) -> EmbeddingProvider:
    if settings.embedding_provider == "local":
        return HashEmbeddingProvider(dim=settings.local_embedding_dim)

    if not settings.openai_api_key and not settings.embedding_base_url:
        raise ConfigurationError("OPENAI_API_KEY or EMBEDDING_BASE_URL must be set for EMBEDDING_PROVIDER=openai")

    return OpenAIEmbeddingProvider(
        model=settings.embedding_model,
        api_key=settings.openai_api_key,
        base_url=settings.embedding_base_url,
    )
