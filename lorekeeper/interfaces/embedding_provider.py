"""Abstract base class for text-embedding service providers.

Defines the contract for turning fragment text into embedding vectors.
Implementations may wrap OpenAI ``text-embedding-3-small``, Nomic
``nomic-embed-text`` (local via Ollama), or any other embedding backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider -- OpenAI / OpenAI-compatible APIs (requires API key)
#   NomicEmbeddingProvider  -- nomic-embed-text via Ollama (local)
# Located in: lorekeeper/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the ingestion pipeline."""

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for an ordered batch of texts.

        Parameters
        ----------
        texts:
            One or more non-blank strings.  Implementations split the batch
            internally if the backend has a per-call limit.

        Returns
        -------
        list[list[float]]
            Exactly one vector per input, in input order.  Each vector has
            length :meth:`get_dimension`.

        Raises
        ------
        lorekeeper.utils.errors.EmbeddingError
            On any provider failure.  No partial results are returned.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the produced vectors.

        Constant for the lifetime of the provider, e.g. ``1536`` for
        ``text-embedding-3-small`` or ``768`` for ``nomic-embed-text``.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable."""
