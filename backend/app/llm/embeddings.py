"""Embedding clients: text to fixed-dimension vectors."""

import hashlib
import logging
import re
from typing import Protocol

from openai import AsyncOpenAI

from backend.app.config import Settings
from backend.app.errors import ConfigurationError, EmbeddingError
from backend.app.utils.vectors import l2_normalize

logger = logging.getLogger(__name__)

_WORD = re.compile(r"\w+")


class Embedder(Protocol):
    """Protocol for embedding implementations."""

    @property
    def dimensions(self) -> int:
        """Length of every vector this embedder returns."""
        ...

    async def embed(self, text: str) -> list[float]:
        """Embed one text.

        Raises:
            Transient provider errors (retried by callers) or EmbeddingError
        """
        ...


class DeterministicStubEmbedder:
    """Hashed bag-of-words embedder (no API key required).

    Each lowercase word token increments one bucket chosen by its SHA-256
    digest; the vector is L2-normalised. Texts sharing words get positive
    cosine similarity, texts with disjoint vocabularies get zero.
    """

    def __init__(self, dimensions: int = 1536) -> None:
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        vector = [0.0] * self._dimensions
        for token in _WORD.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:8], "big") % self._dimensions
            vector[bucket] += 1.0
        return l2_normalize(vector)


class OpenAIEmbedder:
    """OpenAI embeddings API client."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        timeout_s: float = 20.0,
    ):
        # Retries are handled by callers
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)
        self.model = model
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        response = await self.client.embeddings.create(
            model=self.model,
            input=text,
            dimensions=self._dimensions,
        )

        if not response.data:
            raise EmbeddingError("embedding response contained no vectors")

        vector = list(response.data[0].embedding)
        if len(vector) != self._dimensions:
            raise EmbeddingError(
                f"embedding has {len(vector)} dimensions, expected {self._dimensions}"
            )
        return vector


def get_embedder(settings: Settings) -> Embedder:
    """Factory returning the embedder selected by LLM_PROVIDER.

    Raises:
        ConfigurationError: If the OpenAI provider is selected without a key
    """
    if settings.llm_provider == "stub":
        logger.warning("LLM_PROVIDER=stub, using deterministic embedder")
        return DeterministicStubEmbedder(settings.embedding_dimensions)

    api_key = settings.openai_api_key
    if not api_key or not api_key.get_secret_value():
        raise ConfigurationError("LLM_PROVIDER=openai requires OPENAI_API_KEY")

    logger.info("Using OpenAI embedder")
    return OpenAIEmbedder(
        api_key=api_key.get_secret_value(),
        model=settings.openai_embedding_model,
        dimensions=settings.embedding_dimensions,
        timeout_s=settings.embedding_timeout_s,
    )
