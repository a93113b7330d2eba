"""Embedding clients for memory consolidation.

Provides two providers (OpenAI API and local sentence-transformers), a retry
wrapper implementing the consolidation retry policy, and vector helpers used
by the stores for similarity search and BLOB serialization.
"""

from __future__ import annotations

import asyncio
import struct
from typing import TYPE_CHECKING, Awaitable, Callable

import numpy as np
from loguru import logger
from openai import AsyncOpenAI

from .config import EmbeddingConfig
from .exceptions import EmbeddingUnavailable
from .interfaces import EmbeddingClient
from .logging_config import preview

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Compute cosine similarity between two vectors.

    Returns 0.0 for vectors of different length or zero magnitude.
    """
    if not a or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def serialize_embedding(embedding: list[float]) -> bytes:
    """Pack an embedding as little-endian float32 for SQLite BLOB storage."""
    return struct.pack(f"<{len(embedding)}f", *embedding)


def deserialize_embedding(blob: bytes | None) -> list[float]:
    """Unpack a BLOB written by ``serialize_embedding``."""
    if not blob:
        return []
    count = len(blob) // 4  # float32 = 4 bytes
    return list(struct.unpack(f"<{count}f", blob))


class OpenAIEmbeddingClient:
    """Embedding client backed by the OpenAI embeddings API."""

    def __init__(self, config: EmbeddingConfig | None = None, client: AsyncOpenAI | None = None):
        """Initialize the client.

        Args:
            config: Embedding configuration
            client: Preconfigured AsyncOpenAI client (built from config if None)
        """
        self._config = config or EmbeddingConfig()
        self._client = client or AsyncOpenAI(
            api_key=self._config.api_key,
            base_url=self._config.base_url,
        )

    async def embed(self, text: str) -> list[float]:
        response = await self._client.embeddings.create(
            model=self._config.model,
            input=text,
            dimensions=self._config.dimension,
        )
        return list(response.data[0].embedding)


class LocalEmbeddingClient:
    """Embedding client using sentence-transformers.

    Features:
    - Lazy model loading (only when the first embedding is requested)
    - Encoding runs in a worker thread so the event loop stays responsive
    """

    def __init__(self, config: EmbeddingConfig | None = None):
        self._config = config or EmbeddingConfig(
            provider="local", model="paraphrase-multilingual-MiniLM-L12-v2", dimension=384
        )
        self._model: SentenceTransformer | None = None
        self._dimension = self._config.dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _ensure_model(self) -> None:
        """Lazy-load the sentence-transformers model."""
        if self._model is not None:
            return

        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers is required for LocalEmbeddingClient. "
                "Install with: pip install companion-core[local]"
            )

        logger.info(f"Loading embedding model: {self._config.model}")
        self._model = SentenceTransformer(
            self._config.model,
            trust_remote_code=self._config.trust_remote_code,
        )
        self._dimension = self._model.get_sentence_embedding_dimension()
        logger.info(f"Embedding model loaded: dim={self._dimension}")

    def _encode(self, text: str) -> list[float]:
        self._ensure_model()
        embedding: np.ndarray = self._model.encode(
            [text], show_progress_bar=False, normalize_embeddings=True,
        )
        return embedding[0].tolist()

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._encode, text)


class RetryingEmbeddingClient:
    """Wraps an embedding client with truncation, timeout and linear backoff.

    Attempt ``i`` (1-based) that fails is followed by a sleep of
    ``backoff_seconds * i`` unless it was the last attempt, in which case
    ``EmbeddingUnavailable`` is raised. Cancellation is never retried.
    """

    def __init__(
        self,
        inner: EmbeddingClient,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        timeout_seconds: float = 10.0,
        max_input_chars: int = 8000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._inner = inner
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.timeout_seconds = timeout_seconds
        self.max_input_chars = max_input_chars
        self._sleep = sleep

    @classmethod
    def from_config(cls, inner: EmbeddingClient, config: EmbeddingConfig) -> "RetryingEmbeddingClient":
        return cls(
            inner,
            max_attempts=config.max_attempts,
            backoff_seconds=config.backoff_seconds,
            timeout_seconds=config.timeout_seconds,
            max_input_chars=config.max_input_chars,
        )

    async def embed(self, text: str) -> list[float]:
        text = text[: self.max_input_chars]
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                embedding = await asyncio.wait_for(
                    self._inner.embed(text), timeout=self.timeout_seconds
                )
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Embedding failed (attempt {attempt}/{self.max_attempts}) "
                    f"for '{preview(text)}': {e!r}"
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.backoff_seconds * attempt)
                continue

            if not embedding:
                last_error = ValueError("embedding client returned an empty vector")
                logger.warning(
                    f"Empty embedding (attempt {attempt}/{self.max_attempts})"
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.backoff_seconds * attempt)
                continue
            return embedding

        logger.error(f"Embedding unavailable after {self.max_attempts} attempts")
        raise EmbeddingUnavailable(self.max_attempts, last_error) from last_error


def create_embedding_client(config: EmbeddingConfig | None = None) -> RetryingEmbeddingClient:
    """Build the configured provider wrapped in the retry policy."""
    config = config or EmbeddingConfig()
    if config.provider == "openai":
        inner: EmbeddingClient = OpenAIEmbeddingClient(config)
    elif config.provider == "local":
        inner = LocalEmbeddingClient(config)
    else:
        raise ValueError(f"Unknown embedding provider: {config.provider!r}")
    logger.info(f"Embedding client created: provider={config.provider}, model={config.model}")
    return RetryingEmbeddingClient.from_config(inner, config)
