"""Query embedding for convmem.

Sessions and messages arrive with embeddings computed at capture time, so the
read path embeds exactly one thing per search: the query text. The model must
be the one the corpus was embedded with, otherwise every comparison is a
dimension mismatch.

Environment Variables:
    OPENROUTER_API_KEY: Required.
    CONVMEM_EMBEDDING_MODEL: Optional model override.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Protocol

import httpx

from convmem.errors import EmbeddingUnavailableError

logger = logging.getLogger(__name__)

OPENROUTER_EMBEDDINGS_URL = "https://openrouter.ai/api/v1/embeddings"

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-minilm-l6-v2"


class EmbeddingProvider(Protocol):
    """Turns query text into a vector.

    Implementations raise EmbeddingUnavailableError when they cannot.
    """

    async def embed(self, text: str) -> list[float]: ...


def parse_embedding_response(data: Any, expected_dim: int | None = None) -> list[float]:
    """Pull the first vector out of an OpenAI-style embeddings response.

    Raises:
        EmbeddingUnavailableError: If the payload has no usable vector
    """
    try:
        vector = data["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError) as e:
        raise EmbeddingUnavailableError(f"Invalid embedding response: {e!r}") from e

    if not vector:
        raise EmbeddingUnavailableError("Empty embedding in API response")
    if expected_dim and len(vector) != expected_dim:
        raise EmbeddingUnavailableError(
            f"Embedding has {len(vector)} dimensions, expected {expected_dim}"
        )
    return [float(x) for x in vector]


class AsyncEmbeddingClient:
    """EmbeddingProvider backed by the OpenRouter embeddings endpoint.

    Example:
        async with AsyncEmbeddingClient(dimensions=384) as client:
            vector = await client.embed("what did we decide about the hotel?")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        dimensions: int | None = None,
        timeout: float = 30.0,
    ):
        """Initialize the client.

        Args:
            api_key: OpenRouter API key. Defaults to OPENROUTER_API_KEY env var.
            model: Embedding model in OpenRouter format.
            dimensions: When set, vectors of any other length are rejected.
            timeout: HTTP timeout in seconds.
        """
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenRouter API key required. Set OPENROUTER_API_KEY environment variable "
                "or pass api_key parameter."
            )
        self.model = model or os.getenv("CONVMEM_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL
        self.dimensions = dimensions
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}", "X-Title": "convmem"},
            )
        return self._client

    async def _post(self, text: str) -> Any:
        try:
            response = await self._http().post(
                OPENROUTER_EMBEDDINGS_URL, json={"model": self.model, "input": [text]}
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"[EMBEDDING] {self.model} returned {e.response.status_code}: {e.response.text[:200]}")
            raise EmbeddingUnavailableError(f"Embedding API error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"[EMBEDDING] Request to {self.model} failed: {e}")
            raise EmbeddingUnavailableError(f"Embedding request failed: {e}") from e
        except ValueError as e:
            raise EmbeddingUnavailableError(f"Invalid embedding response: {e}") from e

    async def embed(self, text: str) -> list[float]:
        """Embed the query text.

        Raises:
            EmbeddingUnavailableError: On HTTP, network or payload errors
        """
        started = time.monotonic()
        vector = parse_embedding_response(await self._post(text), self.dimensions)
        logger.debug(f"[EMBEDDING] {len(vector)}-dim query vector in {time.monotonic() - started:.2f}s")
        return vector

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AsyncEmbeddingClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
