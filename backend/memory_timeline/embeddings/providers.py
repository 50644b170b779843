"""Embedding providers behind one capability interface, selected once at configuration time.

Providers:
- local: deterministic feature-hashing embedding, no network, 384 dims.
  Lower semantic quality, but the engine keeps working offline.
- openai, voyage, cohere: hosted HTTP APIs via httpx, API key required.

Nothing outside this module branches on the provider name; the store only
sees ``EmbeddingProvider.embed``.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any

import httpx
from pydantic import BaseModel, Field

from memory_timeline.config import Settings
from memory_timeline.errors import ConfigurationError, ParseError, ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)

LOCAL_DIMENSION = 384

# Known model dimensions; unknown models fall back to the provider default.
_MODEL_DIMENSIONS: dict[str, dict[str, int]] = {
    "openai": {
        "text-embedding-ada-002": 1536,
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
    },
    "voyage": {
        "voyage-2": 1024,
        "voyage-large-2": 1536,
    },
    "cohere": {
        "embed-english-v3.0": 1024,
    },
}
_DEFAULT_DIMENSIONS = {"openai": 1536, "voyage": 1024, "cohere": 1024, "local": LOCAL_DIMENSION}
_DEFAULT_MODELS = {
    "openai": "text-embedding-3-small",
    "voyage": "voyage-2",
    "cohere": "embed-english-v3.0",
    "local": "hashing-v2",
}


class EmbeddingConfig(BaseModel):
    """Explicit provider configuration handed to the EmbeddingStore.

    Passed around instead of module state so two configurations can live
    side by side (provider migration, tests).
    """

    provider: str = "local"
    model: str = ""
    api_key: str = ""
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)

    @classmethod
    def from_settings(cls, s: Settings) -> EmbeddingConfig:
        return cls(
            provider=s.embedding_provider,
            model=s.embedding_model,
            api_key=s.embedding_api_key,
            timeout_seconds=s.embedding_timeout_seconds,
            max_retries=s.embedding_max_retries,
            retry_base_delay=s.embedding_retry_base_delay,
        )


class EmbeddingProvider(ABC):
    """Capability interface: text in, fixed-length vector out."""

    name: str = ""

    def __init__(self, model: str, dimension: int) -> None:
        self.model = model
        self.dimension = dimension

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``."""

    async def aclose(self) -> None:
        """Release network resources, if any."""


# === Offline provider ===


_TOKEN_RE = re.compile(r"[^\W_]+(?:'[^\W_]+)?")
_STOPWORDS = frozenset({
    "a", "an", "and", "the", "of", "to", "in", "on", "at", "for", "from", "with",
    "by", "as", "is", "was", "were", "be", "been", "it", "its", "this", "that",
    "my", "our", "i", "we", "me", "us", "after", "before", "or", "but", "so",
})


def tokenize(text: str) -> list[str]:
    """Lower-cased word tokens without stopwords, in any script."""
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in _STOPWORDS]


def char_trigrams(token: str) -> list[str]:
    """Trigrams of ``#token#``; a one-character token still yields one."""
    padded = f"#{token}#"
    return [padded[i:i + 3] for i in range(len(padded) - 2)]


class LocalHashingProvider(EmbeddingProvider):
    """Deterministic embedding via feature hashing of words and character trigrams.

    Each word and each trigram of each word is hashed (blake2b, stable
    across processes) into one of ``dimension`` buckets, weighted
    ``1 + ln(count)`` for words and ``trigram_weight * (1 + ln(count))``
    for trigrams; the vector is then L2-normalised. Trigrams let inflected
    forms and scripts written without spaces overlap. All components are
    non-negative, so cosine similarity between two local vectors is always
    in [0, 1].
    """

    name = "local"

    def __init__(
        self,
        model: str = "hashing-v2",
        dimension: int = LOCAL_DIMENSION,
        trigram_weight: float = 0.5,
    ) -> None:
        super().__init__(model=model, dimension=dimension)
        self.trigram_weight = trigram_weight

    def _bucket(self, feature: str) -> int:
        digest = hashlib.blake2b(f"{self.model}:{feature}".encode("utf-8"), digest_size=8).digest()
        return int.from_bytes(digest, "big") % self.dimension

    def embed_sync(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        words = Counter(tokenize(text))
        trigrams: Counter[str] = Counter()
        for token, count in words.items():
            vector[self._bucket(token)] += 1.0 + math.log(count)
            for gram in char_trigrams(token):
                trigrams[gram] += count
        for gram, count in trigrams.items():
            vector[self._bucket(f"3:{gram}")] += self.trigram_weight * (1.0 + math.log(count))
        norm = math.sqrt(sum(v * v for v in vector))
        if norm > 0:
            vector = [v / norm for v in vector]
        return vector

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)


# === Hosted providers ===


class HTTPEmbeddingProvider(EmbeddingProvider):
    """Shared request/response handling for hosted embedding APIs."""

    url: str = ""

    def __init__(
        self,
        model: str,
        dimension: int,
        api_key: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(model=model, dimension=dimension)
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    @abstractmethod
    def _payload(self, text: str) -> dict[str, Any]:
        ...

    @abstractmethod
    def _extract(self, data: Any) -> Any:
        ...

    async def embed(self, text: str) -> list[float]:
        try:
            resp = await self._get_client().post(self.url, json=self._payload(text), headers=self._headers())
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"{self.name} request timed out: {e}", provider=self.name) from e
        except httpx.TransportError as e:
            raise ProviderError(
                f"{self.name} connection failed: {e}", provider=self.name, retryable=True
            ) from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise ProviderError(
                f"{self.name} API error {resp.status_code}: {resp.text[:200]}",
                provider=self.name,
                retryable=True,
            )
        if resp.status_code >= 400:
            raise ProviderError(
                f"{self.name} API error {resp.status_code}: {resp.text[:200]}", provider=self.name
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ParseError(f"{self.name} returned non-JSON body") from e
        try:
            raw = self._extract(data)
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError(f"{self.name} response missing embedding: {e!r}") from e
        return _validate_vector(raw, self.name)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class OpenAIEmbeddingProvider(HTTPEmbeddingProvider):
    name = "openai"
    url = "https://api.openai.com/v1/embeddings"

    def _payload(self, text: str) -> dict[str, Any]:
        return {"model": self.model, "input": text}

    def _extract(self, data: Any) -> Any:
        return data["data"][0]["embedding"]


class VoyageEmbeddingProvider(HTTPEmbeddingProvider):
    name = "voyage"
    url = "https://api.voyageai.com/v1/embeddings"

    def _payload(self, text: str) -> dict[str, Any]:
        return {"model": self.model, "input": [text]}

    def _extract(self, data: Any) -> Any:
        return data["data"][0]["embedding"]


class CohereEmbeddingProvider(HTTPEmbeddingProvider):
    name = "cohere"
    url = "https://api.cohere.ai/v1/embed"

    def _payload(self, text: str) -> dict[str, Any]:
        return {"model": self.model, "texts": [text], "input_type": "search_document"}

    def _extract(self, data: Any) -> Any:
        return data["embeddings"][0]


def _validate_vector(raw: Any, provider: str) -> list[float]:
    if not isinstance(raw, list) or not raw:
        raise ParseError(f"{provider} returned an empty or non-list embedding")
    try:
        vector = [float(v) for v in raw]
    except (TypeError, ValueError) as e:
        raise ParseError(f"{provider} returned non-numeric embedding values") from e
    if any(math.isnan(v) or math.isinf(v) for v in vector):
        raise ParseError(f"{provider} returned non-finite embedding values")
    return vector


_HTTP_PROVIDERS: dict[str, type[HTTPEmbeddingProvider]] = {
    "openai": OpenAIEmbeddingProvider,
    "voyage": VoyageEmbeddingProvider,
    "cohere": CohereEmbeddingProvider,
}


def model_dimension(provider: str, model: str) -> int:
    return _MODEL_DIMENSIONS.get(provider, {}).get(model, _DEFAULT_DIMENSIONS[provider])


def create_provider(config: EmbeddingConfig, client: httpx.AsyncClient | None = None) -> EmbeddingProvider:
    """Build the provider named in ``config``.

    Raises:
        ConfigurationError: Unknown provider, or hosted provider without an API key.
    """
    name = config.provider.strip().lower()
    if name not in _DEFAULT_DIMENSIONS:
        raise ConfigurationError(f"Unsupported embedding provider: {config.provider!r}")

    model = config.model or _DEFAULT_MODELS[name]
    if name == "local":
        provider: EmbeddingProvider = LocalHashingProvider(model=model)
    else:
        if not config.api_key:
            raise ConfigurationError(f"{name} embedding provider requires an API key")
        provider = _HTTP_PROVIDERS[name](
            model=model,
            dimension=model_dimension(name, model),
            api_key=config.api_key,
            timeout=config.timeout_seconds,
            client=client,
        )

    logger.info("Embedding provider initialized: %s/%s (dim: %d)", name, model, provider.dimension)
    return provider
