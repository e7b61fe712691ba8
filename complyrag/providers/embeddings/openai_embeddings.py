from __future__ import annotations

import logging

import httpx

from complyrag.core.config import EMBED_DIM, get_settings
from complyrag.core.errors import ProviderConfigError, UpstreamServiceError


logger = logging.getLogger(__name__)


class OpenAIEmbeddingProvider:
    """Embeddings from an OpenAI-compatible /embeddings endpoint."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def embed(self, text: str) -> list[float]:
        api_key = self._settings.openai_api_key
        if not api_key:
            raise ProviderConfigError("OPENAI_API_KEY is required for OpenAI embeddings")

        payload = {
            "model": self._settings.openai_embedding_model,
            "input": text,
            # Ask for the schema dimension so vectors fit the index column.
            "dimensions": EMBED_DIM,
        }
        headers = {"Authorization": f"Bearer {api_key}"}
        url = f"{self._settings.openai_base_url.rstrip('/')}/embeddings"
        client = self._get_client()

        response = await client.post(url, json=payload, headers=headers)
        if response.status_code >= 500 or response.status_code == 429:
            raise UpstreamServiceError(f"embedding service error: {response.status_code}", service="embedding")
        if response.status_code >= 400:
            raise UpstreamServiceError(
                f"embedding request rejected: {response.status_code}",
                service="embedding",
                retryable=False,
            )
        try:
            vector = [float(v) for v in response.json()["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise UpstreamServiceError(
                "embedding response malformed", service="embedding", retryable=False
            ) from exc
        if len(vector) != EMBED_DIM:
            raise UpstreamServiceError(
                f"embedding dimension {len(vector)} != {EMBED_DIM}",
                service="embedding",
                retryable=False,
            )
        return vector
