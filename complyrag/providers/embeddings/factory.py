from __future__ import annotations

from complyrag.core.config import get_settings
from complyrag.core.errors import ProviderConfigError
from complyrag.providers.embeddings.hashing import HashEmbeddingProvider
from complyrag.providers.embeddings.openai_embeddings import OpenAIEmbeddingProvider


def get_embedding_provider():
    settings = get_settings()
    provider = (settings.embedding_provider or "hash").lower()

    if provider == "hash":
        return HashEmbeddingProvider()
    if provider == "openai":
        return OpenAIEmbeddingProvider()

    raise ProviderConfigError(f"Unsupported embedding provider: {provider}")
