from __future__ import annotations

from complyrag.core.config import get_settings
from complyrag.core.errors import ProviderConfigError
from complyrag.providers.llm.fake import FakeCompletionProvider
from complyrag.providers.llm.gemini_vertex import GeminiVertexProvider
from complyrag.providers.llm.openai_chat import OpenAIChatProvider


def get_completion_provider():
    settings = get_settings()
    provider = (settings.llm_provider or "openai").lower()

    if provider == "fake":
        return FakeCompletionProvider()
    if provider == "openai":
        return OpenAIChatProvider()
    if provider == "vertex":
        return GeminiVertexProvider()

    raise ProviderConfigError(f"Unsupported completion provider: {provider}")
