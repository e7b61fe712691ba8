from __future__ import annotations

import logging

import httpx

from complyrag.core.config import get_settings
from complyrag.core.errors import ProviderConfigError, UpstreamServiceError


logger = logging.getLogger(__name__)


class OpenAIChatProvider:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def complete(self, prompt: str) -> str:
        api_key = self._settings.openai_api_key
        if not api_key:
            raise ProviderConfigError("OPENAI_API_KEY is required for OpenAI completions")

        payload = {
            "model": self._settings.openai_model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._settings.openai_temperature,
        }
        headers = {"Authorization": f"Bearer {api_key}"}
        url = f"{self._settings.openai_base_url.rstrip('/')}/chat/completions"
        client = self._get_client()

        response = await client.post(url, json=payload, headers=headers)
        if response.status_code >= 500 or response.status_code == 429:
            raise UpstreamServiceError(f"completion service error: {response.status_code}", service="completion")
        if response.status_code in {401, 403}:
            raise UpstreamServiceError(
                "completion auth error: check OPENAI_API_KEY",
                service="completion",
                retryable=False,
            )
        if response.status_code >= 400:
            raise UpstreamServiceError(
                f"completion request rejected: {response.status_code}",
                service="completion",
                retryable=False,
            )
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise UpstreamServiceError(
                "completion response malformed", service="completion", retryable=False
            ) from exc
        logger.debug("completion_ok model=%s chars=%s", self._settings.openai_model, len(content or ""))
        return content or ""
