from __future__ import annotations

import asyncio
import json
from typing import Any

from complyrag.core.config import get_settings
from complyrag.core.errors import UpstreamServiceError
from complyrag.persistence.db import SessionLocal
from complyrag.providers.embeddings.hashing import HashEmbeddingProvider
from complyrag.providers.llm.base import CompletionProvider
from complyrag.providers.vector.memory import InMemoryVectorIndex
from complyrag.services.authz import Principal
from complyrag.services.container import ServiceContainer, build_container


def principal(*roles: str, subject_id: str = "user-1") -> Principal:
    return Principal.of(subject_id, roles)


ADMIN = principal("admin", subject_id="admin-1")


class MemoryContentStorage:
    """Dict-backed storage; keys under a failing prefix raise like a broken backend."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.fail_prefixes: set[str] = set()

    def _check(self, key: str) -> None:
        if any(key.startswith(prefix) for prefix in self.fail_prefixes):
            raise UpstreamServiceError(f"storage unavailable for {key}", service="storage", retryable=False)

    async def store(self, key: str, data: bytes) -> None:
        self._check(key)
        self.blobs[key] = data

    async def fetch(self, key: str) -> bytes:
        self._check(key)
        if key not in self.blobs:
            raise UpstreamServiceError(f"stored content missing for {key}", service="storage", retryable=False)
        return self.blobs[key]

    async def delete(self, key: str) -> None:
        self.blobs.pop(key, None)


class FlakyEmbedder:
    # Fails the first `failures` calls, then embeds like the hash provider.
    def __init__(self, failures: int, *, retryable: bool = True) -> None:
        self.failures = failures
        self.retryable = retryable
        self.calls = 0
        self._inner = HashEmbeddingProvider()

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.calls <= self.failures:
            raise UpstreamServiceError("embedding backend unavailable", service="embedding", retryable=self.retryable)
        return await self._inner.embed(text)


class GatedEmbedder:
    """Parks embed calls whose text contains `hold` until the gate opens."""

    def __init__(self, hold: str = "") -> None:
        self.hold = hold
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()
        self._inner = HashEmbeddingProvider()

    async def embed(self, text: str) -> list[float]:
        if self.hold in text:
            self.entered.set()
            await self.gate.wait()
        return await self._inner.embed(text)


class GatedVectorIndex(InMemoryVectorIndex):
    # Parks only the first upsert, so later runs write straight through.
    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()
        self.upserts = 0

    async def upsert(self, document_id: str, vector: list[float], payload: dict[str, Any]) -> None:
        self.upserts += 1
        if self.upserts == 1:
            self.entered.set()
            await self.gate.wait()
        await super().upsert(document_id, vector, payload)


class RoutedCompletionProvider:
    """Answers rule prompts and risk prompts with separate canned outputs."""

    def __init__(self, rules: Any = (), risks: Any = ()) -> None:
        self._rules = rules if isinstance(rules, str) else json.dumps(list(rules))
        self._risks = risks if isinstance(risks, str) else json.dumps(list(risks))
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        # Only the risk prompt asks for a "title" field.
        if '"title"' in prompt:
            return self._risks
        return self._rules


def make_container(
    *,
    completion: CompletionProvider | None = None,
    embedder: Any = None,
    storage: Any = None,
    vector_index: Any = None,
    index_mode: str = "inline",
) -> ServiceContainer:
    return build_container(
        session_factory=SessionLocal,
        storage=MemoryContentStorage() if storage is None else storage,
        embedder=HashEmbeddingProvider() if embedder is None else embedder,
        completion=RoutedCompletionProvider() if completion is None else completion,
        vector_index=InMemoryVectorIndex() if vector_index is None else vector_index,
        settings=get_settings(),
        index_mode=index_mode,
    )
