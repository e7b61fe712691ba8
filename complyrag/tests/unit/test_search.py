from __future__ import annotations

import httpx
import pytest

from complyrag.core.config import get_settings
from complyrag.core.errors import UpstreamServiceError, ValidationError
from complyrag.providers.embeddings.openai_embeddings import OpenAIEmbeddingProvider
from complyrag.providers.vector.base import VectorHit
from complyrag.tests.utils.fakes import ADMIN, FlakyEmbedder, make_container, principal


VIEWER = principal("viewer", subject_id="viewer-1")


class ScriptedIndex:
    """Returns fixed hits; remembers the top_k it was asked for."""

    def __init__(self) -> None:
        self.hits: list[VectorHit] = []
        self.requested: list[int] = []

    async def upsert(self, document_id, vector, payload) -> None:
        return None

    async def search(self, vector, top_k):
        self.requested.append(top_k)
        return list(self.hits)

    async def delete_where(self, *, document_id) -> None:
        return None


async def _upload(container, text: str, view_roles: list[str]) -> str:
    doc, _ = await container.versions.upload(
        content=text.encode(),
        name=f"{text.split()[0]}.txt",
        media_type="text/plain",
        principal=ADMIN,
        view_roles=view_roles,
    )
    return doc.id


@pytest.mark.asyncio
async def test_search_hides_documents_the_caller_cannot_view() -> None:
    container = make_container()
    admin_only = await _upload(container, "policy", ["admin"])
    shared = await _upload(container, "policy policy policy handbook", ["viewer", "admin"])
    await _upload(container, "zebra", ["viewer"])

    viewer_hits = await container.search.search("policy", principal=VIEWER, top_k=5, min_score=0.3)
    assert [hit.document.id for hit in viewer_hits] == [shared]

    admin_hits = await container.search.search("policy", principal=ADMIN, top_k=5, min_score=0.3)
    assert [hit.document.id for hit in admin_hits] == [admin_only, shared]
    assert admin_hits[0].score > admin_hits[1].score
    assert admin_hits[0].score == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_search_dedups_thresholds_and_orders_hits() -> None:
    index = ScriptedIndex()
    container = make_container(vector_index=index)
    top = await _upload(container, "alpha", ["admin"])
    second = await _upload(container, "beta", ["viewer"])
    third = await _upload(container, "gamma", ["viewer"])
    low = await _upload(container, "delta", ["viewer"])
    index.hits = [
        VectorHit(document_id=top, score=0.95, payload={}),
        VectorHit(document_id="deleted-doc", score=0.9, payload={}),
        VectorHit(document_id=second, score=0.8, payload={}),
        VectorHit(document_id=third, score=0.6, payload={}),
        VectorHit(document_id=second, score=0.5, payload={}),
        VectorHit(document_id=low, score=0.1, payload={}),
    ]

    hits = await container.search.search("anything", principal=VIEWER, top_k=5, min_score=0.3)

    assert [(hit.document.id, hit.score) for hit in hits] == [(second, 0.8), (third, 0.6)]


@pytest.mark.asyncio
async def test_search_with_no_matches_is_empty_success() -> None:
    container = make_container()

    assert await container.search.search("policy", principal=ADMIN) == []


@pytest.mark.asyncio
async def test_blank_query_is_rejected() -> None:
    container = make_container()

    with pytest.raises(ValidationError):
        await container.search.search("   ", principal=ADMIN)


@pytest.mark.asyncio
async def test_top_k_is_clamped() -> None:
    index = ScriptedIndex()
    container = make_container(vector_index=index)

    await container.search.search("policy", principal=ADMIN, top_k=10_000)
    await container.search.search("policy", principal=ADMIN, top_k=0)

    assert index.requested == [container.settings.search_max_top_k, 1]


@pytest.mark.asyncio
async def test_embedding_failure_surfaces_as_upstream_error() -> None:
    container = make_container(embedder=FlakyEmbedder(failures=100, retryable=False))

    with pytest.raises(UpstreamServiceError):
        await container.search.search("policy", principal=ADMIN)


@pytest.mark.asyncio
async def test_search_retries_embedding_exactly_the_configured_attempts(monkeypatch) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(503)

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("EXT_RETRY_MAX_ATTEMPTS", "3")
    get_settings.cache_clear()
    try:
        embedder = OpenAIEmbeddingProvider(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        container = make_container(embedder=embedder, vector_index=ScriptedIndex())
        with pytest.raises(UpstreamServiceError):
            await container.search.search("policy", principal=ADMIN)
    finally:
        get_settings.cache_clear()

    assert len(requests) == 3
