from __future__ import annotations

import pytest
from sqlalchemy import update

from complyrag.core.errors import UpstreamServiceError
from complyrag.domain.models import DocumentVersion
from complyrag.persistence.db import SessionLocal
from complyrag.persistence.repos import documents as documents_repo
from complyrag.providers.embeddings.hashing import embed_text
from complyrag.providers.vector.memory import InMemoryVectorIndex
from complyrag.services.ingest import queue as queue_module
from complyrag.tests.utils.fakes import (
    ADMIN,
    FlakyEmbedder,
    GatedEmbedder,
    GatedVectorIndex,
    MemoryContentStorage,
    make_container,
)


async def _upload(container, content: bytes = b"Passwords rotate every 90 days.", media_type: str = "text/plain"):
    return await container.versions.upload(
        content=content, name="passwords.txt", media_type=media_type, principal=ADMIN
    )


async def _drop_text_cache() -> None:
    async with SessionLocal() as session:
        await session.execute(update(DocumentVersion).values(extracted_text=None))
        await session.commit()


@pytest.mark.asyncio
async def test_upload_indexes_one_record_per_document() -> None:
    index = InMemoryVectorIndex()
    container = make_container(vector_index=index)
    doc, version = await _upload(container)

    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.index_state == "completed"
    assert stored.index_attempts == 1
    assert stored.last_indexed_at is not None
    assert index.get(doc.id)[1] == {"documentId": doc.id}

    # Re-indexing the same version replaces the record.
    assert await container.pipeline.run(doc.id, version.id) == "completed"
    assert len(index) == 1


@pytest.mark.asyncio
async def test_transient_embedding_failure_is_retried() -> None:
    embedder = FlakyEmbedder(failures=2)
    container = make_container(embedder=embedder)
    doc, _ = await _upload(container)

    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.index_state == "completed"
    assert stored.index_attempts == 3
    assert embedder.calls == 3


@pytest.mark.asyncio
async def test_retry_budget_exhaustion_marks_failed() -> None:
    index = InMemoryVectorIndex()
    container = make_container(embedder=FlakyEmbedder(failures=10), vector_index=index)
    doc, _ = await _upload(container)

    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.index_state == "failed"
    assert stored.index_error == "embedding backend unavailable"
    assert stored.index_attempts == container.settings.index_max_attempts
    assert len(index) == 0


@pytest.mark.asyncio
async def test_non_retryable_failure_fails_on_first_attempt() -> None:
    embedder = FlakyEmbedder(failures=1, retryable=False)
    container = make_container(embedder=embedder)
    doc, _ = await _upload(container)

    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.index_state == "failed"
    assert stored.index_attempts == 1
    assert embedder.calls == 1


@pytest.mark.asyncio
async def test_unsupported_format_falls_back_to_raw_decode() -> None:
    index = InMemoryVectorIndex()
    container = make_container(vector_index=index)
    doc, version = await _upload(container, content=b"plain words in a binary wrapper", media_type="application/x-custom")

    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.index_state == "completed"
    async with SessionLocal() as session:
        cached = await documents_repo.get_version(session, doc.id, version.id)
    assert cached.extracted_text == "plain words in a binary wrapper"


@pytest.mark.asyncio
async def test_whitespace_only_document_fails_with_reason() -> None:
    container = make_container()
    doc, _ = await _upload(container, content=b"   \n\t ")

    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.index_state == "failed"
    assert stored.index_error == "no extractable text"


@pytest.mark.asyncio
async def test_stale_version_run_is_skipped() -> None:
    container = make_container()
    doc, first = await _upload(container)
    await container.versions.create_version(
        doc.id, content=b"newer text", name="v2.txt", media_type="text/plain", principal=ADMIN
    )

    assert await container.pipeline.run(doc.id, first.id) == "skipped"
    assert await container.pipeline.run("missing", first.id) == "skipped"


@pytest.mark.asyncio
async def test_missing_content_is_recorded_not_raised() -> None:
    storage = MemoryContentStorage()
    container = make_container(storage=storage)
    doc, version = await _upload(container)
    storage.blobs.clear()
    await _drop_text_cache()

    assert await container.pipeline.run(doc.id, version.id) == "failed"

    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.index_state == "failed"
    assert stored.index_error == f"stored content missing for {doc.id}/{version.id}"


@pytest.mark.asyncio
async def test_background_mode_returns_before_indexing() -> None:
    embedder = GatedEmbedder()
    container = make_container(embedder=embedder, index_mode="background")
    doc, _ = await _upload(container)
    assert doc.index_state in {"pending", "processing"}

    embedder.gate.set()
    await container.scheduler.drain()

    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.index_state == "completed"


@pytest.mark.asyncio
async def test_superseded_run_does_not_overwrite_newer_vector() -> None:
    index = InMemoryVectorIndex()
    embedder = GatedEmbedder(hold="first draft")
    container = make_container(embedder=embedder, vector_index=index, index_mode="background")
    doc, _ = await _upload(container, content=b"first draft of the retention policy")
    await embedder.entered.wait()

    newer = await container.versions.create_version(
        doc.id, content=b"final retention policy", name="v2.txt", media_type="text/plain", principal=ADMIN
    )
    assert await container.pipeline.run(doc.id, newer.id) == "completed"

    embedder.gate.set()
    await container.scheduler.drain()

    assert index.get(doc.id)[0] == embed_text("final retention policy")
    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.current_version_id == newer.id
    assert stored.index_state == "completed"


@pytest.mark.asyncio
async def test_late_upsert_of_old_version_is_redone_for_current() -> None:
    index = GatedVectorIndex()
    container = make_container(vector_index=index, index_mode="background")
    doc, _ = await _upload(container, content=b"first draft of the retention policy")
    await index.entered.wait()

    newer = await container.versions.create_version(
        doc.id, content=b"final retention policy", name="v2.txt", media_type="text/plain", principal=ADMIN
    )
    assert await container.pipeline.run(doc.id, newer.id) == "completed"

    # The parked write of the old version lands after the newer one.
    index.gate.set()
    await container.scheduler.drain()

    assert index.get(doc.id)[0] == embed_text("final retention policy")
    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.index_state == "completed"


@pytest.mark.asyncio
async def test_delete_during_embedding_leaves_no_vector() -> None:
    index = InMemoryVectorIndex()
    embedder = GatedEmbedder()
    container = make_container(embedder=embedder, vector_index=index, index_mode="background")
    doc, _ = await _upload(container)
    await embedder.entered.wait()

    await container.versions.delete_document(doc.id, ADMIN)
    embedder.gate.set()
    await container.scheduler.drain()

    assert index.get(doc.id) is None


@pytest.mark.asyncio
async def test_delete_during_upsert_removes_orphan_vector() -> None:
    index = GatedVectorIndex()
    container = make_container(vector_index=index, index_mode="background")
    doc, _ = await _upload(container)
    await index.entered.wait()

    await container.versions.delete_document(doc.id, ADMIN)
    index.gate.set()
    await container.scheduler.drain()

    assert index.get(doc.id) is None
    assert len(index) == 0


@pytest.mark.asyncio
async def test_queue_unavailable_marks_document_failed(monkeypatch) -> None:
    async def _broken_pool():
        raise UpstreamServiceError("redis down", service="queue")

    monkeypatch.setattr(queue_module, "get_redis_pool", _broken_pool)
    container = make_container(index_mode="queue")
    doc, _ = await _upload(container)

    stored = await container.versions.get_document(doc.id, ADMIN)
    assert stored.index_state == "failed"
    assert stored.index_error == "indexing queue unavailable: UpstreamServiceError"
