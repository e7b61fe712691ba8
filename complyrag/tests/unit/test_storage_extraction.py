from __future__ import annotations

import pytest

from complyrag.core.errors import UnsupportedFormatError, UpstreamServiceError, ValidationError
from complyrag.providers.extraction.text import DocumentTextExtractor
from complyrag.providers.storage.local import LocalContentStorage


@pytest.mark.asyncio
async def test_local_storage_round_trip(tmp_path) -> None:
    storage = LocalContentStorage(tmp_path)

    await storage.store("doc-1/ver-1", b"hello")
    assert await storage.fetch("doc-1/ver-1") == b"hello"
    assert (tmp_path / "doc-1" / "ver-1").exists()

    await storage.delete("doc-1/ver-1")
    await storage.delete("doc-1/ver-1")
    assert not (tmp_path / "doc-1" / "ver-1").exists()


@pytest.mark.asyncio
async def test_local_storage_rejects_keys_outside_root(tmp_path) -> None:
    storage = LocalContentStorage(tmp_path / "content")

    with pytest.raises(ValidationError):
        await storage.store("../escape", b"x")


@pytest.mark.asyncio
async def test_missing_content_is_not_retryable(tmp_path) -> None:
    storage = LocalContentStorage(tmp_path)

    with pytest.raises(UpstreamServiceError) as excinfo:
        await storage.fetch("doc-1/ver-9")
    assert excinfo.value.retryable is False
    assert str(excinfo.value) == "stored content missing for doc-1/ver-9"


@pytest.mark.asyncio
async def test_extracts_plain_text_and_strips_bom() -> None:
    extractor = DocumentTextExtractor()

    text = await extractor.extract("\ufeffRichtlinie Datenschutz".encode("utf-8"), "text/plain; charset=utf-8")

    assert text == "Richtlinie Datenschutz"


@pytest.mark.asyncio
async def test_extracts_html_without_markup_or_scripts() -> None:
    extractor = DocumentTextExtractor()
    markup = b"<html><script>track()</script><body><h1>Policy</h1><p>Keep &amp; delete</p></body></html>"

    text = await extractor.extract(markup, "text/html")

    assert "track" not in text
    assert "<" not in text
    assert "Policy" in text and "Keep & delete" in text


@pytest.mark.asyncio
async def test_unknown_media_type_is_unsupported() -> None:
    with pytest.raises(UnsupportedFormatError):
        await DocumentTextExtractor().extract(b"\x00\x01", "application/octet-stream")
