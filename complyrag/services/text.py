from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from complyrag.core.errors import UnsupportedFormatError
from complyrag.domain.models import DocumentVersion
from complyrag.providers.extraction.base import TextExtractor
from complyrag.providers.storage.base import ContentStorage


logger = logging.getLogger(__name__)


async def extract_with_fallback(extractor: TextExtractor, data: bytes, media_type: str) -> str:
    # Unknown formats still yield something searchable; garbage bytes become U+FFFD.
    try:
        return await extractor.extract(data, media_type)
    except UnsupportedFormatError as exc:
        logger.info("extract_fallback media_type=%s reason=%s", media_type, exc)
        return data.decode("utf-8", errors="replace")


async def load_version_text(
    session: AsyncSession,
    storage: ContentStorage,
    extractor: TextExtractor,
    version: DocumentVersion,
) -> str:
    """Return the extracted text of a version, filling the cache on first use.

    Caller commits; the cache write joins the caller's transaction.
    """
    if version.extracted_text is not None:
        return version.extracted_text
    data = await storage.fetch(version.storage_key)
    text = await extract_with_fallback(extractor, data, version.media_type)
    # NUL bytes are rejected by PostgreSQL text columns.
    text = text.replace("\x00", "")
    version.extracted_text = text
    await session.flush()
    return text
