from __future__ import annotations

import asyncio
import html
import logging
import re
from io import BytesIO

import pdfplumber

from complyrag.core.errors import UnsupportedFormatError


logger = logging.getLogger(__name__)


_TEXT_MEDIA_TYPES = {
    "text/plain",
    "text/markdown",
    "text/csv",
    "application/json",
    "application/xml",
    "text/xml",
}
_HTML_MEDIA_TYPES = {"text/html", "application/xhtml+xml"}
_PDF_MEDIA_TYPE = "application/pdf"

_TAG_RE = re.compile(r"<[^>]+>")
_SCRIPT_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def _base_media_type(media_type: str) -> str:
    return (media_type or "").split(";", 1)[0].strip().lower()


def _decode(data: bytes) -> str:
    # utf-8-sig drops a BOM written by spreadsheet exports.
    return data.decode("utf-8-sig", errors="replace")


def _html_to_text(markup: str) -> str:
    text = _SCRIPT_RE.sub(" ", markup)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def _pdf_to_text(data: bytes) -> str:
    pages: list[str] = []
    with pdfplumber.open(BytesIO(data)) as pdf:
        for page in pdf.pages:
            pages.append(page.extract_text() or "")
    return "\n\n".join(part for part in pages if part.strip())


class DocumentTextExtractor:
    async def extract(self, data: bytes, media_type: str) -> str:
        kind = _base_media_type(media_type)
        if kind in _TEXT_MEDIA_TYPES or (kind.startswith("text/") and kind not in _HTML_MEDIA_TYPES):
            return _decode(data)
        if kind in _HTML_MEDIA_TYPES:
            return _html_to_text(_decode(data))
        if kind == _PDF_MEDIA_TYPE:
            # pdfplumber is synchronous and CPU bound.
            try:
                return await asyncio.to_thread(_pdf_to_text, data)
            except Exception as exc:  # noqa: BLE001 - pdfminer raises a wide range of parse errors
                logger.warning("pdf_extract_failed error=%s", type(exc).__name__)
                raise UnsupportedFormatError(f"unreadable PDF: {exc}") from exc
        raise UnsupportedFormatError(f"no text extractor for media type {kind or 'unknown'}")
