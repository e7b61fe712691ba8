from __future__ import annotations

from typing import Protocol


class TextExtractor(Protocol):
    async def extract(self, data: bytes, media_type: str) -> str:
        ...
