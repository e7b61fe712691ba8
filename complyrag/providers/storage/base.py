from __future__ import annotations

from typing import Protocol


class ContentStorage(Protocol):
    async def store(self, key: str, data: bytes) -> None:
        ...

    async def fetch(self, key: str) -> bytes:
        ...

    async def delete(self, key: str) -> None:
        ...
