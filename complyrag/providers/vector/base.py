from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class VectorHit:
    document_id: str
    # Cosine similarity; higher is closer.
    score: float
    payload: dict[str, Any] = field(default_factory=dict)


class VectorIndex(Protocol):
    async def upsert(self, document_id: str, vector: list[float], payload: dict[str, Any]) -> None:
        ...

    async def search(self, vector: list[float], top_k: int) -> list[VectorHit]:
        ...

    async def delete_where(self, *, document_id: str) -> None:
        ...
