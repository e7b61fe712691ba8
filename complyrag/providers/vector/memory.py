from __future__ import annotations

import math
from typing import Any

from complyrag.core.config import EMBED_DIM
from complyrag.core.errors import ValidationError
from complyrag.providers.vector.base import VectorHit


def cosine_similarity(left: list[float], right: list[float]) -> float:
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm


class InMemoryVectorIndex:
    """Process-local index for tests and single-process dev setups."""

    def __init__(self) -> None:
        self._records: dict[str, tuple[list[float], dict[str, Any]]] = {}

    def __len__(self) -> int:
        return len(self._records)

    def get(self, document_id: str) -> tuple[list[float], dict[str, Any]] | None:
        return self._records.get(document_id)

    async def upsert(self, document_id: str, vector: list[float], payload: dict[str, Any]) -> None:
        if len(vector) != EMBED_DIM:
            raise ValidationError(f"vector dimension {len(vector)} != {EMBED_DIM}")
        self._records[document_id] = (list(vector), dict(payload))

    async def search(self, vector: list[float], top_k: int) -> list[VectorHit]:
        scored = [
            VectorHit(document_id=doc_id, score=cosine_similarity(vector, stored), payload=dict(payload))
            for doc_id, (stored, payload) in self._records.items()
        ]
        # Secondary ordering keeps tie-breaking deterministic.
        scored.sort(key=lambda hit: (-hit.score, hit.document_id))
        return scored[: max(0, int(top_k))]

    async def delete_where(self, *, document_id: str) -> None:
        self._records.pop(document_id, None)
