from __future__ import annotations

import asyncio
from pathlib import Path

from complyrag.core.errors import UpstreamServiceError, ValidationError


class LocalContentStorage:
    """Stores version bytes on the local filesystem under a root directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _path(self, key: str) -> Path:
        # Keys come from server-generated ids; still refuse anything escaping the root.
        root = self._root.resolve()
        path = (root / key).resolve()
        if root != path and root not in path.parents:
            raise ValidationError(f"invalid storage key: {key}")
        return path

    async def store(self, key: str, data: bytes) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise UpstreamServiceError(f"storage write failed for {key}", service="storage") from exc

    async def fetch(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            # Missing content will not appear on retry.
            raise UpstreamServiceError(
                f"stored content missing for {key}", service="storage", retryable=False
            ) from exc
        except OSError as exc:
            raise UpstreamServiceError(f"storage read failed for {key}", service="storage") from exc

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            raise UpstreamServiceError(f"storage delete failed for {key}", service="storage") from exc
