from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Point settings at a throwaway SQLite file before any complyrag module builds the engine.
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="complyrag-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_ROOT / 'test.db'}"
os.environ["CONTENT_STORAGE_DIR"] = str(_TEST_ROOT / "content")
os.environ["INDEX_EXECUTION_MODE"] = "inline"
os.environ["INDEX_RETRY_BACKOFF_MS"] = "1"
os.environ["EXT_RETRY_BACKOFF_MS"] = "1"
os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ["LLM_PROVIDER"] = "fake"
os.environ["VECTOR_INDEX"] = "memory"

import pytest  # noqa: E402

from complyrag.core.config import get_settings  # noqa: E402
from complyrag.persistence.db import create_all, drop_all, engine  # noqa: E402


get_settings.cache_clear()


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from empty tables; SQLite keeps this cheap.
    await create_all()
    yield
    await drop_all()
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()
