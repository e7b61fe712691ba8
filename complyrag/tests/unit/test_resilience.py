from __future__ import annotations

import asyncio

import httpx
import pytest

from complyrag.core.errors import UpstreamServiceError
from complyrag.services.resilience import RetryPolicy, call_upstream, default_retryable, retry_async


FAST = RetryPolicy(timeout_ms=1000, max_attempts=3, backoff_ms=1)


@pytest.mark.asyncio
async def test_retry_async_recovers_from_transient_errors() -> None:
    calls = {"count": 0}

    async def _flaky():
        calls["count"] += 1
        if calls["count"] < 3:
            raise httpx.ConnectError("connection refused")
        return "ok"

    assert await retry_async(_flaky, policy=FAST) == "ok"
    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_permanent_errors() -> None:
    calls = {"count": 0}

    async def _broken():
        calls["count"] += 1
        raise ValueError("bad payload")

    with pytest.raises(ValueError):
        await retry_async(_broken, policy=FAST)
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_call_upstream_maps_timeout() -> None:
    async def _slow():
        await asyncio.sleep(1)

    policy = RetryPolicy(timeout_ms=10, max_attempts=2, backoff_ms=1)
    with pytest.raises(UpstreamServiceError) as excinfo:
        await call_upstream("embedding", _slow, policy=policy)

    assert excinfo.value.service == "embedding"
    assert "timed out" in str(excinfo.value)


@pytest.mark.asyncio
async def test_call_upstream_passes_domain_errors_through() -> None:
    original = UpstreamServiceError("quota exhausted", service="completion", retryable=False)

    async def _fail():
        raise original

    with pytest.raises(UpstreamServiceError) as excinfo:
        await call_upstream("completion", _fail, policy=FAST)
    assert excinfo.value is original


def test_default_retryable_classification() -> None:
    assert default_retryable(httpx.ReadTimeout("slow")) is True
    assert default_retryable(UpstreamServiceError("x", service="s", retryable=False)) is False
    assert default_retryable(KeyError("k")) is False
