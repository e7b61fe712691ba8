from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from complyrag.core.config import get_settings
from complyrag.core.errors import UpstreamServiceError


logger = logging.getLogger(__name__)


TransientException = (TimeoutError, OSError, httpx.TimeoutException, httpx.NetworkError)


def default_retryable(exc: Exception) -> bool:
    # Retry only transient network/timeout failures and upstream errors flagged as retryable.
    if isinstance(exc, UpstreamServiceError):
        return exc.retryable
    if isinstance(exc, TransientException):
        return True
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and status >= 500:
        return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        timeout_ms=settings.ext_call_timeout_ms,
        max_attempts=settings.ext_retry_max_attempts,
        backoff_ms=settings.ext_retry_backoff_ms,
    )


def backoff_seconds(backoff_ms: int, attempt: int) -> float:
    # Exponential backoff with jitter; attempt is 1-based.
    jitter = random.uniform(0.5, 1.5)
    return (backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
) -> Any:
    policy = policy or default_retry_policy()
    retryable = retryable or default_retryable
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - caller handles non-transient failures
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            logger.info("external_call_retry attempt=%s error=%s", attempt, type(exc).__name__)
            await asyncio.sleep(backoff_seconds(policy.backoff_ms, attempt))
            attempt += 1


async def call_upstream(
    service: str,
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
) -> Any:
    """Run one external call under the timeout/retry policy.

    Timeouts and transport failures surface as UpstreamServiceError tagged with
    the service name; errors already in the domain hierarchy pass through.
    """
    try:
        return await retry_async(func, policy=policy)
    except UpstreamServiceError:
        raise
    except asyncio.TimeoutError as exc:
        raise UpstreamServiceError(f"{service} call timed out", service=service) from exc
    except httpx.HTTPError as exc:
        raise UpstreamServiceError(f"{service} request failed", service=service) from exc
    except OSError as exc:
        raise UpstreamServiceError(f"{service} I/O failed: {exc}", service=service) from exc
