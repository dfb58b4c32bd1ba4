from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from docspace.core.config import get_settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    # Retries after the first attempt; total attempts = max_retries + 1.
    max_retries: int
    base_delay_ms: int
    max_delay_ms: int
    exponential: bool = True
    jitter: bool = False


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        max_retries=settings.gemini_max_retries,
        base_delay_ms=settings.gemini_retry_base_delay_ms,
        max_delay_ms=settings.gemini_retry_max_delay_ms,
    )


def compute_delay_ms(policy: RetryPolicy, attempt: int) -> float:
    # attempt is zero-based: the first retry waits base_delay_ms.
    if not policy.exponential:
        delay = float(policy.base_delay_ms)
    else:
        delay = float(min(policy.base_delay_ms * (2**attempt), policy.max_delay_ms))
    if policy.jitter:
        delay *= random.uniform(0.5, 1.5)
    return delay


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool],
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    # Retry helper with capped exponential backoff for retryable failures only.
    policy = policy or default_retry_policy()
    attempt = 0
    while True:
        try:
            return await func()
        except Exception as exc:  # noqa: BLE001 - caller maps non-retryable failures
            if not retryable(exc) or attempt >= max(policy.max_retries, 0):
                raise
            delay_ms = compute_delay_ms(policy, attempt)
            logger.warning(
                "retry_scheduled attempt=%s max_retries=%s delay_ms=%.0f error=%s",
                attempt + 1,
                policy.max_retries,
                delay_ms,
                type(exc).__name__,
            )
            await sleep(delay_ms / 1000.0)
            attempt += 1
