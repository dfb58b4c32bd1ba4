from __future__ import annotations

import pytest

from docspace.services.resilience import RetryPolicy, compute_delay_ms, retry_async


class _Transient(Exception):
    pass


@pytest.mark.asyncio
async def test_retry_async_retries_transient() -> None:
    calls = {"count": 0}
    delays: list[float] = []

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 3:
            raise _Transient("temporarily unavailable")
        return "ok"

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)

    result = await retry_async(
        flaky,
        policy=RetryPolicy(max_retries=3, base_delay_ms=1000, max_delay_ms=10000),
        retryable=lambda exc: isinstance(exc, _Transient),
        sleep=record_sleep,
    )
    assert result == "ok"
    assert calls["count"] == 3
    assert delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_async_raises_non_retryable_immediately() -> None:
    calls = {"count": 0}

    async def broken() -> str:
        calls["count"] += 1
        raise ValueError("bad request")

    with pytest.raises(ValueError):
        await retry_async(
            broken,
            policy=RetryPolicy(max_retries=3, base_delay_ms=1, max_delay_ms=1),
            retryable=lambda exc: isinstance(exc, _Transient),
        )
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_retry_async_gives_up_after_max_retries() -> None:
    calls = {"count": 0}

    async def always_failing() -> str:
        calls["count"] += 1
        raise _Transient("timeout")

    async def no_sleep(_seconds: float) -> None:
        return None

    with pytest.raises(_Transient):
        await retry_async(
            always_failing,
            policy=RetryPolicy(max_retries=2, base_delay_ms=1, max_delay_ms=1),
            retryable=lambda exc: True,
            sleep=no_sleep,
        )
    assert calls["count"] == 3


def test_compute_delay_is_exponential_and_capped() -> None:
    policy = RetryPolicy(max_retries=5, base_delay_ms=1000, max_delay_ms=10000)
    assert [compute_delay_ms(policy, attempt) for attempt in range(5)] == [
        1000.0,
        2000.0,
        4000.0,
        8000.0,
        10000.0,
    ]
    linear = RetryPolicy(max_retries=3, base_delay_ms=250, max_delay_ms=10000, exponential=False)
    assert compute_delay_ms(linear, 3) == 250.0
