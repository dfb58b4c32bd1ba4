from __future__ import annotations

from arq import Retry
import pytest

from docspace.core.errors import ExtractionError, StorageError
from docspace.services import processing
from docspace.services.processing import ProcessingJobPayload, requeue_delay_s, run_processing_job


def _failing_with(exc: Exception):
    async def _process(document_id: str, **_kwargs) -> bool:
        raise exc

    return _process


def test_requeue_delay_grows_with_jitter_and_cap() -> None:
    first = [requeue_delay_s(1, 3) for _ in range(50)]
    second = [requeue_delay_s(2, 3) for _ in range(50)]
    capped = [requeue_delay_s(10, 3) for _ in range(50)]
    assert all(2.5 <= delay <= 7.5 for delay in first)
    assert all(5.0 <= delay <= 15.0 for delay in second)
    assert all(30.0 <= delay <= 90.0 for delay in capped)
    # Jitter spreads the delays instead of repeating one value.
    assert len(set(first)) > 1


@pytest.mark.asyncio
async def test_transient_failures_are_requeued_with_jittered_defer(monkeypatch) -> None:
    monkeypatch.setattr(processing, "process_document", _failing_with(StorageError("bucket unavailable")))
    payload = ProcessingJobPayload(document_id="doc-1", request_id="req-1")

    with pytest.raises(Retry) as exc_info:
        await run_processing_job(payload, attempt=2, max_retries=3)

    assert 5000 <= exc_info.value.defer_score <= 15000


@pytest.mark.asyncio
async def test_last_attempt_and_permanent_failures_are_not_requeued(monkeypatch) -> None:
    payload = ProcessingJobPayload(document_id="doc-1", request_id="req-1")

    monkeypatch.setattr(processing, "process_document", _failing_with(StorageError("bucket unavailable")))
    assert await run_processing_job(payload, attempt=3, max_retries=3) is False

    monkeypatch.setattr(processing, "process_document", _failing_with(ExtractionError("Failed to parse PDF")))
    assert await run_processing_job(payload, attempt=1, max_retries=3) is False
