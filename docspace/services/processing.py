from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging

from arq import Retry, create_pool
from arq.connections import RedisSettings
from pydantic import BaseModel

from docspace.core.config import get_settings
from docspace.core.errors import AIError, ExtractionError, StorageError
from docspace.persistence.db import SessionLocal
from docspace.persistence.repos import documents as documents_repo
from docspace.services.ai_client import GeminiClient, get_ai_client
from docspace.services.extraction import extract_document
from docspace.services.resilience import RetryPolicy, compute_delay_ms
from docspace.services.storage import BlobStorage, get_blob_storage


logger = logging.getLogger(__name__)

REQUEUE_BASE_DELAY_MS = 5000
REQUEUE_MAX_DELAY_MS = 60000

_redis_pool = None
_redis_pool_loop = None
_redis_lock = asyncio.Lock()
# Hold references so fire-and-forget tasks are not garbage collected mid-run.
_background_tasks: set[asyncio.Task] = set()


class ProcessingJobPayload(BaseModel):
    # Job schema shared by the API and the arq worker.
    document_id: str
    request_id: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def get_redis_pool():
    # Cache the Redis pool to avoid reconnecting on every enqueue.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_pool_loop != current_loop:
        # Drop loop-bound pools to avoid cross-loop errors in tests.
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.processing_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


def _is_retryable(exc: Exception) -> bool:
    # Corrupt or unsupported files fail the same way every time.
    if isinstance(exc, ExtractionError):
        cause = exc.__cause__
        return isinstance(cause, AIError) and cause.retryable
    if isinstance(exc, AIError):
        return exc.retryable
    return isinstance(exc, (StorageError, OSError, TimeoutError))


def _failure_reason(exc: Exception) -> str:
    # Short, user-facing reasons without stack traces.
    if isinstance(exc, (ExtractionError, StorageError)):
        return str(exc)
    if isinstance(exc, AIError):
        return f"AI service error ({exc.code})"
    return "Processing failed; retry or check worker logs"


async def process_document(
    document_id: str,
    *,
    ai_client: GeminiClient | None = None,
    storage: BlobStorage | None = None,
) -> bool:
    """Extract text for one document and record the outcome on its row.

    Returns True when the document ends up ``ready``. Failures are logged,
    written to ``failure_reason`` and re-raised so callers can decide on retries.
    """
    storage = storage or get_blob_storage()
    async with SessionLocal() as session:
        document = await documents_repo.get_document(session, document_id)
        if document is None:
            logger.warning("processing_skipped document_id=%s reason=missing", document_id)
            return False
        try:
            data = await storage.get(document.storage_path)
            result = await extract_document(data, document.type, ai_client or get_ai_client())
        except Exception as exc:  # noqa: BLE001 - record a concise failure reason
            logger.exception("processing_failed document_id=%s", document_id)
            await documents_repo.mark_failed(session, document, failure_reason=_failure_reason(exc))
            await session.commit()
            raise
        await documents_repo.mark_ready(
            session,
            document,
            extracted_text=result.text,
            metadata_updates={**result.metadata, "processed_at": _utc_now().isoformat()},
        )
        await session.commit()
        logger.info(
            "processing_complete document_id=%s type=%s chars=%s",
            document_id,
            document.type,
            len(result.text),
        )
        return True


def requeue_delay_s(attempt: int, max_retries: int) -> float:
    # arq job_try is one-based; the first requeue waits around REQUEUE_BASE_DELAY_MS.
    policy = RetryPolicy(
        max_retries=max_retries,
        base_delay_ms=REQUEUE_BASE_DELAY_MS,
        max_delay_ms=REQUEUE_MAX_DELAY_MS,
        jitter=True,
    )
    return compute_delay_ms(policy, max(attempt - 1, 0)) / 1000


async def run_processing_job(
    payload: ProcessingJobPayload,
    *,
    attempt: int,
    max_retries: int,
) -> bool:
    # Shared by the worker; transient failures go back to arq for another try.
    try:
        return await process_document(payload.document_id)
    except Exception as exc:  # noqa: BLE001 - failure already recorded on the row
        if _is_retryable(exc) and attempt < max_retries:
            raise Retry(defer=requeue_delay_s(attempt, max_retries)) from exc
        return False


async def _process_in_background(document_id: str) -> None:
    try:
        await process_document(document_id)
    except Exception:  # noqa: BLE001 - failure already logged and recorded on the row
        return


async def schedule_processing(document_id: str, *, request_id: str) -> str:
    """Start extraction without blocking the upload response.

    ``background`` runs an in-process task, ``queue`` hands off to the arq
    worker, and ``inline`` awaits completion (deterministic tests).
    """
    settings = get_settings()
    mode = settings.processing_execution_mode.lower()
    if mode == "inline":
        await _process_in_background(document_id)
        return request_id
    if mode == "queue":
        redis = await get_redis_pool()
        payload = ProcessingJobPayload(document_id=document_id, request_id=request_id)
        job = await redis.enqueue_job(
            "process_document_job",
            payload.model_dump(),
            _job_id=f"process-{document_id}-{request_id}",
            _queue_name=settings.processing_queue_name,
        )
        # arq returns None when the job id already exists; keep tracing with the same id.
        return job.job_id if job else request_id
    task = asyncio.create_task(_process_in_background(document_id))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return request_id


async def drain_background_tasks() -> None:
    # Await in-flight extraction, used on shutdown and in tests.
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
