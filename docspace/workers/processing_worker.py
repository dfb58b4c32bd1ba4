from __future__ import annotations

import logging

from arq.connections import RedisSettings

from docspace.core.config import get_settings
from docspace.core.logging import configure_logging
from docspace.services.processing import ProcessingJobPayload, run_processing_job


logger = logging.getLogger(__name__)


async def process_document_job(ctx, payload: dict) -> bool:
    # Parse and validate payloads in the worker to enforce schema contracts.
    job_payload = ProcessingJobPayload.model_validate(payload)
    settings = get_settings()
    attempt = ctx.get("job_try", 1)
    logger.info(
        "processing_job_start document_id=%s attempt=%s job_id=%s",
        job_payload.document_id,
        attempt,
        ctx.get("job_id"),
    )
    return await run_processing_job(
        job_payload,
        attempt=attempt,
        max_retries=settings.processing_max_retries,
    )


async def _startup(ctx) -> None:
    configure_logging()


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.processing_queue_name
    max_tries = settings.processing_max_retries
    functions = [process_document_job]
    on_startup = _startup
