from __future__ import annotations

import os
import tempfile

# Settings are read at import time by the engine, so the test environment is fixed before any docspace import.
_TMP_DIR = tempfile.mkdtemp(prefix="docspace-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/docspace-test.db"
os.environ["LLM_PROVIDER"] = "fake"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["STORAGE_LOCAL_DIR"] = os.path.join(_TMP_DIR, "blobs")
os.environ["AUTH_DEV_BYPASS"] = "true"
os.environ["AUTH_JWT_SECRET"] = "docspace-test-secret-with-enough-bytes"
os.environ["PROCESSING_EXECUTION_MODE"] = "inline"
os.environ["RATE_LIMIT_BACKEND"] = "memory"

import pytest  # noqa: E402

from docspace.apps.api import rate_limit  # noqa: E402
from docspace.core.config import get_settings  # noqa: E402
from docspace.domain.models import Base  # noqa: E402
from docspace.persistence.db import engine  # noqa: E402
from docspace.services.ai_client import clear_cache, reset_usage_stats  # noqa: E402


@pytest.fixture(autouse=True)
async def database() -> None:
    # Fresh schema per test; dispose so pooled connections never cross event loops.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Cache, usage counters and limiter windows are process-wide.
    clear_cache()
    reset_usage_stats()
    rate_limit.reset_rate_limiter_state()
    yield
    get_settings.cache_clear()
    rate_limit.reset_rate_limiter_state()
