from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from docspace.apps.api.main import create_app
from docspace.core.config import get_settings
from docspace.tests.utils.auth import create_test_user
from docspace.tests.utils.seed import create_document, create_workspace


@pytest.mark.asyncio
async def test_ai_routes_are_limited_per_user(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "2")
    get_settings.cache_clear()
    user_id, headers = await create_test_user()
    other_id, other_headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    document_id = await create_document(owner_id=user_id, workspace_id=workspace_id)
    other_workspace = await create_workspace(other_id)
    other_document = await create_document(owner_id=other_id, workspace_id=other_workspace)

    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post("/v1/ai/summary", headers=headers, json={"document_id": document_id})
        second = await client.post("/v1/ai/extract", headers=headers, json={"document_id": document_id})
        third = await client.post("/v1/ai/summary", headers=headers, json={"document_id": document_id})
        # Reads are not limited.
        read = await client.get("/v1/ai/summary", headers=headers, params={"document_id": document_id})
        other = await client.post("/v1/ai/summary", headers=other_headers, json={"document_id": other_document})

    assert first.status_code == 200
    assert first.headers["x-ratelimit-limit"] == "2"
    assert first.headers["x-ratelimit-remaining"] == "1"
    assert second.status_code == 200
    assert third.status_code == 429
    assert third.json()["code"] == "RATE_LIMITED"
    assert 0 < int(third.headers["retry-after"]) <= 60
    assert read.status_code == 200
    assert other.status_code == 200


@pytest.mark.asyncio
async def test_limiter_can_be_disabled(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "1")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    get_settings.cache_clear()
    user_id, headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    document_id = await create_document(owner_id=user_id, workspace_id=workspace_id)
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        statuses = [
            (await client.post("/v1/ai/extract", headers=headers, json={"document_id": document_id})).status_code
            for _ in range(3)
        ]
    assert statuses == [200, 200, 200]
