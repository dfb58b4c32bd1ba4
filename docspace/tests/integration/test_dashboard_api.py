from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from docspace.apps.api.main import create_app
from docspace.tests.utils.auth import create_test_user
from docspace.tests.utils.seed import add_member, create_document, create_workspace


@pytest.mark.asyncio
async def test_stats_aggregate_across_the_users_workspaces() -> None:
    user_id, headers = await create_test_user()
    teammate_id, _teammate_headers = await create_test_user()
    stranger_id, _stranger_headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    await add_member(workspace_id, teammate_id, role="editor")
    document_id = await create_document(
        owner_id=user_id, workspace_id=workspace_id, metadata={"size": 1536, "mime_type": "application/pdf"}
    )
    await create_document(owner_id=teammate_id, workspace_id=workspace_id, metadata={"size": 512})
    # Documents outside the user's workspaces never count.
    await create_document(owner_id=stranger_id, workspace_id=await create_workspace(stranger_id))

    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post("/v1/ai/summary", headers=headers, json={"document_id": document_id})
        response = await client.get("/v1/dashboard/stats", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["stats"] == {
        "total_documents": 2,
        "total_queries": 1,
        "storage_used": 2048,
        "storage_used_formatted": "2 KB",
        "team_members": 2,
        "workspaces": 1,
    }
    assert len(body["recent_documents"]) == 2


@pytest.mark.asyncio
async def test_activities_merge_uploads_and_queries() -> None:
    user_id, headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    document_id = await create_document(owner_id=user_id, workspace_id=workspace_id, name="contract.pdf")

    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post("/v1/ai/summary", headers=headers, json={"document_id": document_id})
        response = await client.get("/v1/dashboard/activities", headers=headers)
        capped = await client.get("/v1/dashboard/activities", headers=headers, params={"limit": 1})

    activities = response.json()["activities"]
    assert {item["type"] for item in activities} == {"upload", "query"}
    upload = next(item for item in activities if item["type"] == "upload")
    assert upload["description"] == "Uploaded contract.pdf"
    query = next(item for item in activities if item["type"] == "query")
    assert query["description"].startswith("Asked about contract.pdf: ")
    timestamps = [item["timestamp"] for item in activities]
    assert timestamps == sorted(timestamps, reverse=True)
    assert len(capped.json()["activities"]) == 1


@pytest.mark.asyncio
async def test_empty_dashboard_for_new_users() -> None:
    _user_id, headers = await create_test_user()
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        stats = await client.get("/v1/dashboard/stats", headers=headers)
        activities = await client.get("/v1/dashboard/activities", headers=headers)
        health = await client.get("/v1/health")
    assert stats.json()["stats"]["storage_used_formatted"] == "0 Bytes"
    assert stats.json()["stats"]["total_documents"] == 0
    assert activities.json()["activities"] == []
    assert health.json() == {"success": True, "status": "ok"}
