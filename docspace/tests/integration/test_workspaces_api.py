from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from docspace.apps.api.main import create_app
from docspace.core.config import get_settings
from docspace.tests.utils.auth import create_test_user, make_access_token
from docspace.tests.utils.seed import add_member, create_document, create_workspace


@pytest.mark.asyncio
async def test_signup_complete_is_idempotent_for_bearer_tokens() -> None:
    token = make_access_token("user-ada", email="ada@example.com", name="Ada")
    headers = {"Authorization": f"Bearer {token}"}
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post("/v1/auth/signup-complete", headers=headers)
        second = await client.post("/v1/auth/signup-complete", headers=headers)
        me = await client.get("/v1/user/me", headers=headers)

    assert first.status_code == 200
    body = first.json()
    assert body["created"] is True
    assert body["user"]["email"] == "ada@example.com"
    assert body["workspace"]["name"] == "Ada's Workspace"
    assert second.json()["created"] is False
    assert second.json()["workspace"]["id"] == body["workspace"]["id"]
    assert me.json()["user"]["id"] == "user-ada"


@pytest.mark.asyncio
async def test_invalid_bearer_tokens_are_rejected() -> None:
    expired = make_access_token("user-x", expires_in_s=-60)
    forged = make_access_token("user-x", secret="some-other-secret-with-enough-bytes")
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        responses = [
            await client.get("/v1/user/me", headers={"Authorization": f"Bearer {expired}"}),
            await client.get("/v1/user/me", headers={"Authorization": f"Bearer {forged}"}),
            await client.get("/v1/user/me", headers={"Authorization": "Token abc"}),
            await client.get("/v1/user/me"),
        ]
    for response in responses:
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_UNAUTHORIZED"
        assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_dev_headers_are_ignored_without_bypass(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_DEV_BYPASS", "false")
    get_settings.cache_clear()
    _user_id, headers = await create_test_user()
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/v1/user/me", headers=headers)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_profile_reads_and_updates() -> None:
    user_id, headers = await create_test_user(name="Before")
    workspace_id = await create_workspace(user_id, name="Research")
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        profile = await client.get("/v1/user/profile", headers=headers)
        updated = await client.patch(
            "/v1/user/profile",
            headers=headers,
            json={"name": "After", "avatar_url": "https://example.com/a.png"},
        )
        unknown_field = await client.patch("/v1/user/profile", headers=headers, json={"email": "x@example.com"})

    assert profile.json()["user"]["name"] == "Before"
    assert profile.json()["workspaces"] == [{"id": workspace_id, "name": "Research", "owner_id": user_id}]
    assert updated.json()["user"]["name"] == "After"
    assert updated.json()["user"]["avatar_url"] == "https://example.com/a.png"
    assert unknown_field.status_code == 400


@pytest.mark.asyncio
async def test_create_and_list_workspaces() -> None:
    user_id, headers = await create_test_user()
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        created = await client.post("/v1/workspaces", headers=headers, json={"name": "  Legal  "})
        workspace_id = created.json()["workspace"]["id"]
        await create_document(owner_id=user_id, workspace_id=workspace_id)
        listed = await client.get("/v1/workspaces", headers=headers)
        detail = await client.get(f"/v1/workspaces/{workspace_id}", headers=headers)
        blank = await client.post("/v1/workspaces", headers=headers, json={"name": ""})

    assert created.status_code == 201
    assert created.json()["workspace"]["name"] == "Legal"
    [workspace] = listed.json()["workspaces"]
    assert workspace["role"] == "admin"
    assert workspace["document_count"] == 1
    assert [member["user_id"] for member in detail.json()["members"]] == [user_id]
    assert len(detail.json()["documents"]) == 1
    assert blank.status_code == 400


@pytest.mark.asyncio
async def test_admins_invite_existing_users() -> None:
    owner_id, owner_headers = await create_test_user()
    invitee_id, invitee_headers = await create_test_user()
    workspace_id = await create_workspace(owner_id)
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        before = await client.get(f"/v1/workspaces/{workspace_id}", headers=invitee_headers)
        invited = await client.post(
            f"/v1/workspaces/{workspace_id}/members",
            headers=owner_headers,
            json={"email": invitee_headers["X-User-Email"], "role": "editor"},
        )
        duplicate = await client.post(
            f"/v1/workspaces/{workspace_id}/members",
            headers=owner_headers,
            json={"email": invitee_headers["X-User-Email"]},
        )
        unknown = await client.post(
            f"/v1/workspaces/{workspace_id}/members",
            headers=owner_headers,
            json={"email": "nobody@example.com"},
        )
        bad_role = await client.post(
            f"/v1/workspaces/{workspace_id}/members",
            headers=owner_headers,
            json={"email": "nobody@example.com", "role": "owner"},
        )
        after = await client.get(f"/v1/workspaces/{workspace_id}", headers=invitee_headers)

    assert before.status_code == 403
    assert invited.status_code == 201
    member = invited.json()["member"]
    assert member["user_id"] == invitee_id
    assert member["role"] == "editor"
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "ALREADY_MEMBER"
    assert unknown.status_code == 404
    assert unknown.json()["code"] == "USER_NOT_FOUND"
    assert bad_role.status_code == 400
    assert after.status_code == 200
    assert len(after.json()["members"]) == 2


@pytest.mark.asyncio
async def test_only_admins_can_invite() -> None:
    owner_id, _owner_headers = await create_test_user()
    editor_id, editor_headers = await create_test_user()
    _other_id, other_headers = await create_test_user()
    workspace_id = await create_workspace(owner_id)
    await add_member(workspace_id, editor_id, role="editor")
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            f"/v1/workspaces/{workspace_id}/members",
            headers=editor_headers,
            json={"email": other_headers["X-User-Email"]},
        )
        missing = await client.get("/v1/workspaces/missing", headers=editor_headers)
    assert response.status_code == 403
    assert missing.status_code == 404
