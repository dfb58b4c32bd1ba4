from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.apps.api.deps import CurrentUser, get_current_user, get_db
from docspace.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from docspace.apps.api.response import success_response
from docspace.domain.models import Workspace
from docspace.persistence.repos import documents as documents_repo
from docspace.persistence.repos import users as users_repo
from docspace.persistence.repos import workspaces as workspaces_repo
from docspace.services.access import require_workspace_member


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/workspaces", tags=["workspaces"], responses=DEFAULT_ERROR_RESPONSES)

_ADMIN_ROLES = frozenset({"admin"})


class WorkspaceResponse(BaseModel):
    id: str
    name: str
    owner_id: str
    created_at: str


class WorkspaceCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)

    model_config = {"extra": "forbid"}


class MemberInviteRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    role: Literal["admin", "editor", "viewer"] = "viewer"

    model_config = {"extra": "forbid"}


def _to_response(workspace: Workspace) -> WorkspaceResponse:
    return WorkspaceResponse(
        id=workspace.id,
        name=workspace.name,
        owner_id=workspace.owner_id,
        created_at=workspace.created_at.isoformat(),
    )


@router.get("")
async def list_workspaces(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items = []
    for workspace in await workspaces_repo.list_user_workspaces(db, user.id):
        member = await workspaces_repo.get_membership(db, workspace.id, user.id)
        items.append(
            {
                **_to_response(workspace).model_dump(),
                "role": member.role if member else "admin",
                "document_count": await workspaces_repo.count_documents(db, workspace.id),
            }
        )
    return success_response(workspaces=items)


@router.post("", status_code=201)
async def create_workspace(
    payload: WorkspaceCreateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    workspace = await workspaces_repo.create_workspace(db, name=payload.name.strip(), owner_id=user.id)
    await db.commit()
    logger.info("workspace_created workspace_id=%s user_id=%s", workspace.id, user.id)
    return success_response(workspace=_to_response(workspace))


@router.get("/{workspace_id}")
async def get_workspace(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    workspace, _member = await require_workspace_member(db, workspace_id, user.id)
    members = await workspaces_repo.list_members(db, workspace_id)
    documents = await documents_repo.list_recent_documents(db, [workspace_id], limit=50)
    return success_response(
        workspace=_to_response(workspace),
        members=[
            {
                "user_id": row.id,
                "email": row.email,
                "name": row.name,
                "role": member.role,
                "joined_at": member.joined_at.isoformat(),
            }
            for member, row in members
        ],
        documents=[
            {
                "id": doc.id,
                "name": doc.name,
                "type": doc.type,
                "processing_status": doc.processing_status,
                "created_at": doc.created_at.isoformat(),
            }
            for doc in documents
        ],
    )


@router.post("/{workspace_id}/members", status_code=201)
async def invite_member(
    workspace_id: str,
    payload: MemberInviteRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_workspace_member(db, workspace_id, user.id, roles=_ADMIN_ROLES)
    invitee = await users_repo.get_user_by_email(db, payload.email)
    if invitee is None:
        # Invites only reach users who have signed in at least once.
        raise HTTPException(
            status_code=404,
            detail={"code": "USER_NOT_FOUND", "message": "No user with that email has signed up yet"},
        )
    if await workspaces_repo.get_membership(db, workspace_id, invitee.id) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "ALREADY_MEMBER", "message": "User is already a member of this workspace"},
        )
    member = await workspaces_repo.add_member(
        db, workspace_id=workspace_id, user_id=invitee.id, role=payload.role
    )
    await db.commit()
    logger.info(
        "workspace_member_added workspace_id=%s user_id=%s role=%s", workspace_id, invitee.id, member.role
    )
    return success_response(
        member={
            "user_id": invitee.id,
            "email": invitee.email,
            "name": invitee.name,
            "role": member.role,
            "joined_at": member.joined_at.isoformat(),
        }
    )
